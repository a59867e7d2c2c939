"""View blueprint registration."""
from flask import Blueprint

admin_bp = Blueprint("admin", __name__)
portal_bp = Blueprint("portal", __name__)

# Import views to ensure they are registered with the blueprints.
from . import admin  # noqa: E402,F401
from . import portal  # noqa: E402,F401
