"""Flask extension instances shared across the application."""
from flask_cors import CORS

cors = CORS()
