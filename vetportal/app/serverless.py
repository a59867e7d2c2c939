"""WSGI entrypoint for serverless and gunicorn deployments."""
from __future__ import annotations
import os

from vetportal.app import create_app

app = create_app(os.getenv("FLASK_ENV"))
