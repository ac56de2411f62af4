"""
asgi.py -- Application entry point for the S4 API.

api/main.py builds the FastAPI app, its middleware and its routers; this
module only re-exports it under the name ASGI servers look for.

Run with:  uvicorn asgi:app --reload
"""

from api.main import app

__all__ = ["app"]
