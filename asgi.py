"""
asgi.py -- ASGI entry point for AuditDesk.

Run with:  uvicorn asgi:app --reload

The JSON API is the whole surface; the dashboard UI is a separate client
that talks to /api/v1 from CORS_ORIGINS.
"""

from api.main import app

__all__ = ["app"]
