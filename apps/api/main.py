"""Thin bridge launcher.

This is the uvicorn entrypoint. All application logic lives in the glass package.
Run with: uvicorn main:app --port 8765

The app instance is created here (not in glass.app) so importing glass.app
has no side effects and tests can build apps around injected containers.
"""

from glass.app import create_app
from glass.config import get_settings
from glass.logging import configure_logging

configure_logging(json_format=get_settings().log_json)

app = create_app()

__all__ = ["app"]
