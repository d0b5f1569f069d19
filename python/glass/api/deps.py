"""FastAPI dependencies for route handlers."""

from fastapi import Request

from glass.container import Container


def get_container(request: Request) -> Container:
    """Get the application container from app state.

    The container is built (or injected) in the app lifespan and owns every
    repository and service for the process.
    """
    return request.app.state.container
