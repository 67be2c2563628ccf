"""FastAPI dependencies shared by the route modules."""

from fastapi import Request

from dealboard.services.container import ServiceContainer


def get_container(request: Request) -> ServiceContainer:
    """The ServiceContainer built by the application lifespan."""
    return request.app.state.container
