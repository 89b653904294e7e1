"""Request dependencies shared by the routers."""

from fastapi import Request

from calendar_sync.context import ServiceContext


def get_context(request: Request) -> ServiceContext:
    """The ServiceContext attached to the application by create_app."""
    return request.app.state.context
