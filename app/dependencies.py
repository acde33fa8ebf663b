"""FastAPI dependencies shared by the routers."""

from fastapi import Request

from app.services.dispatch_engine import DispatchEngine


def get_dispatch(request: Request) -> DispatchEngine:
    """FastAPI dependency — the dispatch engine built at startup."""
    return request.app.state.dispatch
