from fastapi import Request

from app.core.container import Services


def get_services(request: Request) -> Services:
    """Services built by the lifespan (or injected by tests) on ``app.state``."""
    return request.app.state.services
