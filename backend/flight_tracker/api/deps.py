from fastapi import Request

from flight_tracker.container import ServiceContainer


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container
