"""
Service dependencies.

Request handlers receive the process-wide service container through
``Depends(get_services)``. Tests override this dependency to inject a
container backed by an in-memory store.
"""

from fastapi import Request

from agriadvisor.services import ServiceContainer


def get_services(request: Request) -> ServiceContainer:
    """
    Return the service container built at application start-up.

    Args:
        request: FastAPI request object

    Returns:
        The container stored on ``app.state.services``
    """
    return request.app.state.services
