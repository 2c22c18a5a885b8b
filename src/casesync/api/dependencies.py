"""FastAPI dependencies for dependency injection."""

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status

from casesync.services import Services


def get_services(request: Request) -> Services:
    """Components attached to the app by create_app or its lifespan."""
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service not initialized",
        )
    return services


# Type aliases for cleaner dependency injection
ServicesDep = Annotated[Services, Depends(get_services)]
