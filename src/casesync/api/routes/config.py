"""Configuration read and administrative write endpoints."""

from fastapi import APIRouter, HTTPException, status

from casesync.api.dependencies import ServicesDep
from casesync.api.schemas import ConfigResponse, ConfigUpdateRequest, ErrorResponse
from casesync.remote import ConfigAdminError, ConfigUpdate

router = APIRouter(prefix="/config", tags=["config"])


async def _masked(services: ServicesDep) -> ConfigResponse:
    descriptor = await services.resolver.resolve()
    payment = await services.resolver.resolve_payment_processor()
    return ConfigResponse(servemanager=descriptor.masked(), stripe=payment.masked())


@router.get("", response_model=ConfigResponse)
async def get_config(services: ServicesDep) -> ConfigResponse:
    """Resolved configuration with secrets masked."""
    return await _masked(services)


@router.put(
    "",
    response_model=ConfigResponse,
    responses={400: {"model": ErrorResponse}},
)
async def update_config(
    payload: ConfigUpdateRequest,
    services: ServicesDep,
) -> ConfigResponse:
    """Update the system-of-record configuration.

    A masked api key (as returned by GET) keeps the key already on file.
    Environment variables still take precedence over what is written here.
    """
    try:
        await services.admin.apply(
            ConfigUpdate(
                base_url=payload.base_url,
                api_key=payload.api_key,
                enabled=payload.enabled,
            )
        )
    except ConfigAdminError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return await _masked(services)
