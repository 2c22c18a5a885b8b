"""Remote configuration, config store and gateway to the system-of-record."""

from casesync.remote.config import (
    CapabilityDescriptor,
    FallbackConfig,
    PaymentProcessorDescriptor,
    mask_secret,
)
from casesync.remote.gateway import RemoteGateway, ServeManagerGateway
from casesync.remote.resolver import (
    ConfigAdmin,
    ConfigAdminError,
    ConfigResolver,
    ConfigUpdate,
)
from casesync.remote.store import ConfigStore, StoredServiceConfig

__all__ = [
    "CapabilityDescriptor",
    "PaymentProcessorDescriptor",
    "FallbackConfig",
    "mask_secret",
    "ConfigResolver",
    "ConfigAdmin",
    "ConfigAdminError",
    "ConfigUpdate",
    "ConfigStore",
    "StoredServiceConfig",
    "RemoteGateway",
    "ServeManagerGateway",
]
