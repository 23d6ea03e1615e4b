"""HTTP clients for the external APIs the engine syncs from."""

from syncengine.services.providers.base import (
    ProviderClient,
    ProviderError,
    ProviderNotConfiguredError,
)
from syncengine.services.providers.crm import CRMClient
from syncengine.services.providers.messaging import MessagingClient
from syncengine.services.providers.payments_primary import PaymentsPrimaryClient
from syncengine.services.providers.payments_secondary import PaymentsSecondaryClient

__all__ = [
    "CRMClient",
    "MessagingClient",
    "PaymentsPrimaryClient",
    "PaymentsSecondaryClient",
    "ProviderClient",
    "ProviderError",
    "ProviderNotConfiguredError",
]
