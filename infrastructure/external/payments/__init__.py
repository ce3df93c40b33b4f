"""
Factory for payment provider clients.
"""
from __future__ import annotations

from typing import Optional, Union

from core.settings import PaymentSettings, UnconfiguredProvider, payment_settings
from application.ports.payment_gateway import ProviderClient


def get_provider_client(
    provider: str,
    settings: Optional[PaymentSettings] = None,
) -> Union[ProviderClient, UnconfiguredProvider]:
    """Build the outbound client for ``provider`` or return the unconfigured marker."""
    cfg = settings or payment_settings
    name = provider.lower()
    if name == "click":
        creds = cfg.click.credentials()
        if isinstance(creds, UnconfiguredProvider):
            return creds
        from .click_client import ClickClient
        return ClickClient(creds)
    if name == "payme":
        creds = cfg.payme.credentials()
        if isinstance(creds, UnconfiguredProvider):
            return creds
        from .payme_client import PaymeClient
        return PaymeClient(creds)
    if name == "uzum":
        creds = cfg.uzum.credentials()
        if isinstance(creds, UnconfiguredProvider):
            return creds
        from .uzum_client import UzumClient
        return UzumClient(creds)
    raise ValueError(f"Unsupported payment provider: {name}")
