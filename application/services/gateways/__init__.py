"""
Gateway adapter registry.

Maps each ``PaymentMethod`` to its adapter, wiring credentials (or the
unconfigured marker) and the outbound client from ``PaymentSettings``.
"""
from __future__ import annotations

from typing import Optional

from application.ports.payment_gateway import PaymentGateway
from application.services.callback_verifier import CallbackVerifier
from core.settings import PaymentSettings, UnconfiguredProvider, payment_settings
from domain.common.unit_of_work import UnitOfWorkFactory
from domain.payment.entity import PaymentMethod
from domain.payment.service import PaymentStatusReconciler
from infrastructure.external.payments import get_provider_client

from .base import BaseGatewayAdapter
from .cash import CashGateway
from .click import ClickGateway
from .payme import PaymeGateway
from .uzum import UzumGateway


ADAPTERS: dict[PaymentMethod, type[BaseGatewayAdapter]] = {
    PaymentMethod.CLICK: ClickGateway,
    PaymentMethod.PAYME: PaymeGateway,
    PaymentMethod.UZUM: UzumGateway,
    PaymentMethod.CASH: CashGateway,
}


def _credentials(method: PaymentMethod, settings: PaymentSettings):
    if method == PaymentMethod.CLICK:
        return settings.click.credentials()
    if method == PaymentMethod.PAYME:
        return settings.payme.credentials()
    if method == PaymentMethod.UZUM:
        return settings.uzum.credentials()
    return None


def build_gateways(
    uow_factory: UnitOfWorkFactory,
    settings: Optional[PaymentSettings] = None,
    *,
    reconciler: Optional[PaymentStatusReconciler] = None,
) -> dict[PaymentMethod, PaymentGateway]:
    """Build one adapter per payment method sharing reconciler and verifier."""
    cfg = settings or payment_settings
    reconciler = reconciler or PaymentStatusReconciler()
    verifier = CallbackVerifier()
    gateways: dict[PaymentMethod, PaymentGateway] = {}
    for method, adapter_cls in ADAPTERS.items():
        credentials = _credentials(method, cfg)
        client = None
        if method != PaymentMethod.CASH and not isinstance(credentials, UnconfiguredProvider):
            client = get_provider_client(method.value, cfg)
        gateways[method] = adapter_cls(
            uow_factory=uow_factory,
            credentials=credentials,
            client=client,
            reconciler=reconciler,
            verifier=verifier,
            settings=cfg,
        )
    return gateways


__all__ = [
    "ADAPTERS",
    "BaseGatewayAdapter",
    "CashGateway",
    "ClickGateway",
    "PaymeGateway",
    "UzumGateway",
    "build_gateways",
]
