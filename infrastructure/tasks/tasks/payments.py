"""Payment status polling tasks.

Each task runs its coroutine with ``asyncio.run`` so the worker never shares
an event loop (or pooled HTTP clients) between task invocations.
"""
from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, TypeVar

from celery import shared_task

from application.services.gateways import build_gateways
from application.services.payment_service import PaymentService
from core.config import settings
from core.logging_config import get_logger
from core.settings import payment_settings
from domain.payment.entity import PaymentMethod
from infrastructure.external.payments.exceptions import PaymentRecoverableError
from infrastructure.unit_of_work import sqlalchemy_uow_factory

from ..utils.base_task import BaseTask

logger = get_logger(__name__)

T = TypeVar("T")


def _run(fn: Callable[[PaymentService], Awaitable[T]]) -> T:
    async def _inner() -> T:
        service = PaymentService(
            uow_factory=sqlalchemy_uow_factory,
            gateways=build_gateways(sqlalchemy_uow_factory, payment_settings),
            settings=payment_settings,
        )
        try:
            return await fn(service)
        finally:
            await service.aclose()

    return asyncio.run(_inner())


@shared_task(
    name="payments.query_status",
    bind=True,
    base=BaseTask,
    autoretry_for=(PaymentRecoverableError,),
    retry_backoff=True,
    retry_backoff_max=600,
    retry_jitter=True,
    retry_kwargs={"max_retries": 5},
)
def query_status(self, transaction_id: str) -> dict[str, Any]:
    """Poll the provider for one payment and apply its answer."""
    result = _run(lambda service: service.sync_status(transaction_id))
    logger.info("payment_status_polled", transaction_id=transaction_id, status=result.status.value)
    return result.model_dump(mode="json")


@shared_task(name="payments.poll_pending", bind=True, base=BaseTask)
def poll_pending(self, method: str = "UZUM", limit: int | None = None) -> dict[str, int]:
    """Poll every stale PENDING payment of ``method``."""
    return _run(
        lambda service: service.poll_pending(
            PaymentMethod(method.upper()),
            min_age_seconds=settings.PAYMENT_POLL_MIN_AGE_SECONDS,
            limit=limit or settings.PAYMENT_POLL_BATCH_SIZE,
        )
    )
