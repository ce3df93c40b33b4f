"""Common base task for payment Celery jobs"""
from __future__ import annotations

from typing import Any

from celery import Task
from core.logging_config import get_logger

logger = get_logger(__name__)


def _payment_context(args: tuple, kwargs: dict[str, Any]) -> dict[str, Any]:
    """Pick the identifiers worth logging; task payloads are never logged whole."""
    ctx = {k: kwargs[k] for k in ("transaction_id", "method") if k in kwargs}
    if not ctx and args:
        ctx["target"] = args[0]
    return ctx


class BaseTask(Task):
    """Structured logging around failures, retries and successes."""

    def on_failure(self, exc, task_id, args, kwargs, einfo):  # type: ignore[override]
        logger.error(
            "celery_task_failure",
            task_id=task_id,
            task_name=self.name,
            error=str(exc),
            error_type=type(exc).__name__,
            **_payment_context(args, kwargs),
        )
        super().on_failure(exc, task_id, args, kwargs, einfo)

    def on_retry(self, exc, task_id, args, kwargs, einfo):  # type: ignore[override]
        logger.warning(
            "celery_task_retry",
            task_id=task_id,
            task_name=self.name,
            retries=self.request.retries,
            error=str(exc),
            **_payment_context(args, kwargs),
        )
        super().on_retry(exc, task_id, args, kwargs, einfo)

    def on_success(self, retval, task_id, args, kwargs):  # type: ignore[override]
        logger.info(
            "celery_task_success",
            task_id=task_id,
            task_name=self.name,
            **_payment_context(args, kwargs),
        )
        super().on_success(retval, task_id, args, kwargs)
