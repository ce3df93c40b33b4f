"""Entry point for a payments worker.

Consumes both payment queues: ``high`` for single status queries and
``default`` for the periodic pending sweep. Run beat separately
(``celery -A infrastructure.tasks beat``).
"""
from __future__ import annotations

from .config.celery import celery_app

PAYMENT_QUEUES = ("high", "default")


def main() -> None:
    celery_app.worker_main(
        argv=[
            "worker",
            "--hostname=payments@%h",
            f"--queues={','.join(PAYMENT_QUEUES)}",
            "--loglevel=INFO",
        ]
    )


if __name__ == "__main__":
    main()
