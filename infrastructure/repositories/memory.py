"""In-memory payment/order persistence.

Single-process only. Useful for local dev and tests. Writes apply to the
shared store immediately; the owning unit of work keeps an undo log so a
rollback restores the rows it touched.
"""
from __future__ import annotations

import copy
import itertools
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from domain.common.exceptions import PaymentAlreadyExistsException, StalePaymentException
from domain.order.entity import Order
from domain.order.repository import OrderRepository
from domain.payment.entity import Payment, PaymentMethod, PaymentStatus
from domain.payment.repository import PaymentRepository


class InMemoryStore:
    """Shared rows keyed by id; entities are copied on the way in and out."""

    def __init__(self) -> None:
        self.payments: Dict[int, Payment] = {}
        self.orders: Dict[int, Order] = {}
        self._ids = itertools.count(1)

    def next_payment_id(self) -> int:
        return next(self._ids)

    def add_order(self, order: Order) -> Order:
        self.orders[order.id] = copy.deepcopy(order)
        return order

    def order(self, order_id: int) -> Optional[Order]:
        """Direct read for assertions and seeding."""
        found = self.orders.get(order_id)
        return copy.deepcopy(found) if found else None

    def payment(self, payment_id: int) -> Optional[Payment]:
        found = self.payments.get(payment_id)
        return copy.deepcopy(found) if found else None

    def payments_for(self, order_id: int) -> List[Payment]:
        return [copy.deepcopy(p) for p in self.payments.values() if p.order_id == order_id]


# Undo entries restore a table row to a previous value (None deletes it)
UndoLog = List[Callable[[], None]]


class InMemoryPaymentRepository(PaymentRepository):
    def __init__(self, store: InMemoryStore, undo: UndoLog):
        self._store = store
        self._undo = undo

    def _snapshot(self, payment_id: int) -> None:
        previous = copy.deepcopy(self._store.payments.get(payment_id))

        def _restore() -> None:
            if previous is None:
                self._store.payments.pop(payment_id, None)
            else:
                self._store.payments[payment_id] = previous

        self._undo.append(_restore)

    async def create(self, payment: Payment) -> Payment:
        if any(p.transaction_id == payment.transaction_id for p in self._store.payments.values()):
            raise PaymentAlreadyExistsException(payment.transaction_id)
        now = datetime.now(timezone.utc)
        payment.id = self._store.next_payment_id()
        payment.created_at = payment.created_at or now
        payment.updated_at = payment.updated_at or now
        payment.version = 0
        self._snapshot(payment.id)
        self._store.payments[payment.id] = copy.deepcopy(payment)
        return payment

    async def get_by_id(self, payment_id: int) -> Optional[Payment]:
        return self._store.payment(payment_id)

    async def get_by_transaction_id(self, transaction_id: str) -> Optional[Payment]:
        for p in self._store.payments.values():
            if p.transaction_id == transaction_id:
                return copy.deepcopy(p)
        return None

    async def get_latest_by_order(self, order_id: int) -> Optional[Payment]:
        payments = await self.list_by_order(order_id)
        return payments[-1] if payments else None

    async def list_by_order(
        self,
        order_id: int,
        *,
        method: Optional[PaymentMethod] = None,
        status: Optional[PaymentStatus] = None,
    ) -> List[Payment]:
        rows = [
            p for p in self._store.payments.values()
            if p.order_id == order_id
            and (method is None or p.method == method)
            and (status is None or p.status == status)
        ]
        rows.sort(key=lambda p: (p.created_at, p.id))
        return [copy.deepcopy(p) for p in rows]

    async def list_by_method_created_between(
        self,
        method: PaymentMethod,
        start: datetime,
        end: datetime,
        statuses: Optional[List[PaymentStatus]] = None,
    ) -> List[Payment]:
        rows = [
            p for p in self._store.payments.values()
            if p.method == method
            and p.create_time is not None
            and start <= p.create_time <= end
            and (not statuses or p.status in statuses)
        ]
        rows.sort(key=lambda p: p.create_time)
        return [copy.deepcopy(p) for p in rows]

    async def list_pending(
        self,
        method: PaymentMethod,
        *,
        older_than: datetime,
        limit: int = 100,
    ) -> List[Payment]:
        rows = [
            p for p in self._store.payments.values()
            if p.method == method
            and p.status == PaymentStatus.PENDING
            and p.created_at is not None
            and p.created_at <= older_than
        ]
        rows.sort(key=lambda p: p.created_at)
        return [copy.deepcopy(p) for p in rows[:limit]]

    async def update(self, payment: Payment, *, expected_version: int) -> Payment:
        current = self._store.payments.get(payment.id)
        if current is None or current.version != expected_version:
            raise StalePaymentException(payment.id, expected_version)
        self._snapshot(payment.id)
        payment.version = expected_version + 1
        self._store.payments[payment.id] = copy.deepcopy(payment)
        return payment


class InMemoryOrderRepository(OrderRepository):
    def __init__(self, store: InMemoryStore, undo: UndoLog):
        self._store = store
        self._undo = undo

    async def get_by_id(self, order_id: int, *, for_update: bool = False) -> Optional[Order]:
        return self._store.order(order_id)

    async def update(self, order: Order) -> Order:
        previous = copy.deepcopy(self._store.orders.get(order.id))

        def _restore() -> None:
            if previous is not None:
                self._store.orders[order.id] = previous

        self._undo.append(_restore)
        self._store.orders[order.id] = copy.deepcopy(order)
        return order
