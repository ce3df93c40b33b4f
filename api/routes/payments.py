"""
Payments API routes.

Provider callbacks answer in each provider's own envelope and always with
HTTP 200 once the source is accepted; locally initiated endpoints use the
unified ``Response`` envelope. Keep this thin: no protocol details here.
"""
from __future__ import annotations

import ipaddress

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from api.dependencies import get_payment_service, get_refund_service, get_task_dispatcher
from application.dtos.payments import InitiatePayment, ProcessPayment, RefundCommand
from application.services.payment_service import PaymentService
from application.services.refund_service import RefundService
from core.logging_config import get_logger
from core.response import success_response
from core.settings import payment_settings
from domain.payment.entity import PaymentMethod


router = APIRouter(prefix="/payments", tags=["Payments"])
logger = get_logger(__name__)


def _source_allowed(remote_ip: str | None, allowlist: list[str]) -> bool:
    if not allowlist:
        return True
    if not remote_ip:
        return False
    try:
        rip = ipaddress.ip_address(remote_ip)
    except ValueError:
        return False
    for entry in allowlist:
        try:
            if "/" in entry:
                if rip in ipaddress.ip_network(entry, strict=False):
                    return True
            elif rip == ipaddress.ip_address(entry):
                return True
        except ValueError:
            logger.warning("webhook_allowlist_entry_invalid", entry=entry)
    return False


async def callback_source(request: Request) -> None:
    """Optional IP allowlist for provider callbacks."""
    allowlist = payment_settings.webhook.ip_allowlist or []
    remote_ip = getattr(request.state, "client_ip", None)
    if remote_ip is None and request.client:
        remote_ip = request.client.host
    if not _source_allowed(remote_ip, allowlist):
        logger.warning("webhook_source_rejected", remote_ip=remote_ip, path=request.url.path)
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Callback source not allowed")


async def _dispatch(method: PaymentMethod, request: Request, service: PaymentService) -> dict:
    raw_body = await request.body()
    headers = {k: v for k, v in request.headers.items()}
    return await service.handle_callback(method, headers, raw_body)


# ---- provider callbacks ----

@router.post("/click/prepare", summary="Click prepare (action=0)", dependencies=[Depends(callback_source)])
async def click_prepare(request: Request, service: PaymentService = Depends(get_payment_service)):
    return await _dispatch(PaymentMethod.CLICK, request, service)


@router.post("/click/complete", summary="Click complete (action=1)", dependencies=[Depends(callback_source)])
async def click_complete(request: Request, service: PaymentService = Depends(get_payment_service)):
    return await _dispatch(PaymentMethod.CLICK, request, service)


@router.post("/click/callback", summary="Click callback (any action)", dependencies=[Depends(callback_source)])
async def click_callback(request: Request, service: PaymentService = Depends(get_payment_service)):
    return await _dispatch(PaymentMethod.CLICK, request, service)


@router.post("/payme", summary="Payme merchant JSON-RPC", dependencies=[Depends(callback_source)])
async def payme_rpc(request: Request, service: PaymentService = Depends(get_payment_service)):
    return await _dispatch(PaymentMethod.PAYME, request, service)


@router.post("/uzum/callback", summary="Uzum callback", dependencies=[Depends(callback_source)])
async def uzum_callback(request: Request, service: PaymentService = Depends(get_payment_service)):
    return await _dispatch(PaymentMethod.UZUM, request, service)


# ---- locally initiated ----

@router.post("/initiate", summary="Initiate payment")
async def initiate_payment(payload: InitiatePayment, service: PaymentService = Depends(get_payment_service)):
    result = await service.initiate(payload)
    return success_response(data=result.model_dump(mode="json"), message="Payment initiated")


@router.post("/process/{order_id}", summary="Pay the outstanding order amount")
async def process_payment(
    order_id: int,
    payload: ProcessPayment,
    service: PaymentService = Depends(get_payment_service),
):
    result = await service.process(order_id, payload)
    return success_response(data=result.model_dump(mode="json"), message="Payment processed")


@router.get("/status/{order_id}", summary="Latest payment of an order")
async def payment_status(order_id: int, service: PaymentService = Depends(get_payment_service)):
    view = await service.status(order_id)
    return success_response(data=view.model_dump(mode="json"))


@router.get("/by-id/{payment_id}", summary="Get payment")
async def get_payment(payment_id: int, service: PaymentService = Depends(get_payment_service)):
    view = await service.get_payment(payment_id)
    return success_response(data=view.model_dump(mode="json"))


@router.post("/refund/{payment_id}", summary="Refund payment")
async def refund_payment(
    payment_id: int,
    payload: RefundCommand,
    service: RefundService = Depends(get_refund_service),
):
    receipt = await service.refund(payment_id, payload.amount, payload.reason)
    return success_response(data=receipt.model_dump(mode="json"), message="Refund accepted")


@router.post("/uzum/status/{transaction_id}", summary="Poll Uzum payment status")
async def uzum_status(
    transaction_id: str,
    defer: bool = Query(False, description="Queue the poll on a worker instead of waiting"),
    service: PaymentService = Depends(get_payment_service),
    dispatcher=Depends(get_task_dispatcher),
):
    if defer:
        dispatcher.enqueue_status_query(transaction_id)
        return success_response(data={"transaction_id": transaction_id, "queued": True}, message="Queued")
    result = await service.sync_status(transaction_id)
    return success_response(data=result.model_dump(mode="json"))


@router.get("/{method}/verify", summary="Manual payment verification")
async def verify_payment(
    method: str,
    transaction_id: str = Query(...),
    provider_status: str = Query(..., alias="status"),
    service: PaymentService = Depends(get_payment_service),
):
    result = await service.verify(method, transaction_id, provider_status)
    return success_response(data=result.model_dump(mode="json"))
