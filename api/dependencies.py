"""
API依赖项 - 支付服务装配

服务在应用启动时构建并挂在 app.state 上；测试通过 dependency_overrides 替换。
"""
from typing import Optional

from fastapi import Request

from application.services.gateways import build_gateways
from application.services.payment_service import PaymentService
from application.services.refund_service import RefundService
from core.settings import PaymentSettings, payment_settings
from domain.common.unit_of_work import UnitOfWorkFactory
from domain.payment.service import PaymentStatusReconciler


def build_services(
    uow_factory: UnitOfWorkFactory,
    settings: Optional[PaymentSettings] = None,
) -> tuple[PaymentService, RefundService]:
    """构建共享同一组网关适配器的支付服务与退款服务"""
    cfg = settings or payment_settings
    reconciler = PaymentStatusReconciler()
    gateways = build_gateways(uow_factory, cfg, reconciler=reconciler)
    payments = PaymentService(uow_factory=uow_factory, gateways=gateways, reconciler=reconciler, settings=cfg)
    refunds = RefundService(uow_factory=uow_factory, gateways=gateways, reconciler=reconciler, settings=cfg)
    return payments, refunds


async def get_payment_service(request: Request) -> PaymentService:
    return request.app.state.payment_service


async def get_refund_service(request: Request) -> RefundService:
    return request.app.state.refund_service


def get_task_dispatcher():
    """Celery 任务投递门面；延迟导入，未使用后台任务时无需加载 Celery 配置"""
    from infrastructure.tasks.utils.dispatcher import TaskDispatcher
    return TaskDispatcher()
