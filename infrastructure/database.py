"""
数据库连接管理

支付表依赖 version 列做条件更新（乐观锁），因此会话关闭 expire_on_commit，
提交后实体仍可读取；事务边界由工作单元控制。
"""
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from core.config import settings
from infrastructure.models import Base


_ASYNC_DRIVERS = {
    "postgresql": "postgresql+asyncpg",
    "postgres": "postgresql+asyncpg",
    "sqlite": "sqlite+aiosqlite",
}


def _build_async_url(database_url: str) -> str:
    """补全异步驱动名（postgresql → postgresql+asyncpg）"""
    url = make_url(database_url)
    if "+" in url.drivername:
        return database_url
    if url.drivername not in _ASYNC_DRIVERS:
        raise ValueError(f"不支持的数据库驱动: {url.drivername}，请在 DATABASE__URL 中使用异步驱动")
    return url.set(drivername=_ASYNC_DRIVERS[url.drivername]).render_as_string(hide_password=False)


def _engine_options(async_url: str) -> dict:
    options = {"echo": settings.database.echo}
    if not async_url.startswith("sqlite"):
        # 回调流量稀疏，连接可能被中间设备静默断开
        options["pool_pre_ping"] = True
    return options


_async_url = _build_async_url(settings.database.url)
engine = create_async_engine(_async_url, **_engine_options(_async_url))

AsyncSessionLocal = async_sessionmaker(bind=engine, expire_on_commit=False)


async def create_tables():
    """按 ORM 元数据建表（仅开发环境；生产使用 Alembic 迁移）"""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

