"""
商户仓储实现 - 使用SQLAlchemy实现只读查询，另提供内存实现用于单进程/测试
"""
from typing import Any, Callable, Iterable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.logging_config import get_logger
from domain.payment.entity import MerchantRecord
from domain.payment.repository import MerchantStore
from infrastructure.models.merchant import LEGACY_OWNER_COLUMNS, MerchantModel


logger = get_logger(__name__)

SessionFactory = Callable[[], AsyncSession]


def _to_entity(model: MerchantModel) -> MerchantRecord:
    """将数据库模型转换为领域实体"""
    return MerchantRecord(
        id=model.id,
        name=model.name,
        merchant_app_id=model.merchant_app_id,
        merchant_code=model.merchant_code,
        rsa_private_key=model.rsa_private_key,
        rsa_public_key=model.rsa_public_key,
        owner_type=model.owner_type,
        owner_id=model.owner_id,
        is_active=bool(model.is_active),
        settings=model.settings or {},
        legacy_refs={
            column: getattr(model, column)
            for column in LEGACY_OWNER_COLUMNS
            if getattr(model, column) is not None
        },
    )


class SQLAlchemyMerchantStore(MerchantStore):
    """商户仓储的SQLAlchemy实现；每次查询使用独立会话"""

    def __init__(self, session_factory: SessionFactory):
        self._session_factory = session_factory

    async def _first(self, stmt) -> Optional[MerchantRecord]:
        async with self._session_factory() as session:
            result = await session.execute(stmt.limit(1))
            model = result.scalar_one_or_none()
        return _to_entity(model) if model else None

    async def find(self, merchant_id: Any) -> Optional[MerchantRecord]:
        try:
            pk = int(merchant_id)
        except (TypeError, ValueError):
            logger.warning("merchant_id_not_integer", merchant_id=str(merchant_id))
            return None
        return await self._first(select(MerchantModel).where(MerchantModel.id == pk))

    async def find_by_owner(self, owner_type: str, owner_id: Any) -> Optional[MerchantRecord]:
        stmt = select(MerchantModel).where(
            MerchantModel.owner_type == owner_type,
            MerchantModel.owner_id == str(owner_id),
        ).order_by(MerchantModel.id)
        return await self._first(stmt)

    async def find_by_legacy_ref(self, column: str, value: Any) -> Optional[MerchantRecord]:
        if column not in LEGACY_OWNER_COLUMNS:
            return None
        stmt = select(MerchantModel).where(getattr(MerchantModel, column) == str(value)).order_by(MerchantModel.id)
        return await self._first(stmt)


class InMemoryMerchantStore(MerchantStore):
    """内存商户仓储（单进程/测试）"""

    def __init__(self, records: Iterable[MerchantRecord] = ()):
        self._records: list[MerchantRecord] = list(records)

    def add(self, record: MerchantRecord) -> None:
        self._records.append(record)

    async def find(self, merchant_id: Any) -> Optional[MerchantRecord]:
        return next((r for r in self._records if str(r.id) == str(merchant_id)), None)

    async def find_by_owner(self, owner_type: str, owner_id: Any) -> Optional[MerchantRecord]:
        return next(
            (r for r in self._records if r.owner_type == owner_type and str(r.owner_id) == str(owner_id)),
            None,
        )

    async def find_by_legacy_ref(self, column: str, value: Any) -> Optional[MerchantRecord]:
        return next(
            (r for r in self._records if str(r.legacy_refs.get(column, "")) == str(value)),
            None,
        )
