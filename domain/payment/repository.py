"""
商户仓储接口 - 多商户解析所需的只读查询
"""
from abc import ABC, abstractmethod
from typing import Any, Optional

from .entity import MerchantRecord


class MerchantStore(ABC):
    """商户只读仓储抽象接口"""

    @abstractmethod
    async def find(self, merchant_id: Any) -> Optional[MerchantRecord]:
        """根据主键获取商户"""
        pass

    @abstractmethod
    async def find_by_owner(self, owner_type: str, owner_id: Any) -> Optional[MerchantRecord]:
        """根据多态归属 (owner_type, owner_id) 获取商户"""
        pass

    @abstractmethod
    async def find_by_legacy_ref(self, column: str, value: Any) -> Optional[MerchantRecord]:
        """根据旧版平铺列（如 branch_id）获取商户，兼容历史数据"""
        pass
