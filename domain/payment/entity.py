"""
商户领域实体 - 凭证与商户记录
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

from domain.common.exceptions import PaymentConfigurationError


REQUIRED_CREDENTIAL_FIELDS = (
    "fabric_app_id",
    "merchant_app_id",
    "merchant_code",
    "app_secret",
    "rsa_private_key",
)


@dataclass(frozen=True)
class MerchantCredentials:
    """
    已解析的商户凭证

    业务规则：
    1. 发起任何签名请求前五个必填字段必须非空
    2. 公钥缺失时由私钥推导
    """

    fabric_app_id: Optional[str]
    merchant_app_id: Optional[str]
    merchant_code: Optional[str]
    app_secret: Optional[str]
    rsa_private_key: Optional[str]
    rsa_public_key: Optional[str] = None
    merchant_id: Optional[Any] = None
    name: Optional[str] = None

    def missing_fields(self) -> list[str]:
        return [name for name in REQUIRED_CREDENTIAL_FIELDS if not getattr(self, name)]

    def is_complete(self) -> bool:
        return not self.missing_fields()

    def ensure_complete(self) -> "MerchantCredentials":
        missing = self.missing_fields()
        if missing:
            raise PaymentConfigurationError(
                f"Merchant credentials incomplete: {', '.join(missing)}",
                missing=missing,
            )
        return self

    def identity(self) -> str:
        """Stable identity string used for cache keys; excludes every secret."""
        return "|".join(
            str(part or "")
            for part in (self.fabric_app_id, self.merchant_app_id, self.merchant_code, self.merchant_id)
        )

    def __repr__(self) -> str:
        return (
            f"MerchantCredentials(merchant_id={self.merchant_id!r}, "
            f"merchant_app_id={self.merchant_app_id!r}, merchant_code={self.merchant_code!r})"
        )


@dataclass
class MerchantRecord:
    """
    多商户模式下的商户记录（由 MerchantStore 提供）

    owner_type/owner_id 为多态归属；legacy_refs 保存旧版平铺列（如 branch_id）。
    """

    id: Any
    merchant_app_id: Optional[str]
    merchant_code: Optional[str]
    rsa_private_key: Optional[str] = None
    rsa_public_key: Optional[str] = None
    name: Optional[str] = None
    owner_type: Optional[str] = None
    owner_id: Optional[Any] = None
    is_active: bool = True
    settings: dict = field(default_factory=dict)
    legacy_refs: dict = field(default_factory=dict)

    def __repr__(self) -> str:
        return f"MerchantRecord(id={self.id!r}, merchant_code={self.merchant_code!r}, owner={self.owner_type}:{self.owner_id})"
