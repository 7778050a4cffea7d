"""
商户数据库模型 - SQLAlchemy ORM模型
注意：这是基础设施层的实现细节，不是领域模型
"""
from sqlalchemy import Boolean, Column, DateTime, Index, Integer, JSON, String, Text
from datetime import datetime, timezone

from .base import Base


# 旧版平铺归属列，与 merchant.owner_mappings 的上下文键同名
LEGACY_OWNER_COLUMNS = ("branch_id", "store_id", "organization_id", "company_id", "location_id")


class MerchantModel(Base):
    """
    多商户模式下的商户表

    fabric_app_id 与 app_secret 不落库，始终来自共享配置
    """
    __tablename__ = "telebirr_merchants"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=True, comment="商户名称")

    merchant_app_id = Column(String(100), nullable=False, comment="商户应用ID")
    merchant_code = Column(String(100), nullable=False, index=True, comment="商户短码")
    rsa_private_key = Column(Text, nullable=True, comment="RSA私钥（为空时使用共享配置）")
    rsa_public_key = Column(Text, nullable=True, comment="RSA公钥（为空时由私钥推导）")

    # 多态归属
    owner_type = Column(String(100), nullable=True, comment="归属类型: branch/store/organization/...")
    owner_id = Column(String(100), nullable=True, comment="归属ID")

    # 旧版平铺列（legacy_branch_support）
    branch_id = Column(String(100), nullable=True, index=True)
    store_id = Column(String(100), nullable=True, index=True)
    organization_id = Column(String(100), nullable=True)
    company_id = Column(String(100), nullable=True)
    location_id = Column(String(100), nullable=True)

    is_active = Column(Boolean, nullable=False, default=True, index=True, comment="是否启用")
    settings = Column(JSON, nullable=True, comment="商户级配置")

    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="创建时间"
    )
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="更新时间"
    )

    __table_args__ = (
        Index("ix_telebirr_merchants_owner", "owner_type", "owner_id"),
    )

    def __repr__(self):
        return f"<MerchantModel(id={self.id}, merchant_code={self.merchant_code}, owner={self.owner_type}:{self.owner_id})>"
