"""Infrastructure models package exports."""
from .base import Base
from .merchant import MerchantModel, LEGACY_OWNER_COLUMNS

metadata = Base.metadata

__all__ = [
    "Base",
    "metadata",
    "MerchantModel",
    "LEGACY_OWNER_COLUMNS",
]
