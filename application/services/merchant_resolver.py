"""
Merchant configuration resolution.

Two strategies are chosen once at startup from ``mode``:

- ``single``: one static merchant from the ``single_merchant`` settings.
- ``multi``: a merchant record looked up through ``MerchantStore`` from the
  caller's context. Per-merchant app id, code and keys come from the record;
  ``fabric_app_id`` and ``app_secret`` always come from the shared
  ``single_merchant`` section.
"""
from __future__ import annotations

from typing import Any, Mapping, Optional, Protocol

from application.ports.payment_gateway import MerchantConfigResolver
from core.logging_config import get_logger
from core.settings import TelebirrSettings
from domain.common.exceptions import BusinessException, MerchantNotFoundError
from domain.payment.entity import MerchantCredentials, MerchantRecord
from domain.payment.repository import MerchantStore


logger = get_logger(__name__)


class PublicKeyDeriver(Protocol):
    def derive_public_key(self, private_key: str) -> Optional[str]: ...


def _present(context: Mapping[str, Any], key: str) -> bool:
    return context.get(key) not in (None, "")


class SingleTenantResolver(MerchantConfigResolver):
    mode = "single"

    def __init__(self, settings: TelebirrSettings, signer: PublicKeyDeriver) -> None:
        self._settings = settings
        self._signer = signer
        self._credentials: Optional[MerchantCredentials] = None

    async def resolve(self, context: Optional[Mapping[str, Any]] = None) -> MerchantCredentials:
        # context is ignored: there is exactly one merchant
        if self._credentials is None:
            cfg = self._settings.single_merchant
            public_key = cfg.rsa_public_key
            if not public_key and cfg.rsa_private_key:
                public_key = self._signer.derive_public_key(cfg.rsa_private_key)
            self._credentials = MerchantCredentials(
                fabric_app_id=cfg.fabric_app_id,
                merchant_app_id=cfg.merchant_app_id,
                merchant_code=cfg.merchant_code,
                app_secret=cfg.app_secret,
                rsa_private_key=cfg.rsa_private_key,
                rsa_public_key=public_key,
            )
        return self._credentials


class MultiTenantResolver(MerchantConfigResolver):
    mode = "multi"

    def __init__(self, settings: TelebirrSettings, store: MerchantStore, signer: PublicKeyDeriver) -> None:
        self._settings = settings
        self._store = store
        self._signer = signer

    async def find_merchant(self, context: Mapping[str, Any]) -> Optional[MerchantRecord]:
        """Apply the lookup order; the first strategy that matches wins.

        1. ``merchant_id``
        2. the configurable ``merchant.key_name``
        3. ``owner_type`` + ``owner_id``
        4. ``merchant.owner_mappings`` with the legacy column fallback
        """
        if _present(context, "merchant_id"):
            return self._active(await self._store.find(context["merchant_id"]))

        key_name = self._settings.merchant.key_name
        if _present(context, key_name):
            return self._active(await self._store.find(context[key_name]))

        if _present(context, "owner_type") and _present(context, "owner_id"):
            return self._active(await self._store.find_by_owner(str(context["owner_type"]), context["owner_id"]))

        for context_key, owner_type in self._settings.merchant.owner_mappings.items():
            if not _present(context, context_key):
                continue
            record = self._active(await self._store.find_by_owner(owner_type, context[context_key]))
            if record is not None:
                return record
            if self._settings.merchant.legacy_branch_support:
                record = self._active(await self._store.find_by_legacy_ref(context_key, context[context_key]))
                if record is not None:
                    logger.info("merchant_resolved_by_legacy_column", column=context_key, merchant_id=record.id)
                    return record
        return None

    @staticmethod
    def _active(record: Optional[MerchantRecord]) -> Optional[MerchantRecord]:
        if record is not None and not record.is_active:
            logger.warning("merchant_inactive_skipped", merchant_id=record.id)
            return None
        return record

    async def resolve(self, context: Optional[Mapping[str, Any]] = None) -> MerchantCredentials:
        context = context or {}
        record = await self.find_merchant(context)
        if record is None:
            logger.warning("merchant_not_found", context_keys=sorted(str(k) for k in context))
            raise MerchantNotFoundError([str(k) for k in context])

        shared = self._settings.single_merchant
        private_key = record.rsa_private_key or shared.rsa_private_key
        public_key = record.rsa_public_key or shared.rsa_public_key
        if not public_key and private_key:
            public_key = self._signer.derive_public_key(private_key)

        return MerchantCredentials(
            fabric_app_id=shared.fabric_app_id,
            merchant_app_id=record.merchant_app_id,
            merchant_code=record.merchant_code,
            app_secret=shared.app_secret,
            rsa_private_key=private_key,
            rsa_public_key=public_key,
            merchant_id=record.id,
            name=record.name,
        )


async def validate_configuration(
    resolver: MerchantConfigResolver,
    context: Optional[Mapping[str, Any]] = None,
) -> bool:
    """True when resolution succeeds and every required credential is present."""
    try:
        credentials = await resolver.resolve(context)
    except BusinessException as exc:
        logger.warning("merchant_configuration_invalid", mode=resolver.mode, code=int(exc.code))
        return False
    if not credentials.is_complete():
        logger.warning("merchant_configuration_incomplete", mode=resolver.mode, missing=credentials.missing_fields())
        return False
    return True


def build_resolver(
    settings: TelebirrSettings,
    signer: PublicKeyDeriver,
    store: Optional[MerchantStore] = None,
) -> MerchantConfigResolver:
    if settings.mode == "multi":
        if store is None:
            raise ValueError("multi-tenant mode requires a MerchantStore")
        return MultiTenantResolver(settings, store, signer)
    return SingleTenantResolver(settings, signer)


__all__ = [
    "SingleTenantResolver",
    "MultiTenantResolver",
    "validate_configuration",
    "build_resolver",
]
