import pytest

from application.services.merchant_resolver import (
    MultiTenantResolver,
    SingleTenantResolver,
    build_resolver,
    validate_configuration,
)
from domain.common.exceptions import MerchantNotFoundError, PaymentConfigurationError
from domain.payment.entity import MerchantRecord
from infrastructure.external.payments.signer import RsaSigner
from infrastructure.repositories.merchant_repository import InMemoryMerchantStore


def _record(id, code, **kwargs) -> MerchantRecord:
    return MerchantRecord(id=id, merchant_app_id=f"app-{id}", merchant_code=code, **kwargs)


@pytest.fixture
def multi_settings(make_settings):
    return make_settings(mode="multi")


@pytest.fixture
def store(rsa_keys):
    private_pem, _ = rsa_keys
    return InMemoryMerchantStore(
        [
            _record(1, "M1", rsa_private_key=private_pem),
            _record(2, "M2", owner_type="branch", owner_id="7"),
            _record(3, "M3", legacy_refs={"branch_id": "9"}),
            _record(4, "M4", owner_type="branch", owner_id="11", is_active=False),
            _record(5, "M5", owner_type="store", owner_id="21"),
        ]
    )


@pytest.mark.asyncio
async def test_single_tenant_derives_missing_public_key(make_settings, rsa_keys):
    _, public_pem = rsa_keys
    resolver = SingleTenantResolver(make_settings(), RsaSigner())
    credentials = await resolver.resolve({"merchant_id": "ignored"})
    assert credentials.merchant_code == "123456"
    assert credentials.rsa_public_key.strip() == public_pem.strip()
    assert await resolver.resolve() is credentials


@pytest.mark.asyncio
async def test_direct_merchant_id(multi_settings, store):
    resolver = MultiTenantResolver(multi_settings, store, RsaSigner())
    credentials = await resolver.resolve({"merchant_id": 1})
    assert credentials.merchant_code == "M1"
    assert credentials.merchant_id == 1


@pytest.mark.asyncio
async def test_merchant_id_takes_precedence_over_owner(multi_settings, store):
    resolver = MultiTenantResolver(multi_settings, store, RsaSigner())
    credentials = await resolver.resolve({"merchant_id": 5, "branch_id": 7})
    assert credentials.merchant_code == "M5"


@pytest.mark.asyncio
async def test_custom_key_name(make_settings, store):
    settings = make_settings(mode="multi", merchant={"key_name": "telebirr_merchant"})
    resolver = MultiTenantResolver(settings, store, RsaSigner())
    credentials = await resolver.resolve({"telebirr_merchant": "2"})
    assert credentials.merchant_code == "M2"


@pytest.mark.asyncio
async def test_explicit_owner(multi_settings, store):
    resolver = MultiTenantResolver(multi_settings, store, RsaSigner())
    credentials = await resolver.resolve({"owner_type": "store", "owner_id": 21})
    assert credentials.merchant_code == "M5"


@pytest.mark.asyncio
async def test_owner_mapping_then_legacy_column(multi_settings, store):
    resolver = MultiTenantResolver(multi_settings, store, RsaSigner())
    assert (await resolver.resolve({"branch_id": 7})).merchant_code == "M2"
    assert (await resolver.resolve({"branch_id": 9})).merchant_code == "M3"


@pytest.mark.asyncio
async def test_legacy_column_disabled(make_settings, store):
    settings = make_settings(mode="multi", merchant={"legacy_branch_support": False})
    resolver = MultiTenantResolver(settings, store, RsaSigner())
    with pytest.raises(MerchantNotFoundError):
        await resolver.resolve({"branch_id": 9})


@pytest.mark.asyncio
async def test_inactive_merchant_is_never_resolved(multi_settings, store):
    resolver = MultiTenantResolver(multi_settings, store, RsaSigner())
    with pytest.raises(MerchantNotFoundError):
        await resolver.resolve({"branch_id": 11})
    with pytest.raises(MerchantNotFoundError):
        await resolver.resolve({"merchant_id": 4})


@pytest.mark.asyncio
async def test_not_found_reports_key_names_only(multi_settings, store):
    resolver = MultiTenantResolver(multi_settings, store, RsaSigner())
    with pytest.raises(MerchantNotFoundError) as exc_info:
        await resolver.resolve({"branch_id": "secret-tenant-42"})
    assert exc_info.value.details == {"context_keys": ["branch_id"]}
    assert "secret-tenant-42" not in str(exc_info.value.details)


@pytest.mark.asyncio
async def test_shared_app_secret_and_key_fallback(multi_settings, store, rsa_keys):
    private_pem, public_pem = rsa_keys
    resolver = MultiTenantResolver(multi_settings, store, RsaSigner())
    credentials = await resolver.resolve({"branch_id": 7})
    # record 2 has no keys: fall back to the shared section
    assert credentials.fabric_app_id == "fabric-app"
    assert credentials.app_secret == "app-secret"
    assert credentials.rsa_private_key == private_pem
    assert credentials.rsa_public_key.strip() == public_pem.strip()


@pytest.mark.asyncio
async def test_missing_fields_raise_configuration_error(make_settings):
    settings = make_settings(single_merchant={"app_secret": None})
    credentials = await SingleTenantResolver(settings, RsaSigner()).resolve()
    assert credentials.missing_fields() == ["app_secret"]
    with pytest.raises(PaymentConfigurationError):
        credentials.ensure_complete()


@pytest.mark.asyncio
async def test_validate_configuration(make_settings, multi_settings, store):
    assert await validate_configuration(SingleTenantResolver(make_settings(), RsaSigner()))
    incomplete = make_settings(single_merchant={"merchant_code": None})
    assert not await validate_configuration(SingleTenantResolver(incomplete, RsaSigner()))

    multi = MultiTenantResolver(multi_settings, store, RsaSigner())
    assert await validate_configuration(multi, {"merchant_id": 1})
    assert not await validate_configuration(multi, {"merchant_id": 404})


def test_build_resolver_requires_store_in_multi_mode(make_settings, multi_settings, store):
    assert isinstance(build_resolver(make_settings(), RsaSigner()), SingleTenantResolver)
    assert isinstance(build_resolver(multi_settings, RsaSigner(), store), MultiTenantResolver)
    with pytest.raises(ValueError):
        build_resolver(multi_settings, RsaSigner())
