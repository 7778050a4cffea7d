"""Pytest bootstrap configuration.

Environment defaults are set before application settings are imported so a
developer's local .env cannot switch tests to Redis or multi-tenant mode.
"""
import os

os.environ.setdefault("REDIS__URL", "")
os.environ.setdefault("TELEBIRR__MODE", "single")

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from core.settings import TelebirrSettings
from domain.payment.entity import MerchantCredentials
from infrastructure.events import InMemoryEventSink


def _pem_private(key: rsa.RSAPrivateKey) -> str:
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("ascii")


def _pem_public(key: rsa.RSAPrivateKey) -> str:
    return key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode("ascii")


@pytest.fixture(scope="session")
def rsa_keys() -> tuple[str, str]:
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    return _pem_private(key), _pem_public(key)


@pytest.fixture
def make_settings(rsa_keys):
    """Build TelebirrSettings for a complete single merchant; keyword overrides are merged per section."""
    private_pem, _ = rsa_keys

    def _make(**overrides) -> TelebirrSettings:
        data = {
            "mode": "single",
            "api": {"base_url": "https://gateway.test/apiaccess/payment/gateway", "timeout": 5},
            "single_merchant": {
                "fabric_app_id": "fabric-app",
                "merchant_app_id": "merchant-app",
                "merchant_code": "123456",
                "app_secret": "app-secret",
                "rsa_private_key": private_pem,
            },
            "retry": {"attempts": 1, "backoff_seconds": 0},
        }
        for section, value in overrides.items():
            if isinstance(value, dict) and isinstance(data.get(section), dict):
                data[section] = {**data[section], **value}
            else:
                data[section] = value
        return TelebirrSettings(**data)

    return _make


@pytest.fixture
def credentials(rsa_keys) -> MerchantCredentials:
    private_pem, public_pem = rsa_keys
    return MerchantCredentials(
        fabric_app_id="fabric-app",
        merchant_app_id="merchant-app",
        merchant_code="123456",
        app_secret="app-secret",
        rsa_private_key=private_pem,
        rsa_public_key=public_pem,
    )


@pytest.fixture
def event_sink() -> InMemoryEventSink:
    return InMemoryEventSink()
