"""Pytest configuration and fixtures for the upload relay tests."""

import json
from typing import List

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from drivebot.schemas.uploads import BearerToken, Credential
from tests.fakes import TOKEN_ENDPOINT, FakeDrive


@pytest.fixture(scope="session")
def rsa_key():
    """RSA key pair shared by the whole session (generation is slow)."""
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def private_key_pem(rsa_key) -> str:
    return rsa_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("ascii")


@pytest.fixture
def credential(private_key_pem) -> Credential:
    return Credential(
        issuer="relay@project.iam.gserviceaccount.com",
        private_key=private_key_pem,
        scope="https://www.googleapis.com/auth/drive",
        token_endpoint=TOKEN_ENDPOINT,
    )


@pytest.fixture
def service_account_json(private_key_pem) -> str:
    return json.dumps({
        "type": "service_account",
        "client_email": "relay@project.iam.gserviceaccount.com",
        "private_key": private_key_pem,
        "token_uri": TOKEN_ENDPOINT,
    })


@pytest.fixture
def bearer_token() -> BearerToken:
    return BearerToken(value="ya29.test-token", expires_at=4102444800)


@pytest.fixture
def fake_drive() -> FakeDrive:
    return FakeDrive()


@pytest.fixture
def sleeps() -> List[float]:
    return []


@pytest.fixture
def fake_sleep(sleeps):
    async def _sleep(delay: float) -> None:
        sleeps.append(delay)

    return _sleep
