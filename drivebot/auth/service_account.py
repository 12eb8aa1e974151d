"""
Service-account token minting for the Drive API.

A signed RS256 assertion is exchanged at the token endpoint for a short-lived
bearer token (JWT-bearer grant). Minting is explicit and per call; reuse across
uploads goes through a caller-owned TokenCache.
"""
import base64
import binascii
import json
import time
from typing import Callable, Dict, Optional, Tuple

import httpx
import jwt
import structlog
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from ..config import settings
from ..errors import AuthError, ConfigurationError
from ..schemas.uploads import BearerToken, Credential


logger = structlog.get_logger(__name__)

JWT_BEARER_GRANT = "urn:ietf:params:oauth:grant-type:jwt-bearer"
ASSERTION_TTL_S = 3600


def load_credential(raw: Optional[str] = None, scope: Optional[str] = None) -> Credential:
    raw = raw if raw is not None else settings.google_credentials
    if not raw:
        raise ConfigurationError("GOOGLE_CREDENTIALS is not set")
    try:
        info = json.loads(raw)
    except ValueError as e:
        raise ConfigurationError(f"GOOGLE_CREDENTIALS is not valid JSON: {e}")
    if not isinstance(info, dict):
        raise ConfigurationError("GOOGLE_CREDENTIALS must be a JSON object")
    return Credential.from_service_account_info(
        info,
        scope=scope or settings.google_scope,
        token_endpoint=info.get("token_uri") or settings.google_token_endpoint,
    )


def pem_to_der(pem: str) -> bytes:
    """Strip the PEM armor lines and decode the base64 key material."""
    # Keys pasted into env vars often carry literal "\n" sequences
    text = pem.replace("\\n", "\n")
    body = "".join(
        line.strip() for line in text.splitlines() if line.strip() and not line.strip().startswith("-----")
    )
    if not body:
        raise AuthError("Private key is empty")
    try:
        return base64.b64decode(body, validate=True)
    except (binascii.Error, ValueError) as e:
        raise AuthError(f"Private key is not valid base64: {e}")


def load_private_key(pem: str) -> rsa.RSAPrivateKey:
    der = pem_to_der(pem)
    try:
        key = serialization.load_der_private_key(der, password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise AuthError(f"Private key could not be loaded: {e}")
    if not isinstance(key, rsa.RSAPrivateKey):
        raise AuthError("Private key is not an RSA key")
    return key


def build_assertion(credential: Credential, now: int) -> str:
    claims = {
        "iss": credential.issuer,
        "scope": credential.scope,
        "aud": credential.token_endpoint,
        "iat": now,
        "exp": now + ASSERTION_TTL_S,
    }
    key = load_private_key(credential.private_key)
    try:
        return jwt.encode(claims, key, algorithm="RS256", headers={"typ": "JWT"})
    except (jwt.PyJWTError, ValueError, TypeError) as e:
        raise AuthError(f"Failed to sign token assertion: {e}")


class TokenMinter:
    def __init__(self, client: httpx.AsyncClient, clock: Callable[[], float] = time.time):
        self._client = client
        self._clock = clock

    async def mint(self, credential: Credential) -> BearerToken:
        now = int(self._clock())
        assertion = build_assertion(credential, now)
        try:
            response = await self._client.post(
                credential.token_endpoint,
                data={"grant_type": JWT_BEARER_GRANT, "assertion": assertion},
            )
        except httpx.TransportError as e:
            raise AuthError(f"Token endpoint unreachable: {e}")

        if not response.is_success:
            raise AuthError("Token endpoint rejected the assertion", response.status_code, response.text)
        try:
            payload = response.json()
        except ValueError:
            raise AuthError("Token endpoint returned a non-JSON body", response.status_code, response.text)
        access_token = payload.get("access_token") if isinstance(payload, dict) else None
        if not access_token:
            raise AuthError("Token response has no access_token", response.status_code, response.text)

        try:
            expires_in = int(payload.get("expires_in") or ASSERTION_TTL_S)
        except (TypeError, ValueError):
            expires_in = ASSERTION_TTL_S
        logger.info("token_minted", issuer=credential.issuer, expires_in=expires_in)
        return BearerToken(value=access_token, expires_at=now + expires_in)


class TokenCache:
    """Bearer tokens keyed by credential identity, reused until shortly before expiry."""

    def __init__(self, leeway_s: Optional[int] = None, clock: Callable[[], float] = time.time):
        self.leeway_s = settings.token_leeway_s if leeway_s is None else leeway_s
        self._clock = clock
        self._tokens: Dict[Tuple[str, str, str], BearerToken] = {}

    def get(self, credential: Credential) -> Optional[BearerToken]:
        token = self._tokens.get(credential.identity)
        if token is None:
            return None
        if not token.is_valid(self._clock(), self.leeway_s):
            self._tokens.pop(credential.identity, None)
            return None
        return token

    def put(self, credential: Credential, token: BearerToken) -> None:
        self._tokens[credential.identity] = token

    def invalidate(self, credential: Credential) -> None:
        self._tokens.pop(credential.identity, None)


class CachedTokenMinter:
    def __init__(self, minter: TokenMinter, cache: TokenCache):
        self.minter = minter
        self.cache = cache

    async def mint(self, credential: Credential) -> BearerToken:
        token = self.cache.get(credential)
        if token is not None:
            return token
        token = await self.minter.mint(credential)
        self.cache.put(credential, token)
        return token
