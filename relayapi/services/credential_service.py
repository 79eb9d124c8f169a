"""
Signed credential builder for the DoorDash Drive API.

A fresh token is minted for every outbound request and is valid for
five minutes.
"""
import base64
import binascii
import time
import uuid
from dataclasses import dataclass
from typing import Callable

from jose import JWTError, jwt

from relayapi.errors import ConfigurationError

AUDIENCE = "doordash"
ALGORITHM = "HS256"
TOKEN_TTL_SECONDS = 300
DD_JWT_VERSION = "DD-JWT-V1"


@dataclass(frozen=True)
class SignedCredential:
    """An ephemeral bearer credential."""
    token: str
    issuer: str
    key_id: str
    issued_at: int
    expires_at: int
    algorithm: str = ALGORITHM

    @property
    def authorization_header(self) -> str:
        return f"Bearer {self.token}"


def decode_signing_secret(secret: str) -> bytes:
    """
    Decode a base64 signing secret.

    DoorDash hands out URL-safe secrets without padding; the standard
    alphabet is accepted as well.
    """
    if not secret:
        raise ConfigurationError("DOORDASH_SIGNING_SECRET is not set")

    normalized = secret.strip().replace("-", "+").replace("_", "/")
    normalized += "=" * (-len(normalized) % 4)
    try:
        key = base64.b64decode(normalized, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ConfigurationError(f"DOORDASH_SIGNING_SECRET is not valid base64: {e}") from e

    if not key:
        raise ConfigurationError("DOORDASH_SIGNING_SECRET decodes to an empty key")
    return key


class CredentialBuilder:
    """Service for minting DoorDash JWTs."""

    def __init__(
        self,
        developer_id: str,
        key_id: str,
        signing_secret: str,
        clock: Callable[[], float] = time.time,
    ):
        """
        Validate the static identity and decode the secret once.

        Raises:
            ConfigurationError: if any part of the identity is missing or
                the secret cannot be decoded.
        """
        if not developer_id:
            raise ConfigurationError("DOORDASH_DEVELOPER_ID is not set")
        if not key_id:
            raise ConfigurationError("DOORDASH_KEY_ID is not set")

        self.developer_id = developer_id
        self.key_id = key_id
        self._signing_key = decode_signing_secret(signing_secret)
        self._clock = clock

        # Sign once so a key the JOSE backend rejects fails at startup
        try:
            self.build()
        except JWTError as e:
            raise ConfigurationError(f"Unable to sign DoorDash credential: {e}") from e

    def build(self) -> SignedCredential:
        """
        Mint a new credential.

        Returns:
            SignedCredential expiring TOKEN_TTL_SECONDS after issue
        """
        issued_at = int(self._clock())
        expires_at = issued_at + TOKEN_TTL_SECONDS

        claims = {
            "aud": AUDIENCE,
            "iss": self.developer_id,
            "kid": self.key_id,
            "iat": issued_at,
            "exp": expires_at,
            # Two tokens minted in the same second must still differ
            "jti": uuid.uuid4().hex,
        }
        headers = {"dd-ver": DD_JWT_VERSION, "kid": self.key_id}

        token = jwt.encode(claims, self._signing_key, algorithm=ALGORITHM, headers=headers)

        return SignedCredential(
            token=token,
            issuer=self.developer_id,
            key_id=self.key_id,
            issued_at=issued_at,
            expires_at=expires_at,
        )
