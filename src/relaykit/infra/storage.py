"""Object storage for job photos and generated PDFs.

The local provider writes under ``settings.storage_dir`` and hands out
signed, expiring URLs so photos can be fed to the LLM and uploads
can be made without a bearer token.
"""

import asyncio
import logging
import time
from functools import lru_cache
from pathlib import Path
from typing import Optional

from jose import ExpiredSignatureError, JWTError, jwt

from relaykit.app.config import get_settings

logger = logging.getLogger(__name__)

SIGNING_ALGORITHM = "HS256"


class InvalidSignedTokenError(ValueError):
    """Signed token is malformed, tampered with, expired or for another operation."""


class StorageProvider:
    async def read(self, key: str) -> bytes:
        raise NotImplementedError

    async def write(self, key: str, data: bytes, content_type: Optional[str] = None) -> None:
        raise NotImplementedError

    async def exists(self, key: str) -> bool:
        raise NotImplementedError

    async def delete(self, key: str) -> None:
        raise NotImplementedError

    def create_signed_url(self, key: str, expires_s: int, op: str = "read") -> str:
        raise NotImplementedError


class LocalStorageProvider(StorageProvider):
    """Local filesystem storage provider."""

    def __init__(self, base_dir: str, secret: str, public_base_url: str):
        self.base_dir = Path(base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)
        self._secret = secret
        self.public_base_url = public_base_url.rstrip("/")

    def _get_path(self, key: str) -> Path:
        clean_key = key.replace("\\", "/").replace("..", "").lstrip("/")
        return self.base_dir / clean_key

    # ------------------------------------------------------------------
    # Byte access
    # ------------------------------------------------------------------

    async def read(self, key: str) -> bytes:
        path = self._get_path(key)
        return await asyncio.to_thread(path.read_bytes)

    async def write(self, key: str, data: bytes, content_type: Optional[str] = None) -> None:
        path = self._get_path(key)

        def _write() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)

        await asyncio.to_thread(_write)
        logger.debug("Stored %d bytes at %s", len(data), key)

    async def exists(self, key: str) -> bool:
        return await asyncio.to_thread(self._get_path(key).exists)

    async def delete(self, key: str) -> None:
        path = self._get_path(key)
        await asyncio.to_thread(path.unlink, True)

    # ------------------------------------------------------------------
    # Signed tokens
    # ------------------------------------------------------------------

    def sign(self, key: str, expires_s: int, op: str = "read") -> str:
        """Return a JWT granting ``op`` on ``key`` until expiry."""
        payload = {"k": key, "op": op, "exp": int(time.time()) + int(expires_s)}
        return jwt.encode(payload, self._secret, algorithm=SIGNING_ALGORITHM)

    def verify(self, token: str, op: str = "read") -> str:
        """Validate a signed token and return the storage key it grants."""
        try:
            payload = jwt.decode(token, self._secret, algorithms=[SIGNING_ALGORITHM])
        except ExpiredSignatureError:
            raise InvalidSignedTokenError("Token expired")
        except JWTError:
            raise InvalidSignedTokenError("Bad signature or malformed token")

        if payload.get("op") != op:
            raise InvalidSignedTokenError("Token not valid for this operation")
        if not isinstance(payload.get("k"), str):
            raise InvalidSignedTokenError("Malformed token")
        return payload["k"]

    def create_signed_url(self, key: str, expires_s: int, op: str = "read") -> str:
        token = self.sign(key, expires_s, op=op)
        if op == "write":
            return f"{self.public_base_url}/api/uploads/{token}"
        return f"{self.public_base_url}/files/{token}"


@lru_cache
def get_storage() -> LocalStorageProvider:
    """Return the process-wide storage provider."""
    settings = get_settings()
    return LocalStorageProvider(
        base_dir=settings.storage_dir,
        secret=settings.signing_secret,
        public_base_url=settings.public_base_url,
    )
