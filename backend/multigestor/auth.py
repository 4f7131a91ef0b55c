"""
Credential store.

Passwords are stored as ``pbkdf2_sha256$iters$salt$hash``. Nothing in here
touches the database, so it can be exercised on its own.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import secrets
from functools import lru_cache

from starlette.concurrency import run_in_threadpool

from .config import settings

ALGORITHM = "pbkdf2_sha256"


def _b64(b: bytes) -> str:
    return base64.urlsafe_b64encode(b).decode("utf-8").rstrip("=")


def _b64d(s: str) -> bytes:
    pad = "=" * (-len(s) % 4)
    return base64.urlsafe_b64decode((s + pad).encode("utf-8"))


def hash_password(pw: str, iterations: int | None = None) -> str:
    iters = iterations or settings.pbkdf2_iters
    salt = secrets.token_bytes(16)
    dk = hashlib.pbkdf2_hmac("sha256", pw.encode("utf-8"), salt, iters, dklen=32)
    return f"{ALGORITHM}${iters}${_b64(salt)}${_b64(dk)}"


def verify_password(pw: str, pw_hash: str | None) -> bool:
    """Return True only if ``pw`` matches ``pw_hash``.

    A missing or malformed digest fails closed.
    """
    if not pw_hash or pw is None:
        return False
    try:
        algo, iters_s, salt_s, hash_s = pw_hash.split("$", 3)
        if algo != ALGORITHM:
            return False
        iters = int(iters_s)
        salt = _b64d(salt_s)
        expected = _b64d(hash_s)
        if iters <= 0 or not salt or not expected:
            return False
        dk = hashlib.pbkdf2_hmac("sha256", pw.encode("utf-8"), salt, iters, dklen=len(expected))
        return hmac.compare_digest(dk, expected)
    except (ValueError, TypeError):
        return False


@lru_cache(maxsize=1)
def _dummy_hash() -> str:
    return hash_password(secrets.token_urlsafe(16))


async def hash_password_async(pw: str) -> str:
    return await run_in_threadpool(hash_password, pw)


async def verify_password_async(pw: str, pw_hash: str | None) -> bool:
    return await run_in_threadpool(verify_password, pw, pw_hash)


async def burn_verification(pw: str) -> None:
    """Spend the same work as a real check, for lookups that found no account."""
    await run_in_threadpool(verify_password, pw, _dummy_hash())
