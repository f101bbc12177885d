"""Signed bearer tokens identifying the calling user.

Login and password handling live outside this service; it only verifies
tokens minted with the shared secret key.
"""

from __future__ import annotations

import hashlib
import hmac
import time

import structlog

from planguard.tenancy.context import Principal

logger = structlog.get_logger(__name__)


class TokenAuth:
    """Stateless HMAC tokens of the form ``<user_id>.<issued_at>.<signature>``."""

    def __init__(self, secret_key: str, max_age: int = 86400) -> None:
        self._secret = secret_key.encode()
        self._max_age = max_age

    def issue(self, user_id: str, issued_at: int | None = None) -> str:
        if "." in user_id:
            msg = "user_id must not contain '.'"
            raise ValueError(msg)
        issued_at = int(time.time()) if issued_at is None else issued_at
        payload = f"{user_id}.{issued_at}"
        return f"{payload}.{self._sign(payload)}"

    def verify(self, token: str) -> Principal | None:
        """Return the principal for a valid, unexpired token, else None."""
        if not token or token.count(".") != 2:
            return None
        user_id, issued_at, signature = token.split(".")
        if not hmac.compare_digest(signature, self._sign(f"{user_id}.{issued_at}")):
            logger.warning("token_signature_invalid")
            return None
        try:
            age = time.time() - int(issued_at)
        except ValueError:
            return None
        if age > self._max_age:
            logger.info("token_expired", user_id=user_id)
            return None
        return Principal(user_id=user_id)

    def _sign(self, data: str) -> str:
        return hmac.new(self._secret, data.encode(), hashlib.sha256).hexdigest()[:32]
