"""Pairing codes and bearer tokens for extension authentication."""

from __future__ import annotations

import logging
import secrets
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from smart_time_tracker.core.errors import GenerationExhausted, InvalidOrExpired, NotFoundOrExpired, ValidationError
from smart_time_tracker.core.models import utcnow
from smart_time_tracker.server.stores import PairingCodeStore, PairingEntry, TokenEntry, TokenStore

logger = logging.getLogger(__name__)

PAIR_CODE_TTL_SECONDS = 2 * 60
TOKEN_TTL_SECONDS = 30 * 24 * 60 * 60
CODE_GENERATION_ATTEMPTS = 5
MIN_USER_ID_LENGTH = 6


def normalize_string(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def random_pair_code() -> str:
    """Six decimal digits, zero-padded."""
    return f"{secrets.randbelow(1_000_000):06d}"


def random_token() -> str:
    """32 random bytes as 64 hex characters."""
    return secrets.token_hex(32)


@dataclass(frozen=True)
class PairingCodeIssued:
    pair_code: str
    expires_in_seconds: int


@dataclass(frozen=True)
class TokenIssued:
    extension_token: str
    user_id: str
    token_expires_in_seconds: int


class TokenService:
    """Issues and validates long-lived bearer tokens."""

    def __init__(
        self,
        store: TokenStore,
        *,
        ttl_seconds: int = TOKEN_TTL_SECONDS,
        clock: Callable[[], datetime] = utcnow,
        token_factory: Callable[[], str] = random_token,
    ):
        self.store = store
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._token_factory = token_factory

    def issue(self, user_id: str) -> TokenIssued:
        created_at = self._clock()
        token = self._token_factory()
        self.store.put(
            token,
            TokenEntry(user_id=user_id, created_at=created_at),
            expires_at=created_at + timedelta(seconds=self.ttl_seconds),
        )
        return TokenIssued(
            extension_token=token,
            user_id=user_id,
            token_expires_in_seconds=self.ttl_seconds,
        )

    def validate(self, token: str) -> str:
        """Return the user bound to ``token``."""
        self.store.sweep_expired()
        entry = self.store.get_if_live(normalize_string(token))
        if entry is None or not entry.user_id:
            raise InvalidOrExpired()
        return entry.user_id

    def count(self) -> int:
        self.store.sweep_expired()
        return len(self.store)


class PairingService:
    """Issues single-use pairing codes and redeems them for tokens."""

    def __init__(
        self,
        store: PairingCodeStore,
        tokens: TokenService,
        *,
        ttl_seconds: int = PAIR_CODE_TTL_SECONDS,
        max_attempts: int = CODE_GENERATION_ATTEMPTS,
        min_user_id_length: int = MIN_USER_ID_LENGTH,
        clock: Callable[[], datetime] = utcnow,
        code_factory: Callable[[], str] = random_pair_code,
    ):
        self.store = store
        self.tokens = tokens
        self.ttl_seconds = ttl_seconds
        self.max_attempts = max_attempts
        self.min_user_id_length = min_user_id_length
        self._clock = clock
        self._code_factory = code_factory

    def start(self, user_id: Any) -> PairingCodeIssued:
        """Issue a fresh code bound to ``user_id``."""
        user_id = normalize_string(user_id)
        if not user_id:
            raise ValidationError("Missing user_id")
        if len(user_id) < self.min_user_id_length:
            raise ValidationError("Invalid user_id")

        self.store.sweep_expired()

        expires_at = self._clock() + timedelta(seconds=self.ttl_seconds)
        entry = PairingEntry(user_id=user_id, expires_at=expires_at)
        for _ in range(self.max_attempts):
            code = self._code_factory()
            if self.store.put_if_absent(code, entry, expires_at):
                logger.info(f"[pair/start] issued code {code} for user {user_id}")
                return PairingCodeIssued(pair_code=code, expires_in_seconds=self.ttl_seconds)

        logger.error(f"[pair/start] no free code after {self.max_attempts} attempts")
        raise GenerationExhausted()

    def finish(self, pair_code: Any) -> TokenIssued:
        """Consume ``pair_code`` and issue a token for its user."""
        code = normalize_string(pair_code)
        if not code:
            raise ValidationError("Missing pair_code")

        self.store.sweep_expired()

        # Deleted before the token exists; a second redemption finds nothing
        entry = self.store.pop_if_live(code)
        if entry is None:
            raise NotFoundOrExpired()

        issued = self.tokens.issue(entry.user_id)
        logger.info(f"[pair/finish] exchanged code {code} for token (user {entry.user_id})")
        return issued

    def count(self) -> int:
        self.store.sweep_expired()
        return len(self.store)
