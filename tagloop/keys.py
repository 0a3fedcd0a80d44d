"""Provider credential pool shared across sessions.

Keys rotate on rate limits. A key that is rate limited a second time is
assumed to have hit a daily quota and is blocked for longer. When every key
is blocked for the current model, the model is blocked and the pool falls
back to the next model with all keys available again.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Sequence

LOGGER = logging.getLogger(__name__)

PERMISSION_DENIED_BLOCK_SECONDS = 7 * 24 * 60 * 60


@dataclass(frozen=True, slots=True)
class Credential:
    """The key/model pair a generation attempt should use."""

    api_key: str
    model: str
    key_index: int
    model_index: int

    @property
    def masked(self) -> str:
        return mask_key(self.api_key)


@dataclass(slots=True)
class _Block:
    until: float
    strikes: int


@dataclass(frozen=True, slots=True)
class KeyStatus:
    index: int
    masked: str
    available: bool
    strikes: int = 0


def mask_key(key: str) -> str:
    if len(key) <= 12:
        return "***"
    return f"{key[:8]}...{key[-4:]}"


class KeyPool:
    """Thread-safe rotation over API keys and fallback models."""

    def __init__(
        self,
        keys: Sequence[str],
        models: Sequence[str] = ("",),
        minute_block_seconds: float = 120.0,
        day_block_seconds: float = 86400.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if not keys:
            raise ValueError("KeyPool needs at least one API key")
        self._keys = list(dict.fromkeys(keys))
        self._models = list(models) or [""]
        self._minute_block_seconds = minute_block_seconds
        self._day_block_seconds = day_block_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._key_index = 0
        self._model_index = 0
        self._blocked_keys: dict[int, _Block] = {}
        self._blocked_models: dict[int, float] = {}
        LOGGER.info("Loaded %d API key(s), %d model(s)", len(self._keys), len(self._models))

    def __len__(self) -> int:
        return len(self._keys)

    def current(self) -> Credential:
        with self._lock:
            self._restore_models()
            return self._credential()

    def mark_rate_limited(self, credential: Credential) -> bool:
        """Block the credential's key and move on.

        Returns True when an unblocked key or model is now active. If another
        session already rotated away from this credential, nothing is blocked
        twice and True is returned.
        """
        with self._lock:
            if self._is_stale(credential):
                return True
            now = self._clock()
            existing = self._blocked_keys.get(self._key_index)
            strikes = (existing.strikes if existing else 0) + 1
            daily = strikes > 1
            duration = self._day_block_seconds if daily else self._minute_block_seconds
            self._blocked_keys[self._key_index] = _Block(until=now + duration, strikes=strikes)
            LOGGER.warning(
                "Key #%d (%s) rate limited, blocked for %ds",
                self._key_index + 1,
                mask_key(self._keys[self._key_index]),
                duration,
            )
            if self._advance_key():
                return True

            self._blocked_models[self._model_index] = now + duration
            LOGGER.warning("All keys rate limited for model %r", self._models[self._model_index])
            return self._advance_model()

    def mark_permission_denied(self, credential: Credential) -> bool:
        """Block an invalid or revoked key for a week and rotate."""

        with self._lock:
            if self._is_stale(credential):
                return True
            self._blocked_keys[self._key_index] = _Block(
                until=self._clock() + PERMISSION_DENIED_BLOCK_SECONDS, strikes=999
            )
            LOGGER.warning("Key #%d permission denied, blocking", self._key_index + 1)
            return self._advance_key()

    def rotate(self, credential: Credential) -> bool:
        """Move to the next available key without blocking the current one."""

        with self._lock:
            if self._is_stale(credential):
                return True
            return self._advance_key()

    def reset(self) -> None:
        with self._lock:
            self._key_index = 0
            self._model_index = 0
            self._blocked_keys.clear()
            self._blocked_models.clear()

    def status(self) -> list[KeyStatus]:
        with self._lock:
            now = self._clock()
            result = []
            for index, key in enumerate(self._keys):
                block = self._blocked_keys.get(index)
                result.append(
                    KeyStatus(
                        index=index + 1,
                        masked=mask_key(key),
                        available=block is None or now >= block.until,
                        strikes=block.strikes if block else 0,
                    )
                )
            return result

    def _credential(self) -> Credential:
        return Credential(
            api_key=self._keys[self._key_index],
            model=self._models[self._model_index],
            key_index=self._key_index,
            model_index=self._model_index,
        )

    def _is_stale(self, credential: Credential) -> bool:
        return credential.key_index != self._key_index or credential.model_index != self._model_index

    def _key_available(self, index: int, now: float) -> bool:
        block = self._blocked_keys.get(index)
        return block is None or now >= block.until

    def _advance_key(self) -> bool:
        if len(self._keys) == 1:
            return False
        now = self._clock()
        for step in range(1, len(self._keys)):
            candidate = (self._key_index + step) % len(self._keys)
            if self._key_available(candidate, now):
                self._key_index = candidate
                LOGGER.info("Rotated to key #%d/%d", candidate + 1, len(self._keys))
                return True
        return False

    def _advance_model(self) -> bool:
        now = self._clock()
        for step in range(1, len(self._models)):
            candidate = (self._model_index + step) % len(self._models)
            blocked_until = self._blocked_models.get(candidate)
            if blocked_until is None or now >= blocked_until:
                self._model_index = candidate
                self._key_index = 0
                self._blocked_keys.clear()
                LOGGER.info("Falling back to model %r", self._models[candidate])
                return True
        LOGGER.error("All models are blocked")
        return False

    def _restore_models(self) -> None:
        """Return to the highest-priority model whose block has expired."""

        now = self._clock()
        for index in sorted(self._blocked_models):
            if now >= self._blocked_models[index]:
                del self._blocked_models[index]
                if index < self._model_index:
                    self._model_index = index
                    self._key_index = 0
                    self._blocked_keys.clear()
                    LOGGER.info("Model %r available again", self._models[index])
