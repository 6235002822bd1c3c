from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, Iterator, Optional, Tuple

from taskboard.config import get_settings
from taskboard.security_tokens import constant_time_equals

_LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class PreRegistration:
    """Signup data held until the email address is verified.

    The password is still plaintext here; it is hashed only when the user
    row is created.
    """

    email: str
    name: str
    password: str
    numeric_code: str
    expires_at: float
    team_name: Optional[str] = None
    team_code: Optional[str] = None

    def is_expired(self, now: float) -> bool:
        return now > self.expires_at


class PreRegistrationStore:
    """In-memory token -> PreRegistration map with lazy expiry and a periodic sweep."""

    def __init__(
        self,
        kind: str,
        *,
        ttl_seconds: int,
        sweep_interval: int,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.kind = kind
        self.ttl_seconds = ttl_seconds
        self.sweep_interval = sweep_interval
        self._clock = clock
        self._entries: Dict[str, PreRegistration] = {}
        self._sweep_task: Optional[asyncio.Task] = None

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[Tuple[str, PreRegistration]]:
        return iter(list(self._entries.items()))

    def expiry_from_now(self) -> float:
        return self._clock() + self.ttl_seconds

    def put(self, token: str, entry: PreRegistration) -> None:
        self._entries[token] = entry

    def get(self, token: str) -> Optional[PreRegistration]:
        """Return the live entry for ``token``; expired entries are dropped."""
        entry = self._entries.get(token)
        if entry is None:
            return None
        if entry.is_expired(self._clock()):
            self._entries.pop(token, None)
            return None
        return entry

    def lookup(self, token: str) -> Tuple[Optional[PreRegistration], bool]:
        """Like :meth:`get` but also reports whether the token existed and had expired."""
        entry = self._entries.get(token)
        if entry is None:
            return None, False
        if entry.is_expired(self._clock()):
            self._entries.pop(token, None)
            return None, True
        return entry, False

    def find_by_code(self, code: str) -> Optional[Tuple[str, PreRegistration]]:
        """First live entry whose numeric code matches; expired matches are dropped."""
        now = self._clock()
        for token, entry in self:
            if not constant_time_equals(entry.numeric_code, code):
                continue
            if entry.is_expired(now):
                self._entries.pop(token, None)
                continue
            return token, entry
        return None

    def pop(self, token: str) -> Optional[PreRegistration]:
        return self._entries.pop(token, None)

    def restore(self, token: str, entry: PreRegistration) -> None:
        """Put back an entry that was claimed but could not be turned into a user."""
        if not entry.is_expired(self._clock()):
            self._entries.setdefault(token, entry)

    def sweep(self) -> int:
        """Drop every expired entry and return how many were removed."""
        now = self._clock()
        expired = [token for token, entry in self if entry.is_expired(now)]
        for token in expired:
            entry = self._entries.pop(token)
            _LOGGER.info("Cleaned up expired %s pre-registration for %s", self.kind, entry.email)
        return len(expired)

    async def start_sweeper(self) -> None:
        if self.sweep_interval <= 0 or self._sweep_task:
            return

        async def _loop():
            while True:
                await asyncio.sleep(self.sweep_interval)
                try:
                    self.sweep()
                except Exception as exc:  # pragma: no cover - keep the loop alive
                    _LOGGER.exception("Pre-registration sweep failed: %s", exc)

        self._sweep_task = asyncio.create_task(_loop())

    async def stop_sweeper(self) -> None:
        if not self._sweep_task:
            return
        self._sweep_task.cancel()
        try:
            await self._sweep_task
        except asyncio.CancelledError:  # pragma: no cover - expected during shutdown
            pass
        finally:
            self._sweep_task = None


def _build_store(kind: str) -> PreRegistrationStore:
    settings = get_settings()
    return PreRegistrationStore(
        kind,
        ttl_seconds=settings.preregistration_ttl_seconds,
        sweep_interval=settings.preregistration_sweep_seconds,
    )


_leader_store: Optional[PreRegistrationStore] = None
_member_store: Optional[PreRegistrationStore] = None


def get_leader_registrations() -> PreRegistrationStore:
    global _leader_store
    if _leader_store is None:
        _leader_store = _build_store("leader")
    return _leader_store


def get_member_registrations() -> PreRegistrationStore:
    global _member_store
    if _member_store is None:
        _member_store = _build_store("member")
    return _member_store
