from __future__ import annotations

import enum
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Sequence

from .request import CollectMode, ScrapeRequest


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class RunState(str, enum.Enum):
    PENDING = "pending"
    FETCHING = "fetching"
    NORMALIZING = "normalizing"
    DEDUPING = "deduping"
    PERSISTING = "rehosting_persisting"
    SEALED = "sealed"


_ORDER = list(RunState)


@dataclass(frozen=True)
class CollectionRun:
    """The sealed, immutable outcome of one collection run."""

    id: str
    mode: CollectMode
    targets: Sequence[str]
    requested_at: str
    finished_at: str
    items_fetched: int
    items_stored: int
    errors: Sequence[str]
    success: bool
    message: str | None = None


@dataclass
class RunRecorder:
    """
    Mutable run state between start and seal.

    Counts survive a fatal error so a failed run still reports what it got
    through before failing.
    """

    request: ScrapeRequest
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    requested_at: str = field(default_factory=_utc_now_iso)
    state: RunState = RunState.PENDING
    items_fetched: int = 0
    items_stored: int = 0
    errors: list[str] = field(default_factory=list)
    message: str | None = None
    fatal: bool = False
    _sealed: CollectionRun | None = field(default=None, repr=False)

    def advance(self, state: RunState) -> None:
        if self._sealed is not None:
            raise RuntimeError("run is already sealed")
        current = _ORDER.index(self.state)
        target = _ORDER.index(state)
        if target != current + 1:
            raise RuntimeError(f"illegal run transition {self.state.value} -> {state.value}")
        self.state = state

    def fail(self, message: str) -> None:
        self.fatal = True
        self.errors.append(message)

    @property
    def succeeded(self) -> bool:
        if self.fatal:
            return False
        return self.items_stored > 0 or not self.errors

    def seal(self) -> CollectionRun:
        if self._sealed is not None:
            return self._sealed
        self.state = RunState.SEALED
        self._sealed = CollectionRun(
            id=self.id,
            mode=self.request.mode,
            targets=tuple(self.request.targets),
            requested_at=self.requested_at,
            finished_at=_utc_now_iso(),
            items_fetched=int(self.items_fetched),
            items_stored=int(self.items_stored),
            errors=tuple(self.errors),
            success=self.succeeded,
            message=self.message,
        )
        return self._sealed
