from __future__ import annotations

import os
import tempfile
from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

import pydantic
from pydantic import BaseModel, ConfigDict, Field, field_validator

from splitledger.db.models import BillItem, BillParticipant, new_id
from splitledger.errors import CorruptedSessionError, SessionPersistenceError
from splitledger.logging import get_logger

DEFAULT_SESSION_TTL = timedelta(hours=24)


class SessionStep(str, Enum):
    NOT_STARTED = "not_started"
    SCANNING = "scanning"
    VERIFYING = "verifying"
    ASSIGNING = "assigning"
    REVIEWING = "reviewing"
    SAVING = "saving"
    COMPLETE = "complete"
    CANCELLED = "cancelled"


TERMINAL_STEPS = frozenset({SessionStep.COMPLETE, SessionStep.CANCELLED})


class DraftItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    name: str
    price: int = Field(ge=0)
    participant_ids: list[str] = Field(default_factory=list)

    def to_bill_item(self) -> BillItem:
        return BillItem(id=self.id, name=self.name, price=self.price, participant_ids=frozenset(self.participant_ids))


class SessionSnapshot(BaseModel):
    """Everything entered so far in an unfinished bill-creation flow."""

    session_id: str = Field(default_factory=new_id)
    step: SessionStep = SessionStep.NOT_STARTED
    items: list[DraftItem] = Field(default_factory=list)
    participants: list[BillParticipant] = Field(default_factory=list)
    paid_by: Optional[str] = None
    bill_name: Optional[str] = None
    currency: str = "USD"
    last_saved_at: Optional[datetime] = None

    @field_validator("last_saved_at")
    @classmethod
    def _assume_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @property
    def is_terminal(self) -> bool:
        return self.step in TERMINAL_STEPS

    @property
    def has_content(self) -> bool:
        return bool(self.items or self.participants)

    def bill_items(self) -> list[BillItem]:
        return [item.to_bill_item() for item in self.items]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionStore:
    """One durable snapshot file, replaced atomically on every save."""

    def __init__(
        self,
        path: Path | str,
        ttl: timedelta = DEFAULT_SESSION_TTL,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._path = Path(path)
        self._ttl = ttl
        self._clock = clock
        self._log = get_logger(__name__)

    @property
    def path(self) -> Path:
        return self._path

    def save(self, snapshot: SessionSnapshot) -> SessionSnapshot:
        stamped = snapshot.model_copy(update={"last_saved_at": self._clock()})
        payload = stamped.model_dump_json()

        directory = self._path.parent
        try:
            directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=directory, prefix=f".{self._path.name}.", suffix=".tmp")
        except OSError as exc:
            raise SessionPersistenceError(f"cannot save session to {self._path}: {exc}") from exc

        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(payload)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_name, self._path)
        except OSError as exc:
            Path(tmp_name).unlink(missing_ok=True)
            raise SessionPersistenceError(f"cannot save session to {self._path}: {exc}") from exc

        self._log.info(
            "session.saved",
            session_id=stamped.session_id,
            step=stamped.step.value,
            items=len(stamped.items),
            participants=len(stamped.participants),
        )
        return stamped

    def load(self) -> Optional[SessionSnapshot]:
        """Return the snapshot if it can still be resumed; discard it otherwise."""
        try:
            snapshot = self._read()
        except CorruptedSessionError as exc:
            self._log.warning("session.corrupted", path=str(self._path), error=str(exc))
            self._discard("corrupted")
            return None

        if snapshot is None:
            return None

        reason = self._rejection_reason(snapshot)
        if reason is not None:
            self._log.info("session.not_recoverable", session_id=snapshot.session_id, reason=reason)
            self._discard(reason)
            return None
        return snapshot

    def clear(self) -> None:
        try:
            self._path.unlink(missing_ok=True)
        except OSError as exc:
            raise SessionPersistenceError(f"cannot clear session at {self._path}: {exc}") from exc
        self._log.info("session.cleared", path=str(self._path))

    def has_active(self) -> bool:
        return self.load() is not None

    def _read(self) -> Optional[SessionSnapshot]:
        try:
            raw = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as exc:
            raise CorruptedSessionError(f"unreadable session file: {exc}") from exc

        try:
            return SessionSnapshot.model_validate_json(raw)
        except pydantic.ValidationError as exc:
            raise CorruptedSessionError(f"invalid session file: {exc.error_count()} errors") from exc

    def _rejection_reason(self, snapshot: SessionSnapshot) -> Optional[str]:
        if snapshot.last_saved_at is None:
            return "never_saved"
        if self._clock() - snapshot.last_saved_at >= self._ttl:
            return "expired"
        if snapshot.is_terminal:
            return "terminal_step"
        if not snapshot.has_content:
            return "empty"
        return None

    def _discard(self, reason: str) -> None:
        try:
            self.clear()
        except SessionPersistenceError as exc:
            self._log.error("session.discard.failed", reason=reason, error=str(exc))
