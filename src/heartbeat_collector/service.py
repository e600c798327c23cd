"""Heartbeat lifecycle: recording and evaluating liveness.

HeartbeatService is the only entry point the HTTP and CLI layers use.
It holds an injected HeartbeatStore and applies exactly one freshness
model for its lifetime:

    EXPLICIT  register() stores an expiry instant (given directly, or
              computed as now + ttl); evaluate() compares now to it.
    IMPLICIT  register() stores last_seen only; evaluate() is given a
              ttl and checks now <= last_seen + ttl.

A heartbeat that was never registered and one that has expired are
reported the same way (HeartbeatNotFound). Callers cannot tell them apart.

Usage:
    service = HeartbeatService(SQLiteHeartbeatStore("/tmp/heartbeats.db"))
    service.register("svc-a", RegisterInput(ttl="30s", label="api"))
    view = service.evaluate("svc-a")
"""

import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable

from heartbeat_collector.store import HeartbeatRecord, HeartbeatStore

logger = logging.getLogger(__name__)


class FreshnessModel(str, Enum):
    """How a heartbeat's expiry is determined."""
    EXPLICIT = "explicit"  # expiry fixed at registration
    IMPLICIT = "implicit"  # expiry = last_seen + ttl given at read time


class HeartbeatValidationError(Exception):
    """Raised when caller input is missing or malformed."""

    def __init__(self, field: str, message: str):
        super().__init__(message)
        self.field = field
        self.message = message


class HeartbeatNotFound(Exception):
    """Raised when a heartbeat was never registered or has expired."""

    def __init__(self, heartbeat_id: str):
        super().__init__("heartbeat not found")
        self.heartbeat_id = heartbeat_id


# <amount><unit>, unit one of s/m/h/d; no unit means seconds
_DURATION_RE = re.compile(r"^\s*(\d+)\s*([smhd]?)\s*$", re.IGNORECASE)
_UNIT_SECONDS = {"": 1, "s": 1, "m": 60, "h": 3600, "d": 86400}


def parse_duration(value: str | int | timedelta) -> timedelta:
    """Parse a TTL such as "30", "30s", "5m", "2h" or "1d".

    A bare integer is a number of seconds. The duration must be positive.
    """
    if isinstance(value, timedelta):
        duration = value
    elif isinstance(value, bool):
        raise HeartbeatValidationError("ttl", f"Invalid duration: {value!r}")
    elif isinstance(value, int):
        duration = _seconds(value, value)
    else:
        match = _DURATION_RE.match(str(value))
        if not match:
            raise HeartbeatValidationError(
                "ttl",
                f"Invalid duration {value!r}: expected an integer number of "
                "seconds or a value like 30s, 5m, 2h, 1d",
            )
        amount = int(match.group(1))
        duration = _seconds(amount * _UNIT_SECONDS[match.group(2).lower()], value)

    if duration <= timedelta(0):
        raise HeartbeatValidationError("ttl", "Duration must be greater than zero")
    return duration


def parse_instant(value: str | datetime) -> datetime:
    """Parse an ISO-8601 instant. Naive values are taken as UTC."""
    if isinstance(value, datetime):
        instant = value
    else:
        try:
            instant = datetime.fromisoformat(str(value).strip())
        except ValueError:
            raise HeartbeatValidationError(
                "expiry", f"Invalid expiry {value!r}: expected an ISO-8601 instant")

    if instant.tzinfo is None:
        return instant.replace(tzinfo=timezone.utc)
    try:
        return instant.astimezone(timezone.utc)
    except OverflowError:
        raise HeartbeatValidationError(
            "expiry", f"Expiry {value!r} is out of range")


def _seconds(seconds: int, value: Any) -> timedelta:
    try:
        return timedelta(seconds=seconds)
    except OverflowError:
        raise HeartbeatValidationError("ttl", f"Duration {value!r} is too large")


def _expiry_after(start: datetime, ttl: timedelta) -> datetime:
    """start + ttl, as a validation error when it leaves the datetime range."""
    try:
        return start + ttl
    except OverflowError:
        raise HeartbeatValidationError("ttl", "Duration is too large")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class RegisterInput:
    """What a caller may supply when registering a heartbeat.

    In the explicit model exactly one of expiry/ttl is required.
    In the implicit model both must be left unset.
    """
    expiry: str | datetime | None = None
    ttl: str | int | timedelta | None = None
    label: str | None = None
    metadata: Mapping[str, str] | None = None


@dataclass(frozen=True)
class HeartbeatView:
    """Public fields of a live heartbeat."""
    id: str
    last_seen: datetime
    expiry: datetime
    label: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "id": self.id,
            "last_seen": self.last_seen.isoformat(),
            "expiry": self.expiry.isoformat(),
        }
        if self.label:
            result["label"] = self.label
        if self.metadata:
            result["metadata"] = dict(self.metadata)
        return result


@dataclass(frozen=True)
class HeartbeatListing:
    """A stored heartbeat as shown by admin listings."""
    record: HeartbeatRecord
    alive: bool | None  # None when no ttl is known (implicit model)


class HeartbeatService:
    """Records and evaluates heartbeats against an injected store.

    The service keeps no state of its own and does no locking; it is safe
    to share between request threads as long as the store is.
    """

    def __init__(
        self,
        store: HeartbeatStore,
        model: FreshnessModel = FreshnessModel.EXPLICIT,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.model = FreshnessModel(model)
        self._clock = clock

    # ─── Recorder ─────────────────────────────────────────────────

    def register(self, heartbeat_id: str, data: RegisterInput | None = None) -> None:
        """Record a heartbeat, replacing any previous record for the id.

        Raises:
            HeartbeatValidationError: a field is missing or malformed
            StorageError: the store failed to persist the record
        """
        data = data or RegisterInput()
        heartbeat_id = _validate_id(heartbeat_id)
        label = _validate_label(data.label)
        metadata = _validate_metadata(data.metadata)

        given_expiry = _unset_if_blank(data.expiry)
        given_ttl = _unset_if_blank(data.ttl)
        now = self._clock()
        expiry = None

        if self.model is FreshnessModel.EXPLICIT:
            if given_expiry is not None and given_ttl is not None:
                raise HeartbeatValidationError(
                    "expiry", "Provide either expiry or ttl, not both")
            if given_expiry is not None:
                expiry = parse_instant(given_expiry)
            elif given_ttl is not None:
                expiry = _expiry_after(now, parse_duration(given_ttl))
            else:
                raise HeartbeatValidationError(
                    "expiry", "An expiry instant or ttl is required")
        else:
            if given_expiry is not None:
                raise HeartbeatValidationError(
                    "expiry", "expiry is not accepted: the ttl is given when checking")
            if given_ttl is not None:
                raise HeartbeatValidationError(
                    "ttl", "ttl is not accepted at registration: pass it when checking")

        self.store.put(HeartbeatRecord(
            id=heartbeat_id,
            last_seen=now,
            expiry=expiry,
            label=label,
            metadata=metadata,
        ))
        logger.info(
            f"Registered heartbeat {heartbeat_id!r}"
            + (f" until {expiry.isoformat()}" if expiry else ""))

    # ─── Evaluator ────────────────────────────────────────────────

    def evaluate(
        self,
        heartbeat_id: str,
        ttl: str | int | timedelta | None = None,
    ) -> HeartbeatView:
        """Return the heartbeat if it is still valid.

        Raises:
            HeartbeatNotFound: never registered, or now is past its expiry
            HeartbeatValidationError: bad id, or ttl missing/unexpected/malformed
            StorageError: the store failed to read the record
        """
        heartbeat_id = _validate_id(heartbeat_id)
        duration = self._ttl_for_model(ttl)

        record = self.store.get(heartbeat_id)
        if record is None:
            logger.debug(f"Heartbeat {heartbeat_id!r} not registered")
            raise HeartbeatNotFound(heartbeat_id)

        expiry = self._effective_expiry(record, duration)
        if expiry is None or self._clock() > expiry:
            logger.debug(f"Heartbeat {heartbeat_id!r} expired")
            raise HeartbeatNotFound(heartbeat_id)

        return HeartbeatView(
            id=record.id,
            last_seen=record.last_seen,
            expiry=expiry,
            label=record.label,
            metadata=dict(record.metadata),
        )

    def _ttl_for_model(self, ttl: str | int | timedelta | None) -> timedelta | None:
        ttl = _unset_if_blank(ttl)
        if self.model is FreshnessModel.IMPLICIT:
            if ttl is None:
                raise HeartbeatValidationError("ttl", "A ttl is required to check a heartbeat")
            return parse_duration(ttl)
        if ttl is not None:
            raise HeartbeatValidationError(
                "ttl", "ttl is not accepted: expiry was fixed at registration")
        return None

    def _effective_expiry(
        self,
        record: HeartbeatRecord,
        ttl: timedelta | None,
    ) -> datetime | None:
        if self.model is FreshnessModel.IMPLICIT:
            return _expiry_after(record.last_seen, ttl)
        # Records written under the implicit model carry no expiry
        return record.expiry

    # ─── Purge & listing ──────────────────────────────────────────

    def purge(self, heartbeat_id: str) -> None:
        """Delete a stored heartbeat regardless of its validity."""
        heartbeat_id = _validate_id(heartbeat_id)
        if not self.store.delete(heartbeat_id):
            raise HeartbeatNotFound(heartbeat_id)
        logger.info(f"Purged heartbeat {heartbeat_id!r}")

    def list_heartbeats(self) -> list[HeartbeatListing]:
        """Every stored record, expired or not."""
        now = self._clock()
        listings = []
        for record in self.store.all():
            if self.model is FreshnessModel.IMPLICIT:
                alive = None
            else:
                alive = record.expiry is not None and now <= record.expiry
            listings.append(HeartbeatListing(record=record, alive=alive))
        return listings


def _unset_if_blank(value: Any) -> Any:
    """Empty strings (e.g. `?ttl=`) count as not given."""
    if isinstance(value, str) and not value.strip():
        return None
    return value


def _validate_id(heartbeat_id: str | None) -> str:
    if not isinstance(heartbeat_id, str) or not heartbeat_id.strip():
        raise HeartbeatValidationError("id", "ID value is required")
    return heartbeat_id


def _validate_label(label: Any) -> str | None:
    if label is None or label == "":
        return None
    if not isinstance(label, str):
        raise HeartbeatValidationError("label", "label must be a string")
    return label


def _validate_metadata(metadata: Any) -> dict[str, str]:
    if metadata is None:
        return {}
    if not isinstance(metadata, Mapping):
        raise HeartbeatValidationError("metadata", "metadata must be a mapping of strings")
    for key, value in metadata.items():
        if not isinstance(key, str) or not isinstance(value, str):
            raise HeartbeatValidationError(
                "metadata", f"metadata entry {key!r} must map a string to a string")
    return dict(metadata)
