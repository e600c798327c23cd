"""Tests for heartbeat recording and evaluation.

Time is controlled with an injected clock rather than sleeping.
"""

from datetime import datetime, timedelta, timezone

import pytest

from heartbeat_collector.service import (
    FreshnessModel,
    HeartbeatNotFound,
    HeartbeatService,
    HeartbeatValidationError,
    RegisterInput,
    parse_duration,
    parse_instant,
)
from heartbeat_collector.store import MemoryHeartbeatStore, SQLiteHeartbeatStore, StorageError

START = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


# ── Fixtures ──────────────────────────────────────────────────

@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return MemoryHeartbeatStore()


@pytest.fixture
def explicit(store, clock):
    """Service using the explicit-expiry model."""
    return HeartbeatService(store, model=FreshnessModel.EXPLICIT, clock=clock)


@pytest.fixture
def implicit(store, clock):
    """Service using the implicit-TTL model."""
    return HeartbeatService(store, model=FreshnessModel.IMPLICIT, clock=clock)


# ═══════════════════════════════════════════════════════════════
# Duration and instant parsing
# ═══════════════════════════════════════════════════════════════

class TestParseDuration:

    @pytest.mark.parametrize("value, seconds", [
        ("30", 30),
        ("30s", 30),
        ("5m", 300),
        ("2h", 7200),
        ("1d", 86400),
        (" 10S ", 10),
        (45, 45),
        (timedelta(minutes=1), 60),
    ])
    def test_accepted_forms(self, value, seconds):
        assert parse_duration(value) == timedelta(seconds=seconds)

    @pytest.mark.parametrize("value", ["", "abc", "1.5s", "-5", "10w", "5 minutes", "0", 0, True])
    def test_rejected_forms(self, value):
        with pytest.raises(HeartbeatValidationError) as exc_info:
            parse_duration(value)
        assert exc_info.value.field == "ttl"


class TestParseInstant:

    def test_offset_is_normalized_to_utc(self):
        assert parse_instant("2026-01-01T14:00:00+02:00") == START

    def test_naive_instant_is_utc(self):
        assert parse_instant("2026-01-01T12:00:00") == START

    def test_zulu_suffix(self):
        assert parse_instant("2026-01-01T12:00:00Z") == START

    def test_garbage_names_expiry_field(self):
        with pytest.raises(HeartbeatValidationError) as exc_info:
            parse_instant("tomorrow")
        assert exc_info.value.field == "expiry"


# ═══════════════════════════════════════════════════════════════
# Explicit-expiry model
# ═══════════════════════════════════════════════════════════════

class TestExplicitModel:

    def test_never_registered_is_not_found(self, explicit):
        with pytest.raises(HeartbeatNotFound):
            explicit.evaluate("never-seen")

    def test_register_then_evaluate_returns_data(self, explicit):
        explicit.register("svc-a", RegisterInput(
            ttl="30s", label="api", metadata={"region": "eu"}))

        view = explicit.evaluate("svc-a")
        assert view.id == "svc-a"
        assert view.label == "api"
        assert view.metadata == {"region": "eu"}
        assert view.last_seen == START
        assert view.expiry == START + timedelta(seconds=30)

    def test_expires_after_ttl(self, explicit, clock):
        """Register with 2s; alive now, gone 3s later."""
        explicit.register("svc-a", RegisterInput(ttl=2))
        assert explicit.evaluate("svc-a").id == "svc-a"

        clock.advance(3)
        with pytest.raises(HeartbeatNotFound):
            explicit.evaluate("svc-a")

    def test_valid_exactly_at_expiry(self, explicit, clock):
        explicit.register("svc-a", RegisterInput(ttl="10s"))
        clock.advance(10)
        assert explicit.evaluate("svc-a").id == "svc-a"

        clock.advance(0.001)
        with pytest.raises(HeartbeatNotFound):
            explicit.evaluate("svc-a")

    def test_absolute_expiry(self, explicit, clock):
        explicit.register("svc-a", RegisterInput(expiry="2026-01-01T12:01:00Z"))
        assert explicit.evaluate("svc-a").expiry == START + timedelta(minutes=1)

        clock.advance(61)
        with pytest.raises(HeartbeatNotFound):
            explicit.evaluate("svc-a")

    def test_expiry_in_the_past_is_stored_but_not_alive(self, explicit, store):
        explicit.register("svc-a", RegisterInput(expiry="2020-01-01T00:00:00Z"))
        assert store.get("svc-a") is not None
        with pytest.raises(HeartbeatNotFound):
            explicit.evaluate("svc-a")

    def test_reregistration_replaces_everything(self, explicit, clock):
        explicit.register("svc-a", RegisterInput(
            ttl="1h", label="old", metadata={"stale": "yes"}))
        clock.advance(5)
        explicit.register("svc-a", RegisterInput(ttl="10s"))

        view = explicit.evaluate("svc-a")
        assert view.label is None
        assert view.metadata == {}
        assert view.last_seen == START + timedelta(seconds=5)
        assert view.expiry == START + timedelta(seconds=15)

    def test_requires_expiry_or_ttl(self, explicit):
        with pytest.raises(HeartbeatValidationError) as exc_info:
            explicit.register("svc-a")
        assert exc_info.value.field == "expiry"

    def test_rejects_both_expiry_and_ttl(self, explicit):
        with pytest.raises(HeartbeatValidationError):
            explicit.register("svc-a", RegisterInput(expiry="2026-01-02T00:00:00Z", ttl="5s"))

    def test_rejects_ttl_at_evaluation(self, explicit):
        explicit.register("svc-a", RegisterInput(ttl="5s"))
        with pytest.raises(HeartbeatValidationError) as exc_info:
            explicit.evaluate("svc-a", ttl="10s")
        assert exc_info.value.field == "ttl"

    def test_record_without_expiry_is_not_alive(self, store, clock, implicit, explicit):
        """A record written under the implicit model has no expiry to honour."""
        implicit.register("svc-a")
        with pytest.raises(HeartbeatNotFound):
            explicit.evaluate("svc-a")


# ═══════════════════════════════════════════════════════════════
# Implicit-TTL model
# ═══════════════════════════════════════════════════════════════

class TestImplicitModel:

    def test_never_registered_is_not_found(self, implicit):
        with pytest.raises(HeartbeatNotFound):
            implicit.evaluate("never-seen", ttl="30s")

    def test_expiry_computed_from_last_seen(self, implicit, clock):
        implicit.register("svc-a", RegisterInput(label="worker"))
        clock.advance(20)

        view = implicit.evaluate("svc-a", ttl="30s")
        assert view.label == "worker"
        assert view.expiry == START + timedelta(seconds=30)

        with pytest.raises(HeartbeatNotFound):
            implicit.evaluate("svc-a", ttl="10s")

    def test_valid_exactly_at_expiry(self, implicit, clock):
        implicit.register("svc-a")
        clock.advance(30)
        assert implicit.evaluate("svc-a", ttl=30).id == "svc-a"

    def test_ttl_required_at_evaluation(self, implicit):
        implicit.register("svc-a")
        with pytest.raises(HeartbeatValidationError) as exc_info:
            implicit.evaluate("svc-a")
        assert exc_info.value.field == "ttl"

    def test_rejects_expiry_and_ttl_at_registration(self, implicit):
        with pytest.raises(HeartbeatValidationError) as exc_info:
            implicit.register("svc-a", RegisterInput(ttl="5s"))
        assert exc_info.value.field == "ttl"

        with pytest.raises(HeartbeatValidationError) as exc_info:
            implicit.register("svc-a", RegisterInput(expiry="2026-01-02T00:00:00Z"))
        assert exc_info.value.field == "expiry"

    def test_list_has_no_alive_flag(self, implicit):
        implicit.register("svc-a")
        [listing] = implicit.list_heartbeats()
        assert listing.alive is None


# ═══════════════════════════════════════════════════════════════
# Validation, purge, listing, storage failures
# ═══════════════════════════════════════════════════════════════

class TestValidation:

    @pytest.mark.parametrize("heartbeat_id", ["", "   ", None])
    def test_identifier_required(self, explicit, heartbeat_id):
        with pytest.raises(HeartbeatValidationError) as exc_info:
            explicit.register(heartbeat_id, RegisterInput(ttl="5s"))
        assert exc_info.value.field == "id"

        with pytest.raises(HeartbeatValidationError):
            explicit.evaluate(heartbeat_id)

    def test_metadata_values_must_be_strings(self, explicit):
        with pytest.raises(HeartbeatValidationError) as exc_info:
            explicit.register("svc-a", RegisterInput(ttl="5s", metadata={"n": 1}))
        assert exc_info.value.field == "metadata"

    def test_label_must_be_string(self, explicit):
        with pytest.raises(HeartbeatValidationError) as exc_info:
            explicit.register("svc-a", RegisterInput(ttl="5s", label=42))
        assert exc_info.value.field == "label"

    def test_validation_failure_writes_nothing(self, explicit, store):
        with pytest.raises(HeartbeatValidationError):
            explicit.register("svc-a", RegisterInput(ttl="soon"))
        assert store.get("svc-a") is None


class TestOutOfRangeInput:
    """Well-formed values that datetime cannot represent are validation errors."""

    @pytest.mark.parametrize("value", ["99999999999d", 10**20])
    def test_huge_duration(self, value):
        with pytest.raises(HeartbeatValidationError) as exc_info:
            parse_duration(value)
        assert exc_info.value.field == "ttl"

    def test_expiry_before_year_one_in_utc(self):
        with pytest.raises(HeartbeatValidationError) as exc_info:
            parse_instant("0001-01-01T00:00:00+01:00")
        assert exc_info.value.field == "expiry"

    def test_register_ttl_past_max_datetime(self, explicit, store):
        with pytest.raises(HeartbeatValidationError) as exc_info:
            explicit.register("svc-a", RegisterInput(ttl="2932896d"))
        assert exc_info.value.field == "ttl"
        assert store.get("svc-a") is None

    def test_evaluate_ttl_past_max_datetime(self, implicit):
        implicit.register("svc-a")
        with pytest.raises(HeartbeatValidationError) as exc_info:
            implicit.evaluate("svc-a", ttl="2932896d")
        assert exc_info.value.field == "ttl"


class TestIdentifiersAndBlanks:

    def test_identifier_stored_exactly_as_given(self, explicit, store):
        explicit.register(" svc-a", RegisterInput(ttl="5m", label="padded"))
        explicit.register("svc-a", RegisterInput(ttl="5m", label="plain"))

        assert store.get(" svc-a").label == "padded"
        assert store.get("svc-a").label == "plain"
        assert explicit.evaluate(" svc-a").label == "padded"

    def test_blank_ttl_ignored_when_expiry_given(self, explicit):
        explicit.register("svc-a", RegisterInput(expiry="2026-01-02T00:00:00Z", ttl=""))
        assert explicit.evaluate("svc-a").expiry == START + timedelta(hours=12)

    def test_blank_expiry_ignored_when_ttl_given(self, explicit):
        explicit.register("svc-a", RegisterInput(expiry="", ttl="10s"))
        assert explicit.evaluate("svc-a").expiry == START + timedelta(seconds=10)

    def test_blank_values_accepted_in_implicit_model(self, implicit):
        implicit.register("svc-a", RegisterInput(expiry="", ttl=""))
        assert implicit.evaluate("svc-a", ttl="1m").id == "svc-a"


class TestPurgeAndList:

    def test_purge_removes_record(self, explicit):
        explicit.register("svc-a", RegisterInput(ttl="5m"))
        explicit.purge("svc-a")
        with pytest.raises(HeartbeatNotFound):
            explicit.evaluate("svc-a")

    def test_purge_unknown_is_not_found(self, explicit):
        with pytest.raises(HeartbeatNotFound):
            explicit.purge("never-seen")

    def test_list_includes_expired(self, explicit, clock):
        explicit.register("short", RegisterInput(ttl="1s"))
        explicit.register("long", RegisterInput(ttl="1h"))
        clock.advance(5)

        alive = {item.record.id: item.alive for item in explicit.list_heartbeats()}
        assert alive == {"long": True, "short": False}


class FailingStore(MemoryHeartbeatStore):
    def get(self, heartbeat_id):
        raise StorageError("disk on fire")

    def put(self, record):
        raise StorageError("disk on fire")


class TestStorageErrors:

    def test_errors_propagate_without_retry(self, clock):
        service = HeartbeatService(FailingStore(), clock=clock)
        with pytest.raises(StorageError):
            service.register("svc-a", RegisterInput(ttl="5s"))
        with pytest.raises(StorageError):
            service.evaluate("svc-a")


class TestWithSQLite:

    def test_round_trip_through_durable_store(self, tmp_path, clock):
        db_path = tmp_path / "heartbeats.db"
        HeartbeatService(SQLiteHeartbeatStore(db_path), clock=clock).register(
            "svc-a", RegisterInput(ttl="2s", label="api", metadata={"k": "v"}))

        service = HeartbeatService(SQLiteHeartbeatStore(db_path), clock=clock)
        view = service.evaluate("svc-a")
        assert (view.label, view.metadata) == ("api", {"k": "v"})

        clock.advance(3)
        with pytest.raises(HeartbeatNotFound):
            service.evaluate("svc-a")
