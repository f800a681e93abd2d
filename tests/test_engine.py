import asyncio
import sqlite3

import pytest

from config import Settings
from engine import PasteEngine, _check_invariant, _clean_title
from errors import (Conflict, NotFound, PersistenceInvariantViolation, StorageUnavailable,
                    ValidationFailed, is_lock_error, is_schema_error, is_unique_violation)
from models import Block
from rate_limit import RateLimiter
from schema_probe import RICH, SchemaCapabilities

BARE = SchemaCapabilities(password=False, blocks=False, files=False)


class FakeProbe:
    def __init__(self, caps=RICH, fail=False):
        self.caps = caps
        self.fail = fail
        self.invalidated = 0

    async def capabilities(self):
        if self.fail:
            raise sqlite3.OperationalError("unable to open database file")
        return self.caps

    def invalidate(self):
        self.invalidated += 1


def _engine(probe=None, **overrides):
    overrides.setdefault("bcrypt_rounds", 4)
    return PasteEngine(None, Settings(**overrides), probe=probe or FakeProbe(), file_store=object())


def test_write_timeout_is_retryable_unavailability():
    engine = _engine(write_timeout_seconds=0.05)

    async def slow(store):
        await asyncio.sleep(1)

    with pytest.raises(StorageUnavailable) as info:
        asyncio.run(engine._run(slow, action="slow write", write=True))
    assert info.value.retryable


def test_reads_are_not_bounded_by_write_timeout():
    engine = _engine(write_timeout_seconds=0.01)

    async def read(store):
        await asyncio.sleep(0.05)
        return "done"

    assert asyncio.run(engine._run(read, action="read")) == "done"


def test_schema_error_invalidates_probe_and_retries_once():
    probe = FakeProbe()
    engine = _engine(probe)
    attempts = []

    async def unit(store):
        attempts.append(store.caps)
        if len(attempts) == 1:
            raise sqlite3.OperationalError("no such column: pastes.password_hash")
        return "ok"

    assert asyncio.run(engine._run(unit, action="read")) == "ok"
    assert len(attempts) == 2
    assert probe.invalidated == 1


def test_persistent_schema_error_gives_up():
    probe = FakeProbe()
    engine = _engine(probe)

    async def unit(store):
        raise sqlite3.OperationalError("no such table: blocks")

    with pytest.raises(StorageUnavailable) as info:
        asyncio.run(engine._run(unit, action="read", failure="Server error retrieving paste"))
    assert info.value.message == "Server error retrieving paste"
    assert probe.invalidated == 1


def test_unique_violation_maps_to_conflict_only_when_expected():
    engine = _engine()

    async def unit(store):
        raise sqlite3.IntegrityError("UNIQUE constraint failed: index 'ux_pastes_alias_lower'")

    with pytest.raises(Conflict):
        asyncio.run(engine._run(unit, action="create", write=True, conflict="Alias is already taken"))
    with pytest.raises(StorageUnavailable):
        asyncio.run(engine._run(unit, action="edit", write=True))


def test_only_alias_violations_become_conflicts():
    engine = _engine()

    async def block_clash(store):
        raise sqlite3.IntegrityError("UNIQUE constraint failed: blocks.paste_id, blocks.position")

    with pytest.raises(StorageUnavailable):
        asyncio.run(engine._run(block_clash, action="create", write=True, conflict="Alias is already taken"))

    async def legacy_alias_clash(store):
        raise sqlite3.IntegrityError("UNIQUE constraint failed: pastes.alias")

    with pytest.raises(Conflict):
        asyncio.run(engine._run(legacy_alias_clash, action="create", write=True, conflict="Alias is already taken"))


def test_locked_database_is_retryable():
    engine = _engine()

    async def unit(store):
        raise sqlite3.OperationalError("database is locked")

    with pytest.raises(StorageUnavailable) as info:
        asyncio.run(engine._run(unit, action="edit", write=True))
    assert info.value.retryable


def test_domain_errors_pass_through_untouched():
    engine = _engine()

    async def unit(store):
        raise NotFound()

    with pytest.raises(NotFound):
        asyncio.run(engine._run(unit, action="read"))


def test_probe_failure_is_storage_unavailable():
    engine = _engine(FakeProbe(fail=True))

    async def unit(store):
        return "never"

    with pytest.raises(StorageUnavailable) as info:
        asyncio.run(engine._run(unit, action="read"))
    assert info.value.retryable


def test_bare_schema_refuses_before_touching_storage():
    engine = _engine(FakeProbe(BARE))
    with pytest.raises(StorageUnavailable):
        asyncio.run(engine.create(content="x", password="pw"))
    with pytest.raises(StorageUnavailable):
        asyncio.run(engine.create(blocks=[Block(content="cell", order=0)]))


def test_create_validates_before_storage():
    engine = _engine()
    with pytest.raises(ValidationFailed):
        asyncio.run(engine.create())
    with pytest.raises(ValidationFailed):
        asyncio.run(engine.create(content="x", title="t" * 256))
    with pytest.raises(ValidationFailed):
        asyncio.run(engine.create(content="x", alias="ab"))
    with pytest.raises(ValidationFailed):
        asyncio.run(engine.create(content="x", expires_in=10 ** 12))


def test_check_invariant():
    _check_invariant("text", [])
    _check_invariant(None, [Block(content="a", order=0)])
    with pytest.raises(PersistenceInvariantViolation):
        _check_invariant(None, [])
    with pytest.raises(PersistenceInvariantViolation):
        _check_invariant("  ", [])
    with pytest.raises(PersistenceInvariantViolation):
        _check_invariant("text", [Block(content="a", order=0)])


def test_clean_title():
    assert _clean_title(None) == "Untitled Paste"
    assert _clean_title("   ") == "Untitled Paste"
    assert _clean_title(" hello ") == "hello"


def test_error_classifiers():
    assert is_schema_error(sqlite3.OperationalError("table pastes has no column named password_hash"))
    assert not is_schema_error(sqlite3.OperationalError("disk I/O error"))
    assert is_unique_violation(sqlite3.IntegrityError("UNIQUE constraint failed: pastes.alias"))
    assert not is_unique_violation(sqlite3.IntegrityError("NOT NULL constraint failed: pastes.title"))
    assert not is_unique_violation(sqlite3.IntegrityError("UNIQUE constraint failed: blocks.id"), "ux_pastes_alias_lower")
    assert is_unique_violation(sqlite3.IntegrityError("UNIQUE constraint failed: index 'ux_pastes_alias_lower'"),
                               "ux_pastes_alias_lower")
    assert is_lock_error(sqlite3.OperationalError("database is locked"))


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def test_rate_limiter_window():
    clock = FakeClock()
    limiter = RateLimiter(2, clock=clock)

    async def burst():
        return [await limiter.allow("create|1.2.3.4") for _ in range(3)]

    assert asyncio.run(burst()) == [True, True, False]
    assert asyncio.run(limiter.allow("create|5.6.7.8"))
    clock.now += 61
    assert asyncio.run(limiter.allow("create|1.2.3.4"))


def test_disabled_rate_limiter_allows_everything():
    limiter = RateLimiter(1, enabled=False)

    async def burst():
        return [await limiter.allow("x") for _ in range(5)]

    assert all(asyncio.run(burst()))
