"""Tests for the session registry."""

from sessionhub.session.identity import derive_user_id
from sessionhub.session.registry import SessionRegistry


def test_create_registers_both_indexes() -> None:
    registry = SessionRegistry()

    record, superseded = registry.create("abc", {"ua": "x"})

    assert superseded is None
    assert registry.get(record.session_id) is record
    assert registry.current_session_id("abc") == record.session_id
    assert registry.is_current(record.session_id)
    assert len(registry) == 1
    assert registry.user_count == 1


def test_create_without_user_key_derives_from_device_info() -> None:
    registry = SessionRegistry()

    record, _ = registry.create(None, {"ua": "x"})

    assert record.user_id == derive_user_id({"ua": "x"})


def test_second_create_supersedes_but_keeps_old_resolvable() -> None:
    registry = SessionRegistry()
    first, _ = registry.create("abc", {})

    second, superseded = registry.create("abc", {})

    assert superseded is first
    assert second.session_id != first.session_id
    assert registry.current_session_id("abc") == second.session_id
    assert registry.get(first.session_id) is first
    assert not registry.is_current(first.session_id)
    assert registry.is_current(second.session_id)


def test_removing_superseded_record_keeps_new_mapping() -> None:
    registry = SessionRegistry()
    first, _ = registry.create("abc", {})
    second, _ = registry.create("abc", {})

    removed = registry.remove(first.session_id)

    assert removed is first
    assert first.session_id not in registry
    assert registry.current_session_id("abc") == second.session_id


def test_remove_current_record_clears_user_mapping() -> None:
    registry = SessionRegistry()
    record, _ = registry.create("abc", {})

    registry.remove(record.session_id)

    assert registry.get(record.session_id) is None
    assert registry.current_session_id("abc") is None
    assert registry.user_count == 0


def test_remove_unknown_returns_none() -> None:
    assert SessionRegistry().remove("missing") is None


def test_records_returns_a_copy() -> None:
    registry = SessionRegistry()
    registry.create("a", {})
    registry.create("b", {})

    records = registry.records()
    registry.remove(records[0].session_id)

    assert len(records) == 2
    assert len(registry) == 1
