"""Unit tests for the connection registry."""

from chat.registry import Connection, ConnectionRegistry


def test_add_creates_unpaired_connection() -> None:
    registry = ConnectionRegistry()

    connection = registry.add("a")

    assert connection == Connection(id="a")
    assert connection.partner_id is None
    assert connection.interests == []
    assert connection.is_typing is False
    assert registry.get("a") is connection
    assert registry.size() == 1


def test_add_existing_id_keeps_original() -> None:
    registry = ConnectionRegistry()
    first = registry.add("a")
    first.interests = ["music"]

    second = registry.add("a")

    assert second is first
    assert registry.size() == 1


def test_remove_is_idempotent() -> None:
    registry = ConnectionRegistry()
    registry.add("a")

    assert registry.remove("a") is not None
    assert registry.remove("a") is None
    assert registry.remove("never-seen") is None
    assert registry.size() == 0


def test_get_unknown_returns_none() -> None:
    assert ConnectionRegistry().get("missing") is None


def test_membership_and_paired_count() -> None:
    registry = ConnectionRegistry()
    a = registry.add("a")
    b = registry.add("b")
    registry.add("c")
    a.partner_id = "b"
    b.partner_id = "a"

    assert "a" in registry
    assert "z" not in registry
    assert len(registry) == 3
    assert sorted(registry.ids()) == ["a", "b", "c"]
    assert registry.paired_count() == 2
