import pytest
from ipytui.correlation import CorrelationTable


def test_resolve_removes_once():
    table = CorrelationTable()
    table.register("a", "execute_request", context=3)
    entry = table.resolve("a")
    assert entry.msg_id == "a" and entry.context == 3
    assert "a" not in table
    assert table.resolve("a") is None


def test_unknown_id_leaves_table_alone():
    table = CorrelationTable()
    table.register("a", "complete_request")
    assert table.resolve("zzz") is None
    assert table.resolve(None) is None
    assert [e.msg_id for e in table] == ["a"]


def test_non_terminal_resolve_keeps_entry():
    table = CorrelationTable()
    table.register("a", "execute_request")
    assert table.resolve("a", terminal=False).msg_id == "a"
    assert len(table) == 1


def test_duplicate_registration_rejected():
    table = CorrelationTable()
    table.register("a", "execute_request")
    with pytest.raises(ValueError): table.register("a", "execute_request")


def test_cancel_all_in_registration_order():
    table = CorrelationTable()
    ids = [f"m{i}" for i in range(5)]
    for i, msg_id in enumerate(ids): table.register(msg_id, "execute_request", token=i)
    table.resolve("m2")
    drained = table.cancel_all()
    assert [e.msg_id for e in drained] == ["m0", "m1", "m3", "m4"]
    assert len(table) == 0
    assert table.cancel_all() == []


def test_expired_only_matching_kinds():
    table = CorrelationTable()
    old = table.register("c1", "complete_request")
    table.register("e1", "execute_request").created = old.created
    table.register("c2", "complete_request")
    stale = table.expired(("complete_request",), 1.0, now=old.created + 1.5)
    assert [e.msg_id for e in stale] == ["c1", "c2"]
    assert [e.msg_id for e in table] == ["e1"]
    assert table.expired(("complete_request",), 10.0) == []
