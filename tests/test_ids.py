import re

from gourmetflow.services import ids


def test_offline_id_shape():
    value = ids.generate_offline_id()
    assert re.fullmatch(r"offline_\d{13}_[0-9a-z]{9}", value)
    assert ids.is_offline_id(value)


def test_offline_ids_do_not_collide():
    values = {ids.generate_offline_id() for _ in range(2000)}
    assert len(values) == 2000


def test_order_number_is_marked_local(monkeypatch):
    monkeypatch.setattr(ids, "_now_ms", lambda: 1767225600123456)
    assert ids.generate_offline_order_number() == "OFF-123456"


def test_server_ids_are_not_offline():
    assert not ids.is_offline_id("srv_1")
    assert not ids.is_offline_id("")
