"""Tests for portkey.vault.models - Server and ServerList."""

import copy
import json
from datetime import timedelta

import pytest

from portkey.vault.errors import FormatError
from portkey.vault.models import Server, ServerList, validate_port


class TestServer:
    def test_defaults(self):
        s = Server(name="web", host="web.example.com", username="deploy")
        assert s.port == 22
        assert s.password == ""
        assert s.tags == []
        assert s.id is None
        assert not s.has_password

    @pytest.mark.parametrize("port", [0, 65536, -1, True, "abc", None, 22.9, "22.5"])
    def test_invalid_port(self, port):
        with pytest.raises(ValueError):
            Server(name="x", host="h", username="u", port=port)

    def test_port_string_coerced(self):
        assert Server(name="x", host="h", username="u", port="2222").port == 2222
        assert validate_port(65535) == 65535
        assert validate_port(22.0) == 22

    def test_repr_hides_password(self, make_server):
        assert "p@ss" not in repr(make_server())

    def test_ssh_command(self, make_server):
        assert make_server().ssh_command() == "ssh admin@10.0.0.5 -p 5432"


class TestServerList:
    def test_add_assigns_identity(self, make_server):
        servers = ServerList()
        stored = servers.add(make_server())
        assert stored.id
        assert stored.created_at is not None
        assert stored.updated_at == stored.created_at
        assert stored.id in servers

    def test_add_ignores_incoming_id(self, make_server):
        servers = ServerList()
        stored = servers.add(make_server(id="chosen-by-caller"))
        assert stored.id != "chosen-by-caller"

    def test_ids_unique(self, make_server):
        servers = ServerList()
        ids = {servers.add(make_server(name=f"s{i}")).id for i in range(50)}
        assert len(ids) == 50

    def test_add_copies_input(self, make_server):
        servers = ServerList()
        original = make_server(tags=["prod"])
        stored = servers.add(original)
        original.tags.append("changed")
        original.name = "changed"
        assert servers.find(stored.id).tags == ["prod"]
        assert servers.find(stored.id).name == "db1"

    def test_insertion_order(self, make_server):
        servers = ServerList()
        for name in ("c", "a", "b"):
            servers.add(make_server(name=name))
        assert [s.name for s in servers] == ["c", "a", "b"]

    def test_remove(self, make_server):
        servers = ServerList()
        stored = servers.add(make_server())
        assert servers.remove(stored.id)
        assert len(servers) == 0
        assert not servers.remove(stored.id)

    def test_replace_keeps_identity(self, make_server):
        servers = ServerList()
        stored = servers.add(make_server())
        update = make_server(name="db1-new", port=2222)
        update.id = stored.id
        update.created_at = stored.created_at - timedelta(days=1)

        assert servers.replace(update)
        current = servers.find(stored.id)
        assert current.name == "db1-new"
        assert current.port == 2222
        assert current.created_at == stored.created_at
        assert current.updated_at >= current.created_at

    def test_replace_miss(self, make_server):
        servers = ServerList()
        stored = servers.add(make_server())
        stranger = make_server(name="other")
        stranger.id = "not-there"
        assert not servers.replace(stranger)
        assert servers.find(stored.id).name == "db1"
        assert len(servers) == 1

    def test_replace_invalid_port_leaves_record(self, make_server):
        servers = ServerList()
        stored = servers.add(make_server())
        update = copy.deepcopy(servers.find(stored.id))
        update.name = "renamed"
        update.port = 70000
        with pytest.raises(ValueError):
            servers.replace(update)
        assert servers.find(stored.id).name == "db1"
        assert servers.find(stored.id).port == 5432

    def test_duplicate_ids_rejected(self, make_server):
        s = make_server(id="same")
        with pytest.raises(ValueError):
            ServerList([s, s])


class TestSerialization:
    def test_json_preserves_records(self, make_server):
        servers = ServerList()
        servers.add(make_server(description="primary db", tags=["prod", "db"]))
        servers.add(make_server(name="web", host="10.0.0.6", port=22, password=""))

        restored = ServerList.from_json(servers.to_json())
        assert restored.to_dict() == servers.to_dict()
        assert [s.id for s in restored] == [s.id for s in servers]

    def test_not_json(self):
        with pytest.raises(FormatError):
            ServerList.from_json(b"\x00not json")

    def test_missing_servers(self):
        with pytest.raises(FormatError):
            ServerList.from_json(b'{"version": "1.0.0"}')

    def test_bad_record(self, make_server):
        servers = ServerList()
        servers.add(make_server())
        data = servers.to_dict()

        data["servers"][0]["port"] = 0
        with pytest.raises(FormatError):
            ServerList.from_dict(data)

    @pytest.mark.parametrize("port", [22.9, 22.0, "22", None, True])
    def test_port_must_be_stored_as_integer(self, make_server, port):
        servers = ServerList()
        servers.add(make_server())
        data = servers.to_dict()
        data["servers"][0]["port"] = port
        with pytest.raises(FormatError):
            ServerList.from_json(json.dumps(data).encode())

    def test_missing_field(self, make_server):
        servers = ServerList()
        servers.add(make_server())
        data = servers.to_dict()
        del data["servers"][0]["host"]
        with pytest.raises(FormatError):
            ServerList.from_json(json.dumps(data).encode())

    def test_updated_before_created(self, make_server):
        servers = ServerList()
        stored = servers.add(make_server())
        data = servers.to_dict()
        data["servers"][0]["updated_at"] = (stored.created_at - timedelta(seconds=1)).isoformat()
        with pytest.raises(FormatError):
            ServerList.from_dict(data)

    def test_duplicate_id_is_format_error(self, make_server):
        servers = ServerList()
        servers.add(make_server())
        data = servers.to_dict()
        data["servers"].append(dict(data["servers"][0]))
        with pytest.raises(FormatError):
            ServerList.from_dict(data)
