"""
Tests for multi-instance compose generation and instance validation.
"""

import re
import pytest
import yaml
from pathlib import Path

from etl_launcher.config import Category, Scope, SettingsStore
from etl_launcher.errors import InstanceConfigError
from etl_launcher.installer.composer import (
    BASE_PORT, MAX_INSTANCES, ComposeOptions, InstanceComposer, InstanceSpec,
    default_port, make_instance, service_name, validate_instance_count, validate_port,
)


@pytest.fixture
def store(tmp_path):
    s = SettingsStore(tmp_path / "settings.env")
    s.initialize(created_by="tester")
    return s


def _instances(n):
    return [InstanceSpec.default(i) for i in range(1, n + 1)]


class TestPorts:
    def test_default_ports_are_consecutive(self):
        assert [default_port(i) for i in (1, 2, 3)] == [27960, 27961, 27962]
        assert default_port(1) == BASE_PORT

    @pytest.mark.parametrize("value", ["1023", "65536", "abc", "", "-5"])
    def test_validate_port_rejects(self, value):
        with pytest.raises(InstanceConfigError):
            validate_port(value)

    def test_validate_port_accepts(self):
        assert validate_port(" 27970 ") == 27970

    @pytest.mark.parametrize("value", ["0", "11", "x"])
    def test_instance_count_bounds(self, value):
        with pytest.raises(InstanceConfigError):
            validate_instance_count(value)

    def test_instance_count_accepts(self):
        assert validate_instance_count("10") == MAX_INSTANCES


class TestInstanceSpec:
    def test_default(self):
        spec = InstanceSpec.default(2)
        assert spec.port == 27961
        assert spec.hostname == "^7ETL Server 2"
        assert spec.overrides() == {}

    def test_make_instance_maps_validation_error(self):
        with pytest.raises(InstanceConfigError):
            make_instance(1, port=80, hostname="x")

    def test_overrides(self):
        spec = make_instance(1, port=27960, hostname="x", startmap="supply", maxclients=20)
        assert spec.overrides() == {"STARTMAP": "supply", "MAXCLIENTS": "20"}


class TestValidateInstances:
    def test_duplicate_port_rejected(self, store):
        a = make_instance(1, port=27960, hostname="a")
        b = make_instance(2, port=27960, hostname="b")
        with pytest.raises(InstanceConfigError, match="27960"):
            InstanceComposer(store).validate_instances([a, b])

    def test_gap_in_ordinals_rejected(self, store):
        with pytest.raises(InstanceConfigError):
            InstanceComposer(store).validate_instances([InstanceSpec.default(1), InstanceSpec.default(3)])

    def test_empty_rejected(self, store):
        with pytest.raises(InstanceConfigError):
            InstanceComposer(store).validate_instances([])

    def test_sorted_by_ordinal(self, store):
        out = InstanceComposer(store).validate_instances([InstanceSpec.default(2), InstanceSpec.default(1)])
        assert [i.ordinal for i in out] == [1, 2]


class TestDescriptor:
    @pytest.mark.parametrize("n", range(1, MAX_INSTANCES + 1))
    def test_one_service_per_instance(self, store, n):
        doc = InstanceComposer(store).build_descriptor(_instances(n))
        assert sorted(doc["services"]) == sorted(service_name(i) for i in range(1, n + 1))

    @pytest.mark.parametrize("n", [1, 3, 10])
    def test_services_reference_only_their_own_variables(self, store, n):
        instances = [make_instance(i, port=default_port(i), hostname=f"s{i}", rcon_password="r")
                     for i in range(1, n + 1)]
        doc = InstanceComposer(store).build_descriptor(instances)
        for i in range(1, n + 1):
            text = yaml.safe_dump(doc["services"][service_name(i)])
            refs = set(re.findall(r"\$\{SERVER(\d+)_", text))
            assert refs == {str(i)}

    def test_service_shape(self, store):
        svc = InstanceComposer(store).build_descriptor(_instances(1))["services"]["etl-server1"]
        assert svc["container_name"] == "etl-server1"
        assert svc["image"] == "oksii/etlegacy:${VERSION}"
        assert svc["env_file"] == "settings.env"
        assert svc["ports"] == ["${SERVER1_PORT}:${SERVER1_PORT}/udp"]
        assert svc["environment"] == {"MAP_PORT": "${SERVER1_PORT}", "HOSTNAME": "${SERVER1_HOSTNAME}"}
        assert "${MAPSDIR}:/maps" in svc["volumes"]
        assert "${LOGS}/etl-server1:/legacy/homepath/legacy/" in svc["volumes"]
        assert svc["restart"] == "unless-stopped"

    def test_credentials_only_when_set(self, store):
        a = make_instance(1, port=27960, hostname="a", password="p", rcon_password="r")
        env = InstanceComposer(store).service_for(a)["environment"]
        assert env["PASSWORD"] == "${SERVER1_PASSWORD}"
        assert env["RCONPASSWORD"] == "${SERVER1_RCONPASSWORD}"
        assert "REFEREEPASSWORD" not in env
        assert "SCPASSWORD" not in env

    def test_no_addons_by_default(self, store):
        doc = InstanceComposer(store).build_descriptor(_instances(2))
        assert "watchtower" not in doc["services"]
        assert "mapserver" not in doc["services"]
        assert "labels" not in doc["services"]["etl-server1"]
        assert doc["networks"] == {"etl": {"name": "etl"}}

    def test_watchtower_addon(self, store):
        doc = InstanceComposer(store, ComposeOptions(watchtower=True)).build_descriptor(_instances(2))
        assert doc["services"]["watchtower"]["image"] == "containrrr/watchtower"
        labels = doc["services"]["etl-server2"]["labels"]
        assert "com.centurylinklabs.watchtower.enable=true" in labels
        assert any("pre-update=etl-launcher autorestart" in label for label in labels)

    def test_mapserver_addon(self, store):
        doc = InstanceComposer(store, ComposeOptions(mapserver=True, mapserver_port=8081)).build_descriptor(
            _instances(1))
        assert doc["services"]["mapserver"]["ports"] == ["8081:80"]

    def test_services_do_not_share_state(self, store):
        doc = InstanceComposer(store, ComposeOptions(watchtower=True)).build_descriptor(_instances(2))
        doc["services"]["etl-server1"]["labels"].append("x")
        assert "x" not in doc["services"]["etl-server2"]["labels"]

    def test_write_descriptor_round_trips(self, store, tmp_path):
        path = InstanceComposer(store).write_descriptor(_instances(3), tmp_path / "docker-compose.yml")
        loaded = yaml.safe_load(path.read_text())
        assert list(loaded["services"]) == ["etl-server1", "etl-server2", "etl-server3"]


class TestStoreInstances:
    def test_writes_instance_settings(self, store):
        a = make_instance(1, port=27960, hostname="^1Red", rcon_password="r")
        b = make_instance(2, port=27961, hostname="^4Blue")
        InstanceComposer(store).store_instances([a, b])
        assert store.get(Category.SERVERS, "PORT", instance=2) == "27961"
        assert store.get(Category.SERVERS, "RCONPASSWORD", instance=1) == "r"
        assert store.get(Category.SERVERS, "RCONPASSWORD", instance=2) is None
        assert store.instance_label(1) == "^1Red"

    def test_cleared_credential_is_removed(self, store):
        composer = InstanceComposer(store)
        composer.store_instances([make_instance(1, port=27960, hostname="a", password="p")])
        composer.store_instances([make_instance(1, port=27960, hostname="a")])
        assert store.get(Category.SERVERS, "PASSWORD", instance=1) is None

    def test_instances_from_store(self, store):
        composer = InstanceComposer(store)
        composer.store_instances([make_instance(1, port=27970, hostname="a", sc_password="sc"),
                                  make_instance(2, port=27971, hostname="b", maxclients=12)])
        loaded = composer.instances_from_store()
        assert [(i.ordinal, i.port) for i in loaded] == [(1, 27970), (2, 27971)]
        assert loaded[0].sc_password == "sc"
        assert loaded[1].maxclients == 12

    def test_instances_from_hand_written_store(self, tmp_path):
        path = tmp_path / "hand.env"
        path.write_text("# Server Configurations\nSERVER1_PORT=27970\nSERVER2_PORT=27971\nSERVER2_HOSTNAME=b\n")
        loaded = InstanceComposer(SettingsStore(path)).instances_from_store()
        assert [(i.ordinal, i.port, i.hostname) for i in loaded] == [(1, 27970, "^7ETL Server 1"), (2, 27971, "b")]


class TestScaffold:
    def test_creates_log_dirs(self, store, tmp_path):
        created = InstanceComposer(store).scaffold(tmp_path, _instances(2))
        assert (tmp_path / "logs" / "etl-server1").is_dir()
        assert (tmp_path / "logs" / "etl-server2").is_dir()
        assert (tmp_path / "logs").stat().st_mode & 0o777 == 0o777
        assert len(created) == 3
