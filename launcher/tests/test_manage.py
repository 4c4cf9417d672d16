"""
Tests for the etl-server management CLI (docker compose mapping, rcon, guarded update).
"""

import pytest
from pathlib import Path
from unittest.mock import MagicMock, patch

from etl_launcher import manage
from etl_launcher.config import Category, Scope, SettingsStore
from etl_launcher.errors import LauncherError
from etl_launcher.manage import ServerManager


@pytest.fixture
def install_dir(tmp_path):
    store = SettingsStore(tmp_path / "settings.env")
    store.initialize(created_by="tester")
    store.set(Category.SERVERS, "HOSTNAME", "one", Scope.INSTANCE, 1)
    store.set(Category.SERVERS, "PORT", 27960, Scope.INSTANCE, 1)
    store.set(Category.SERVERS, "RCONPASSWORD", "secret", Scope.INSTANCE, 1)
    store.set(Category.SERVERS, "HOSTNAME", "two", Scope.INSTANCE, 2)
    store.set(Category.SERVERS, "PORT", 27965, Scope.INSTANCE, 2)
    return tmp_path


@pytest.fixture
def run():
    with patch("etl_launcher.manage.subprocess.run") as m:
        m.return_value = MagicMock(returncode=0)
        yield m


def _compose_args(run_mock):
    return [c.args[0][3:] for c in run_mock.call_args_list]


class TestServerManager:
    def test_requires_settings_file(self, tmp_path):
        with pytest.raises(LauncherError):
            ServerManager(tmp_path)

    def test_compose_cmd_uses_env_file(self, install_dir):
        cmd = ServerManager(install_dir).compose_cmd("ps")
        assert cmd == ["docker", "compose", f"--env-file={install_dir / 'settings.env'}", "ps"]

    def test_start_all_and_one(self, install_dir, run):
        mgr = ServerManager(install_dir)
        mgr.start()
        mgr.start(2)
        assert _compose_args(run) == [["up", "-d"], ["up", "-d", "etl-server2"]]
        assert run.call_args.kwargs["cwd"] == install_dir

    def test_stop_all_is_down(self, install_dir, run):
        mgr = ServerManager(install_dir)
        mgr.stop()
        mgr.stop(1)
        assert _compose_args(run) == [["down"], ["stop", "etl-server1"]]

    def test_restart_and_logs(self, install_dir, run):
        mgr = ServerManager(install_dir)
        mgr.restart(1)
        mgr.logs(2, follow=True, tail=10)
        assert _compose_args(run) == [["restart", "etl-server1"], ["logs", "--tail=10", "-f", "etl-server2"]]

    def test_unknown_instance(self, install_dir, run):
        with pytest.raises(LauncherError):
            ServerManager(install_dir).start(5)
        run.assert_not_called()

    def test_rcon_uses_instance_port_and_password(self, install_dir):
        with patch("etl_launcher.manage.send_rcon", return_value="ok") as send:
            assert ServerManager(install_dir).rcon(1, "map supply") == "ok"
        send.assert_called_once_with("127.0.0.1", 27960, "secret", "map supply")

    def test_rcon_without_password_passes_empty(self, install_dir):
        with patch("etl_launcher.manage.send_rcon", return_value="") as send:
            ServerManager(install_dir).rcon(2, "status")
        assert send.call_args.args[1:3] == (27965, "")

    def test_rcon_on_hand_written_settings(self, tmp_path):
        (tmp_path / "settings.env").write_text(
            "# Server Configurations\n"
            "# ETL Server \"^7My Server\"\n"
            "SERVER1_PORT=27970\n"
            "SERVER1_RCONPASSWORD=pw\n"
        )
        mgr = ServerManager(tmp_path)
        assert mgr.instances() == [1]
        with patch("etl_launcher.manage.send_rcon", return_value="ok") as send:
            mgr.rcon(1, "status")
        send.assert_called_once_with("127.0.0.1", 27970, "pw", "status")

    def test_status_marks_offline(self, install_dir):
        from etl_launcher.query import QueryError
        with patch("etl_launcher.manage.query_status", side_effect=QueryError("no response")):
            rows = ServerManager(install_dir).status()
        assert [(r["service"], r["online"]) for r in rows] == [("etl-server1", False), ("etl-server2", False)]


class TestUpdate:
    def test_skips_busy_instances(self, install_dir, run):
        counts = {27960: 4, 27965: 0}
        with patch("etl_launcher.manage.player_count", side_effect=lambda host, port: counts[port]):
            rc = ServerManager(install_dir).update()
        assert rc == 0
        assert _compose_args(run) == [["pull", "etl-server2"], ["up", "-d", "etl-server2"]]

    def test_force_updates_busy_instance(self, install_dir, run):
        with patch("etl_launcher.manage.player_count", return_value=12):
            rc = ServerManager(install_dir).update(1, force=True)
        assert rc == 0
        assert _compose_args(run) == [["pull", "etl-server1"], ["up", "-d", "etl-server1"]]

    def test_nothing_to_update(self, install_dir, run):
        with patch("etl_launcher.manage.player_count", return_value=3):
            assert ServerManager(install_dir).update(1) == 1
        run.assert_not_called()

    def test_offline_instance_is_updated(self, install_dir, run):
        with patch("etl_launcher.manage.player_count", return_value=None):
            assert ServerManager(install_dir).update(2) == 0

    def test_pull_failure_stops(self, install_dir, run):
        run.return_value = MagicMock(returncode=1)
        with patch("etl_launcher.manage.player_count", return_value=0):
            assert ServerManager(install_dir).update(1) == 1
        assert len(run.call_args_list) == 1


class TestMain:
    def test_start_via_cli(self, install_dir, run):
        assert manage.main(["--install-dir", str(install_dir), "start", "1"]) == 0
        assert _compose_args(run) == [["up", "-d", "etl-server1"]]

    def test_error_exit_code(self, tmp_path, capsys):
        assert manage.main(["--install-dir", str(tmp_path), "start"]) == 1
        assert "settings.env" in capsys.readouterr().err

    def test_rcon_via_cli(self, install_dir, capsys):
        with patch("etl_launcher.manage.send_rcon", return_value="done"):
            assert manage.main(["--install-dir", str(install_dir), "rcon", "1", "map", "supply"]) == 0
        assert "done" in capsys.readouterr().out
