"""
Tests for the etl-launcher CLI, the autorestart hook and the log reader.
"""

import json
import pytest
from unittest.mock import patch

import launcher
from etl_launcher import cli
from etl_launcher.settings import Settings
from etl_launcher.fs_layout import build_layout
from etl_launcher.log_reader import list_logs, log_index, read_from_cursor, read_tail


class TestAutorestart:
    @pytest.mark.parametrize("players,rc", [(0, 0), (3, 1), (None, 1)])
    def test_exit_codes(self, players, rc, capsys):
        with patch("etl_launcher.cli.player_count", return_value=players):
            assert cli.autorestart(Settings(map_port=27961)) == rc
        assert capsys.readouterr().out

    def test_queries_configured_port(self):
        with patch("etl_launcher.cli.player_count", return_value=0) as pc:
            cli.autorestart(Settings(map_port=27999))
        pc.assert_called_once_with("127.0.0.1", 27999)


class TestMain:
    @pytest.fixture(autouse=True)
    def env(self, tmp_path, monkeypatch):
        monkeypatch.setenv("GAME_BASE", str(tmp_path / "server"))
        monkeypatch.setenv("HOMEPATH", str(tmp_path / "home"))
        monkeypatch.setenv("MAPS_CACHE", str(tmp_path / "maps"))
        monkeypatch.setenv("AUTO_UPDATE", "false")
        monkeypatch.setenv("MAPS", "radar")

    def test_plan_prints_json(self, capsys):
        assert cli.main(["plan"]) == 0
        data = json.loads(capsys.readouterr().out)
        assert data["actions"][0]["target"] == "radar"

    def test_run_dry_run_shows_command(self, capsys, tmp_path):
        assert cli.main(["run", "--dry-run", "+set", "g_gametype", "6"]) == 0
        data = json.loads(capsys.readouterr().out)
        assert data["command"][0] == str(tmp_path / "server" / "etlded")
        assert data["command"][-3:] == ["+set", "g_gametype", "6"]

    def test_passthrough_starting_with_dash(self, capsys):
        assert cli.main(["run", "--dry-run", "--", "-foo", "+set", "g_gametype", "6"]) == 0
        data = json.loads(capsys.readouterr().out)
        assert data["command"][-4:] == ["-foo", "+set", "g_gametype", "6"]
        assert "--" not in data["command"]

    def test_entrypoint_passes_container_args_through(self):
        with patch("launcher.main", return_value=0) as m:
            assert launcher.entrypoint(["-foo", "+map", "supply"]) == 0
            launcher.entrypoint(["plan"])
        assert m.call_args_list[0].args[0] == ["run", "--", "-foo", "+map", "supply"]
        assert m.call_args_list[1].args[0] == ["plan"]

    def test_launcher_error_is_exit_1(self, tmp_path):
        # no etl_server.cfg template in the config repository
        (tmp_path / "server" / "etmain").mkdir(parents=True)
        (tmp_path / "server" / "etmain" / "radar.pk3").write_bytes(b"x")
        assert cli.main(["run", "--no-start"]) == 1

    def test_autorestart_subcommand(self):
        with patch("etl_launcher.cli.player_count", return_value=0):
            assert cli.main(["autorestart"]) == 0


class TestLogReader:
    def _layout(self, tmp_path):
        return build_layout(Settings(game_base=tmp_path / "server", homepath=tmp_path / "home"))

    def test_index_missing_dirs(self, tmp_path):
        assert log_index(self._layout(tmp_path)) == {}
        assert list_logs({}) == []

    def test_index_ids(self, tmp_path):
        layout = self._layout(tmp_path)
        layout.logs.mkdir(parents=True)
        (layout.logs / "launcher.log").write_text("")
        (layout.homepath / "legacy").mkdir()
        (layout.homepath / "legacy" / "etserver.log").write_text("")
        assert sorted(log_index(layout)) == ["game.etserver", "launcher"]

    def test_tail_truncation_flag(self, tmp_path):
        p = tmp_path / "a.log"
        p.write_text("\n".join(str(i) for i in range(10)) + "\n")
        chunk = read_tail(p, tail_lines=3)
        assert chunk.entries == ["7", "8", "9"]
        assert chunk.truncated

    def test_garbage_cursor_restarts_from_zero(self, tmp_path):
        p = tmp_path / "a.log"
        p.write_text("x\ny\n")
        assert read_from_cursor(p, "not-a-cursor!!").entries == ["x", "y"]

    def test_cursor_after_truncation(self, tmp_path):
        p = tmp_path / "a.log"
        p.write_text("a\nb\nc\n")
        cursor = read_tail(p).cursor
        p.write_text("z\n")
        assert read_from_cursor(p, cursor).entries == ["z"]

    def test_cursor_after_rotation(self, tmp_path):
        p = tmp_path / "a.log"
        p.write_text("a\n")
        cursor = read_tail(p).cursor
        p.rename(tmp_path / "a.log.1")
        p.write_text("b\nc\n")
        assert read_from_cursor(p, cursor).entries == ["b", "c"]

    def test_max_lines(self, tmp_path):
        p = tmp_path / "a.log"
        p.write_text("1\n2\n3\n")
        first = read_from_cursor(p, "", max_lines=2)
        assert first.entries == ["1", "2"]
        assert first.truncated
        assert read_from_cursor(p, first.cursor).entries == ["3"]

    def test_capped_read_stops_at_newline(self, tmp_path):
        p = tmp_path / "a.log"
        p.write_bytes(b"abc\r\ndefgh\n")
        first = read_from_cursor(p, "", max_bytes=8)
        assert first.entries == ["abc"]
        assert first.truncated
        assert read_from_cursor(p, first.cursor).entries == ["defgh"]
