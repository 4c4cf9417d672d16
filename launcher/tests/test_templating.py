"""
Tests for placeholder rendering, post-substitution hooks and etl_server.cfg generation.
"""

import pytest
from pathlib import Path

from etl_launcher.settings import Settings
from etl_launcher.fs_layout import build_layout
from etl_launcher.templating import (
    MOTD_SLOTS, find_placeholders, render_file, render_text, resolve_config_source,
    split_motd, needpass_hook, motd_hook, append_file_hook,
)
from etl_launcher.cfg_generator import generate_server_cfg, generate_stats_lua, template_values
from etl_launcher.errors import TemplateMissingError


@pytest.fixture
def settings(tmp_path):
    return Settings(
        game_base=tmp_path / "server",
        homepath=tmp_path / "home",
        maps_cache=tmp_path / "maps",
        stats_api_path=tmp_path / "stats",
    )


@pytest.fixture
def layout(settings):
    return build_layout(settings)


class TestRenderText:
    def test_known_placeholders_are_substituted(self):
        out = render_text('set sv_hostname "%CONF_HOSTNAME%"', {"CONF_HOSTNAME": "^1Test"})
        assert out == 'set sv_hostname "^1Test"'

    def test_unknown_placeholders_blanked_by_default(self):
        out = render_text('set g_password "%CONF_PASSWORD%"', {})
        assert out == 'set g_password ""'
        assert "%" not in out

    def test_unknown_placeholders_kept_when_asked(self):
        out = render_text("%CONF_X%", {}, blank_unknown=False)
        assert out == "%CONF_X%"

    def test_values_with_slashes_are_literal(self):
        out = render_text("%CONF_STATS_API_PATH%", {"CONF_STATS_API_PATH": "/legacy/homepath/legacy/stats"})
        assert out == "/legacy/homepath/legacy/stats"

    def test_values_with_backslashes_are_literal(self):
        out = render_text("%CONF_A%", {"CONF_A": r"a\1b"})
        assert out == r"a\1b"

    def test_lowercase_percent_text_untouched(self):
        assert render_text("100% %done%", {}) == "100% %done%"

    def test_lua_pattern_classes_survive(self):
        src = 'name = string.gsub(name, "[%A%D]", "")  token = "%CONF_STATS_API_TOKEN%"'
        out = render_text(src, {"CONF_STATS_API_TOKEN": "abc"})
        assert out == 'name = string.gsub(name, "[%A%D]", "")  token = "abc"'

    def test_only_conf_names_are_placeholders(self):
        assert find_placeholders("%A% %CONF_X% %HOSTNAME%") == ["CONF_X"]

    def test_find_placeholders(self):
        assert find_placeholders("%CONF_B% %CONF_A% %CONF_B%") == ["CONF_A", "CONF_B"]


class TestHooks:
    def test_needpass_added_with_password(self):
        assert needpass_hook("secret")("x") == 'x\nset g_needpass "1"\n'

    def test_needpass_skipped_without_password(self):
        assert needpass_hook("")("x\n") == "x\n"

    def test_split_motd_pads_to_slots(self):
        assert split_motd("Line1\\nLine2") == ["Line1", "Line2", "", "", "", ""]
        assert len(split_motd("")) == MOTD_SLOTS

    def test_split_motd_truncates(self):
        lines = split_motd("\\n".join(str(i) for i in range(10)))
        assert lines == ["0", "1", "2", "3", "4", "5"]

    def test_motd_hook_writes_all_slots(self):
        out = motd_hook("Line1\\nLine2")("")
        assert 'set server_motd0 "Line1"' in out
        assert 'set server_motd1 "Line2"' in out
        assert 'set server_motd5 ""' in out
        assert out.count("set server_motd") == MOTD_SLOTS

    def test_motd_hook_skipped_when_empty(self):
        assert motd_hook("")("cfg\n") == "cfg\n"

    def test_append_file_hook(self, tmp_path):
        extra = tmp_path / "extra.cfg"
        assert append_file_hook(extra)("a\n") == "a\n"
        extra.write_text('set g_custom "1"\n')
        assert append_file_hook(extra)("a\n") == 'a\nset g_custom "1"\n'

    def test_render_file_applies_hooks_in_order(self, tmp_path):
        src = tmp_path / "in.cfg"
        src.write_text('set sv_hostname "%CONF_HOSTNAME%"\n')
        dst = tmp_path / "out" / "out.cfg"
        render_file(src, dst, {"CONF_HOSTNAME": "ET"}, [needpass_hook("pw"), motd_hook("hi")])
        lines = dst.read_text().splitlines()
        assert lines[0] == 'set sv_hostname "ET"'
        assert lines[1] == 'set g_needpass "1"'
        assert lines[2] == 'set server_motd0 "hi"'


class TestConfigSource:
    def test_default_branch(self, settings):
        src = resolve_config_source(settings)
        assert src.branch == "main"
        assert not src.render_stats

    def test_stats_switches_branch_and_lua(self, settings):
        s = settings.model_copy(update={"stats_submit": True})
        src = resolve_config_source(s)
        assert src.branch == "etl-stats-api"
        assert src.render_stats


class TestGenerateServerCfg:
    def _template(self, layout, text):
        layout.settings_repo.mkdir(parents=True, exist_ok=True)
        (layout.settings_repo / "etl_server.cfg").write_text(text)

    def test_missing_template_raises(self, settings, layout):
        with pytest.raises(TemplateMissingError):
            generate_server_cfg(settings, layout)

    def test_renders_values_and_removes_residue(self, settings, layout):
        self._template(layout, 'set sv_hostname "%CONF_HOSTNAME%"\nset g_password "%CONF_PASSWORD%"\n'
                               'set b_unknown "%CONF_NOT_A_SETTING%"\n')
        out = generate_server_cfg(settings.model_copy(update={"hostname": "^2Hello"}), layout)
        text = out.read_text()
        assert out == layout.server_cfg
        assert 'set sv_hostname "^2Hello"' in text
        assert 'set g_password ""' in text
        assert "%CONF_" not in text
        assert "g_needpass" not in text

    def test_password_motd_and_extra_cfg(self, settings, layout):
        self._template(layout, 'set g_password "%CONF_PASSWORD%"\n')
        layout.extra_cfg.parent.mkdir(parents=True, exist_ok=True)
        layout.extra_cfg.write_text('set g_extra "1"\n')
        s = settings.model_copy(update={"password": "pw", "motd": "Line1\\nLine2"})
        text = generate_server_cfg(s, layout).read_text()
        assert 'set g_password "pw"' in text
        assert 'set g_needpass "1"' in text
        assert 'set server_motd1 "Line2"' in text
        assert text.rstrip().endswith('set g_extra "1"')

    def test_template_values(self, settings):
        values = template_values(settings.model_copy(update={"stats_submit": True, "motd": "a"}))
        assert values["CONF_SETTINGSBRANCH"] == "etl-stats-api"
        assert values["CONF_STATS_SUBMIT"] == "true"
        assert values["CONF_MOTD0"] == "a"
        assert values["CONF_MOTD5"] == ""


class TestGenerateStatsLua:
    def test_skipped_without_stats(self, settings, layout):
        assert generate_stats_lua(settings, layout) is None

    def test_rendered_in_place(self, settings, layout):
        layout.luascripts.mkdir(parents=True)
        (layout.luascripts / "game-stats-web.lua").write_text(
            'local url = "%CONF_STATS_API_URL_SUBMIT%"\nlocal path = "%CONF_STATS_API_PATH%"\n'
            'local clean = string.gsub(s, "%W%S", "")\n')
        s = settings.model_copy(update={"stats_submit": True})
        out = generate_stats_lua(s, layout)
        text = out.read_text()
        assert "https://api.etl.lol/api/v2/stats/etl/matches/stats/submit" in text
        assert str(settings.stats_api_path) in text
        assert 'string.gsub(s, "%W%S", "")' in text
        assert settings.stats_api_path.is_dir()
