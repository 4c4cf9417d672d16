from __future__ import annotations
from pathlib import Path
from typing import Dict, List
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    # paths inside the server image
    game_base: Path = Field(default=Path("/legacy/server"), alias="GAME_BASE")
    homepath: Path = Field(default=Path("/legacy/homepath"), alias="HOMEPATH")
    maps_cache: Path = Field(default=Path("/maps"), alias="MAPS_CACHE")

    # server config
    redirect_url: str = Field(default="", alias="REDIRECTURL")
    map_port: int = Field(default=27960, alias="MAP_PORT")
    startmap: str = Field(default="radar", alias="STARTMAP")
    hostname: str = Field(default="ET", alias="HOSTNAME")
    maxclients: int = Field(default=32, alias="MAXCLIENTS")
    password: str = Field(default="", alias="PASSWORD")
    rcon_password: str = Field(default="", alias="RCONPASSWORD")
    referee_password: str = Field(default="", alias="REFEREEPASSWORD")
    sc_password: str = Field(default="", alias="SCPASSWORD")
    sv_autodemo: int = Field(default=0, alias="SVAUTODEMO")
    etltv_max_slaves: int = Field(default=2, alias="SVETLTVMAXSLAVES")
    etltv_password: str = Field(default="3tltv", alias="SVETLTVPASSWORD")
    timeout_limit: int = Field(default=1, alias="TIMEOUTLIMIT")
    server_conf: str = Field(default="legacy6", alias="SERVERCONF")
    sv_tracker: str = Field(default="", alias="SVTRACKER")
    motd: str = Field(default="", alias="MOTD")

    # config repository
    settings_url: str = Field(default="https://github.com/Oksii/legacy-configs.git", alias="SETTINGSURL")
    settings_pat: str = Field(default="", alias="SETTINGSPAT")
    settings_branch: str = Field(default="main", alias="SETTINGSBRANCH")
    auto_update: bool = Field(default=True, alias="AUTO_UPDATE")

    # maps
    maps: str = Field(default="", alias="MAPS")
    xmas: bool = Field(default=False, alias="XMAS")
    xmas_url: str = Field(default="", alias="XMAS_URL")
    fetch_workers: int = Field(default=4, alias="FETCH_WORKERS")

    additional_cli_args: str = Field(default="", alias="ADDITIONAL_CLI_ARGS")

    # stats submission
    stats_submit: bool = Field(default=False, alias="STATS_SUBMIT")
    stats_settings_branch: str = Field(default="etl-stats-api", alias="STATS_SETTINGSBRANCH")
    stats_api_token: str = Field(default="GameStatsWebLuaToken", alias="STATS_API_TOKEN")
    stats_api_url_submit: str = Field(
        default="https://api.etl.lol/api/v2/stats/etl/matches/stats/submit", alias="STATS_API_URL_SUBMIT")
    stats_api_url_matchid: str = Field(
        default="https://api.etl.lol/api/v2/stats/etl/match-manager", alias="STATS_API_URL_MATCHID")
    stats_api_path: Path = Field(default=Path("/legacy/homepath/legacy/stats"), alias="STATS_API_PATH")
    stats_api_log: bool = Field(default=False, alias="STATS_API_LOG")
    stats_api_obituaries: bool = Field(default=False, alias="STATS_API_OBITUARIES")
    stats_api_damagestat: bool = Field(default=False, alias="STATS_API_DAMAGESTAT")
    stats_api_messagelog: bool = Field(default=False, alias="STATS_API_MESSAGELOG")
    stats_api_dumpjson: bool = Field(default=False, alias="STATS_API_DUMPJSON")

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_json: bool = Field(default=False, alias="LOG_JSON")

    model_config = SettingsConfigDict(extra="ignore", populate_by_name=True)

    @property
    def map_list(self) -> List[str]:
        return [m.strip() for m in self.maps.split(":") if m.strip()]

    def placeholders(self) -> Dict[str, str]:
        """Flat ``CONF_<KEY>`` mapping consumed by the template renderer."""
        def s(v) -> str:
            if isinstance(v, bool):
                return "true" if v else "false"
            return str(v)

        conf = {
            "REDIRECTURL": self.redirect_url,
            "MAP_PORT": self.map_port,
            "STARTMAP": self.startmap,
            "HOSTNAME": self.hostname,
            "MAXCLIENTS": self.maxclients,
            "PASSWORD": self.password,
            "RCONPASSWORD": self.rcon_password,
            "REFEREEPASSWORD": self.referee_password,
            "SCPASSWORD": self.sc_password,
            "SVAUTODEMO": self.sv_autodemo,
            "ETLTVMAXSLAVES": self.etltv_max_slaves,
            "ETLTVPASSWORD": self.etltv_password,
            "TIMEOUTLIMIT": self.timeout_limit,
            "SERVERCONF": self.server_conf,
            "SETTINGSURL": self.settings_url,
            "SETTINGSBRANCH": self.settings_branch,
            "SVTRACKER": self.sv_tracker,
            "STATS_SUBMIT": self.stats_submit,
            "STATS_API_TOKEN": self.stats_api_token,
            "STATS_API_URL_SUBMIT": self.stats_api_url_submit,
            "STATS_API_URL_MATCHID": self.stats_api_url_matchid,
            "STATS_API_PATH": self.stats_api_path,
            "STATS_API_LOG": self.stats_api_log,
            "STATS_API_OBITUARIES": self.stats_api_obituaries,
            "STATS_API_DAMAGESTAT": self.stats_api_damagestat,
            "STATS_API_MESSAGELOG": self.stats_api_messagelog,
            "STATS_API_DUMPJSON": self.stats_api_dumpjson,
        }
        return {f"CONF_{k}": s(v) for k, v in conf.items()}

    def public_dump(self) -> Dict[str, object]:
        """model_dump() with secrets masked, for the API."""
        data = self.model_dump(mode="json")
        for key in ("password", "rcon_password", "referee_password", "sc_password",
                    "etltv_password", "settings_pat", "stats_api_token"):
            if data.get(key):
                data[key] = "***"
        return data
