"""
wizard.py: interactive host installer
-------------------------------------
Walks through host checks, Docker, the service account, instance/map/stats
questions and optional extras. Every answer lands in ``settings.env``; the
compose file, log directories and the ``etl-server`` helper are derived
from it at the end.
"""

from __future__ import annotations
import getpass
import os
import shlex
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional

from ..config import Category, Scope, SettingsStore
from ..errors import InstanceConfigError, ProvisioningError
from ..logging_setup import get_logger
from ..map_fetcher import FetchReport, MapFetcher, normalize_map_names
from .composer import (
    SETTINGS_FILE, ComposeOptions, InstanceComposer, InstanceSpec, default_hostname, default_port,
    make_instance, service_name, validate_instance_count, validate_port,
)
from .helper import HELPER_NAME, SYMLINK, install_helper
from .host import HostProvisioner, OsInfo
from .prompts import Prompter

log = get_logger("etl.launcher.install")

DEFAULT_MAPS = ["adlernest", "braundorf_b4"]
MAP_REPOSITORIES = [
    ("dl.etl.lol", "https://dl.etl.lol/maps/et/etmain"),
    ("download.hirntot.org (Alternative)", "https://download.hirntot.org/etmain"),
]
CONTAINER_REDIRECT_URL = "https://download.hirntot.org"
PREDOWNLOAD_WORKERS = 30
DEFAULT_TRACKER = "tracker.etl.lol:4444"
DEFAULT_SETTINGS_URL = "https://github.com/Oksii/legacy-configs.git"
RESTART_SCHEDULE = "0 */2 * * *"

STATS_DEFAULTS = {
    "STATS_SUBMIT": "true",
    "STATS_API_TOKEN": "GameStatsWebLuaToken",
    "STATS_API_URL_SUBMIT": "https://api.etl.lol/api/v2/stats/etl/matches/stats/submit",
    "STATS_API_URL_MATCHID": "https://api.etl.lol/api/v2/stats/etl/match-manager",
    "STATS_API_PATH": "/legacy/homepath/legacy/stats",
    "STATS_API_LOG": "false",
    "STATS_API_OBITUARIES": "false",
    "STATS_API_DAMAGESTAT": "false",
    "STATS_API_MESSAGELOG": "false",
    "STATS_API_DUMPJSON": "false",
}


def restart_cron_line(ordinal: int) -> str:
    name = service_name(ordinal)
    return f"{RESTART_SCHEDULE} docker exec {name} etl-launcher autorestart && docker restart {name}"


def parse_map_input(raw: str) -> List[str]:
    return normalize_map_names(raw.replace(",", " ").split())


@dataclass
class InstallState:
    user: str = ""
    install_dir: Optional[Path] = None
    count: int = 1
    predownload: bool = True
    watchtower: bool = False
    mapserver: bool = False
    auto_restart: bool = False
    instances: List[InstanceSpec] = field(default_factory=list)
    map_report: Optional[FetchReport] = None


class Installer:
    def __init__(self, prompter: Optional[Prompter] = None, host: Optional[HostProvisioner] = None,
                 fetcher_factory: Callable[..., MapFetcher] = MapFetcher,
                 current_user: Optional[str] = None, helper_link: Optional[Path] = SYMLINK):
        self.prompt = prompter or Prompter()
        self.host = host or HostProvisioner()
        self.fetcher_factory = fetcher_factory
        self.current_user = current_user or os.environ.get("SUDO_USER") or getpass.getuser()
        self.helper_link = helper_link
        self.state = InstallState()
        self.store: Optional[SettingsStore] = None
        self._os_info: Optional[OsInfo] = None

    # ---------------- host ----------------
    def check_host(self) -> None:
        self.prompt.section("Checking System")
        os_info = self.host.check_system()
        self.host.check_root()
        res = self.host.check_resources()
        self.prompt.say(f"CPU cores: {res.cpu_cores}  Memory: {res.memory_mb}MB  Free disk: {res.disk_free_mb}MB")
        for w in res.warnings:
            log.warning(w)
        self.prompt.section("Installing Required Packages")
        self.host.install_requirements()
        self._os_info = os_info

    def ensure_docker(self) -> None:
        self.prompt.section("Docker Installation")
        if self._os_info is None:
            self._os_info = self.host.check_system()
        status = self.host.docker_status()
        if status == 0:
            if self.prompt.confirm("Docker is already installed. Reinstall official Docker packages?", False):
                self.host.install_docker(self._os_info)
        elif status == 2:
            if self.prompt.confirm("Docker Compose plugin is missing. Install it?", True):
                self.host.install_docker(self._os_info)
            else:
                raise ProvisioningError("Docker Compose is required")
        else:
            self.host.install_docker(self._os_info)
        self.host.add_to_docker_group(self.state.user)

    # ---------------- account / directory ----------------
    def select_user(self) -> str:
        self.prompt.section("User Account Setup")
        uid = None
        if self.host.user_exists(self.current_user):
            uid = self.host.user_uid(self.current_user)
        suggested = 1 if uid == 1000 else 2
        while True:
            choice = self.prompt.choose(
                "Select option (1-3)",
                [f"Use current user ({self.current_user})",
                 "Create new dedicated server user",
                 "Use different existing system user"],
                default=suggested,
            )
            if choice == 1:
                user = self.current_user
                break
            if choice == 2:
                user = self._new_user()
                break
            picked = self._existing_user()
            if picked:
                user = picked
                break
        self.state.user = user
        log.info("User setup complete: %s", user)
        return user

    def _new_user(self) -> str:
        while True:
            name = self.prompt.ask("Enter username for new account", "etlserver")
            if self.host.user_exists(name):
                self.prompt.say(f"User '{name}' already exists. Please choose a different username.")
                continue
            if not self.host.valid_username(name):
                self.prompt.say("Invalid username format. Use only lowercase letters, numbers, dash (-) and underscore (_).")
                continue
            self.host.create_user(name)
            return name

    def _existing_user(self) -> Optional[str]:
        users = self.host.regular_users()
        for u in users:
            self.prompt.say(f"  * {u}")
        while True:
            name = self.prompt.ask("Enter username (or 'back' to return to main menu)")
            if name == "back":
                return None
            if name in users:
                return name
            self.prompt.say(f"User '{name}' does not exist or is not a regular user (UID >= 1000).")

    def select_install_dir(self) -> Path:
        self.prompt.section("Installation Directory Setup")
        default_dir = self.host.user_home(self.state.user) / "etlserver"
        if self.prompt.confirm(f"Install to default path: [{default_dir}]", True):
            install_dir = default_dir
        else:
            while True:
                raw = self.prompt.ask("Enter the full path where you want to install ETLegacy Server", str(default_dir))
                if raw.startswith("/"):
                    install_dir = Path(raw)
                    break
                self.prompt.say("Please provide an absolute path (starting with /)")
        if install_dir.is_dir() and any(install_dir.iterdir()):
            if not self.prompt.confirm("Directory exists and is not empty. Use it anyway?", False):
                raise ProvisioningError(f"Installation directory {install_dir} is not empty")
        self.host.setup_directory(install_dir, self.state.user)
        self.state.install_dir = install_dir
        return install_dir

    def init_store(self) -> SettingsStore:
        path = self.state.install_dir / SETTINGS_FILE
        self.store = SettingsStore(path)
        self.store.initialize(created_by=self.current_user)
        log.info("Settings file initialized: %s", path)
        return self.store

    # ---------------- instances / maps / stats ----------------
    def ask_instance_count(self) -> int:
        self.prompt.section("Server Instance Configuration")
        self.prompt.say("Each instance uses a unique UDP port (starting from 27960) and its own settings.")
        self.state.count = self.prompt.ask_int("How many server instances?", 1, validate=validate_instance_count)
        return self.state.count

    def configure_maps(self) -> None:
        self.prompt.section("Map Configuration")
        self.state.predownload = self.prompt.confirm("Use persistent volume for maps?", True)
        maps = list(DEFAULT_MAPS)
        self.prompt.say("Default competitive map list: " + " ".join(maps))
        if self.prompt.confirm("Add additional maps?", False):
            maps = normalize_map_names(maps + parse_map_input(self.prompt.ask("Enter additional maps (space-separated)")))
        self.store.set(Category.MAPS, "MAPS", ":".join(maps))

        if not self.state.predownload:
            log.warning("Each container will need to download maps on every restart.")
            self.store.set(Category.MAPS, "REDIRECTURL", CONTAINER_REDIRECT_URL)
            return

        maps_dir = self.host.setup_directory(self.state.install_dir / "maps", self.state.user)
        options = [label for label, _ in MAP_REPOSITORIES] + ["Custom repository URL"]
        choice = self.prompt.choose("Select repository (1-3)", options, default=1)
        if choice <= len(MAP_REPOSITORIES):
            repo_url = MAP_REPOSITORIES[choice - 1][1]
        else:
            repo_url = self.prompt.ask("Enter custom repository URL", MAP_REPOSITORIES[0][1])

        failed_log = self.state.install_dir / "failed_maps.txt"
        failed_log.unlink(missing_ok=True)
        fetcher = self.fetcher_factory(maps_dir, remote_root=repo_url, workers=PREDOWNLOAD_WORKERS,
                                       failed_log=failed_log)
        report = fetcher.fetch(maps)
        self.state.map_report = report
        if report.failed:
            self.prompt.say("The following maps failed to download:")
            for name in report.failed:
                self.prompt.say(f"  * {name}")
            self.prompt.say("You may need to download these maps manually or try a different repository.")
        else:
            log.info("All maps downloaded successfully!")
        failed_log.unlink(missing_ok=True)

    def configure_stats(self) -> None:
        self.prompt.section("Stats Configuration")
        if self.prompt.confirm("Would you like to enable stats submission?", True):
            for key, value in STATS_DEFAULTS.items():
                self.store.set(Category.STATS, key, value)
            log.info("Stats collection enabled and configured")
        else:
            self.store.set(Category.STATS, "STATS_SUBMIT", "false")

    # ---------------- optional extras ----------------
    def _global_or_per_instance(self, key: str, question: str, default: str,
                                validate: Optional[Callable[[str], object]] = None) -> None:
        per_server = not self.prompt.confirm(f"Configure {key} globally? (no = per-server)", True)
        targets = range(1, self.state.count + 1) if per_server else [None]
        for n in targets:
            label = f"{question} for server{n}" if n else f"{question} (global)"
            while True:
                value = self.prompt.ask(label, default)
                try:
                    if validate:
                        validate(value)
                    break
                except ValueError as e:
                    self.prompt.say(f"  {e}")
            if n:
                self.store.set(Category.SERVERS, key, value, Scope.INSTANCE, n)
            else:
                self.store.set(Category.ADDITIONAL, key, value)

    def configure_additional(self) -> None:
        self.prompt.section("Additional Configuration Options")
        options = [
            "STARTMAP", "MAXCLIENTS", "AUTO_UPDATE", "SETTINGSURL", "SVTRACKER",
            "XMAS", "SETTINGSBRANCH", "ADDITIONAL_CLI_ARGS", "Done",
        ]
        while True:
            choice = options[self.prompt.choose("Select option", options, default=len(options)) - 1]
            if choice == "Done":
                return
            if choice == "STARTMAP":
                self._global_or_per_instance("STARTMAP", "Enter STARTMAP", "radar")
            elif choice == "MAXCLIENTS":
                self._global_or_per_instance("MAXCLIENTS", "Enter MAXCLIENTS", "32", validate=_validate_maxclients)
            elif choice == "AUTO_UPDATE":
                enabled = self.prompt.confirm("Enable AUTO_UPDATE of the config repository?", True)
                self.store.set(Category.ADDITIONAL, "AUTO_UPDATE", "true" if enabled else "false")
            elif choice == "SETTINGSURL":
                self.store.set(Category.ADDITIONAL, "SETTINGSURL",
                               self.prompt.ask("Enter SETTINGSURL", DEFAULT_SETTINGS_URL))
            elif choice == "SVTRACKER":
                self.store.set(Category.ADDITIONAL, "SVTRACKER",
                               self.prompt.ask("Enter SVTRACKER endpoint", DEFAULT_TRACKER))
            elif choice == "XMAS":
                if self.prompt.confirm("Enable XMAS mode?", False):
                    self.store.set(Category.ADDITIONAL, "XMAS", "true")
                    url = self.prompt.ask("Enter XMAS_URL (leave empty for default)")
                    if url:
                        self.store.set(Category.ADDITIONAL, "XMAS_URL", url)
            elif choice == "SETTINGSBRANCH":
                self.store.set(Category.ADDITIONAL, "SETTINGSBRANCH", self.prompt.ask("Enter SETTINGSBRANCH", "main"))
            elif choice == "ADDITIONAL_CLI_ARGS":
                args = self.prompt.ask("Enter additional arguments (e.g. +set sv_hidden 1)")
                if args:
                    self.store.set(Category.ADDITIONAL, "ADDITIONAL_CLI_ARGS", args)

    def set_volume_paths(self) -> None:
        self.store.set(Category.VOLUMES, "MAPSDIR", str(self.state.install_dir / "maps"))
        self.store.set(Category.VOLUMES, "LOGS", str(self.state.install_dir / "logs"))

    def configure_addons(self) -> None:
        self.prompt.section("Watchtower Configuration")
        self.state.watchtower = self.prompt.confirm(
            "Would you like to enable Watchtower for automatic updates?", True)
        self.state.mapserver = self.prompt.confirm(
            "Serve the maps directory over HTTP (nginx map server)?", False) if self.state.predownload else False
        self.prompt.section("Automatic Server Restart Configuration")
        self.state.auto_restart = self.prompt.confirm(
            "Would you like to enable automatic server restarts every 2 hours?", True)
        if self.state.auto_restart:
            for n in range(1, self.state.count + 1):
                self.host.add_cron(self.state.user, restart_cron_line(n))
            log.info("Automatic restart cron jobs have been added for user %s", self.state.user)

    # ---------------- per instance ----------------
    def configure_instance(self, n: int, taken: List[int]) -> InstanceSpec:
        self.prompt.section(f"Server {n} Configuration")
        suggested = default_port(n)
        while suggested in taken:
            suggested += 1
        while True:
            port = self.prompt.ask_int("Server Port", suggested, validate=validate_port)
            if port not in taken:
                break
            self.prompt.say(f"  Port {port} is already used by another server.")
        hostname = self.prompt.ask("Server Name", default_hostname(n))
        # per-server STARTMAP/MAXCLIENTS from the extras step
        maxclients = self.store.get(Category.SERVERS, "MAXCLIENTS", instance=n)
        return make_instance(
            n,
            port=port,
            hostname=hostname,
            startmap=self.store.get(Category.SERVERS, "STARTMAP", instance=n),
            maxclients=int(maxclients) if maxclients else None,
            password=self.prompt.ask("Server Password [default: empty]"),
            rcon_password=self.prompt.ask("RCON Password [default: empty]"),
            referee_password=self.prompt.ask("Referee Password [default: empty]"),
            sc_password=self.prompt.ask("Shoutcaster Password [default: empty]"),
        )

    def configure_instances(self) -> List[InstanceSpec]:
        specs: List[InstanceSpec] = []
        for n in range(1, self.state.count + 1):
            specs.append(self.configure_instance(n, [s.port for s in specs]))
        self.state.instances = specs
        return specs

    def composer(self) -> InstanceComposer:
        return InstanceComposer(self.store, ComposeOptions(watchtower=self.state.watchtower,
                                                           mapserver=self.state.mapserver))

    def write_compose(self) -> Path:
        composer = self.composer()
        composer.store_instances(self.state.instances)
        return composer.write_descriptor(self.state.instances, self.state.install_dir / "docker-compose.yml")

    def review(self) -> None:
        self.prompt.section("Configuration Review")
        self.prompt.say(f"Installation Directory: {self.state.install_dir}")
        self.prompt.say(f"Number of Instances: {self.state.count}")
        self.prompt.say()
        self.prompt.say(self.store.render())
        self.prompt.say((self.state.install_dir / "docker-compose.yml").read_text(encoding="utf-8"))
        self.prompt.ask("Press Enter to continue with these settings, or Ctrl+C to abort")

    def finalize(self) -> Path:
        # ownership is applied once, recursively, at the end
        self.composer().scaffold(self.state.install_dir, self.state.instances)
        script = install_helper(self.state.install_dir, link=self.helper_link)
        self.host.chown_tree(self.state.install_dir, self.state.user)
        self.verify_helper(script)
        return script

    def verify_helper(self, script: Path) -> None:
        """The service user must be able to run the wrapper, not just root."""
        try:
            self.host.run_as(self.state.user, f"{shlex.quote(str(script))} --help >/dev/null")
        except ProvisioningError as e:
            raise ProvisioningError(
                f"{self.state.user} cannot run {script}: neither etl-manage on PATH nor {sys.executable} "
                "is usable by that user. Install etl-launcher system-wide (outside /root) and rerun."
            ) from e

    def start(self) -> None:
        log.info("Setup complete! Your ETL servers are now being started...")
        self.host.run_as(self.state.user, f"cd {self.state.install_dir} && ./{HELPER_NAME} start")
        self.prompt.say(f"Servers are running under user: {self.state.user}")
        self.prompt.say("Use 'etl-server start|stop|restart|status|logs|rcon|update [instance]' to manage your servers")
        self.prompt.say(f"Please log out and back in as {self.state.user} for docker group membership to take effect")

    # ---------------- flow ----------------
    def run(self) -> int:
        self.check_host()
        self.select_user()
        self.select_install_dir()
        self.init_store()
        self.ensure_docker()
        self.ask_instance_count()
        self.configure_maps()
        self.configure_stats()
        self.configure_additional()
        self.set_volume_paths()
        self.configure_addons()
        self.configure_instances()
        self.write_compose()
        if self.prompt.confirm("Would you like to review your settings?", True):
            self.review()
        self.finalize()
        self.start()
        return 0


def _validate_maxclients(value: str) -> int:
    if not value.isdigit() or not 1 <= int(value) <= 64:
        raise InstanceConfigError(f"MAXCLIENTS must be between 1 and 64, got {value!r}")
    return int(value)
