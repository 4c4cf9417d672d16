"""
Multi-instance docker-compose generation.

Each ``etl-server<n>`` service references only its own ``${SERVER<n>_*}``
variables from settings.env. Credentials are bound only when they are set;
an empty credential means that access mode stays disabled.
"""

from __future__ import annotations
import copy
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import yaml
from pydantic import BaseModel, Field, ValidationError

from ..config import Category, Scope, SettingsStore, instance_key
from ..errors import InstanceConfigError, ProvisioningError
from ..logging_setup import get_logger

log = get_logger("etl.launcher.composer")

BASE_PORT = 27960
# Installer variants disagree on the per-instance offset (+(n-1) vs +(n-1)*10);
# this is the single policy knob, pinned to consecutive ports.
PORT_OFFSET_STEP = 1
MIN_PORT = 1024
MAX_PORT = 65535
MAX_INSTANCES = 10

IMAGE = "oksii/etlegacy"
NETWORK = "etl"
SETTINGS_FILE = "settings.env"


def default_port(ordinal: int, *, base: int = BASE_PORT, step: int = PORT_OFFSET_STEP) -> int:
    return base + (ordinal - 1) * step


def default_hostname(ordinal: int) -> str:
    return f"^7ETL Server {ordinal}"


def service_name(ordinal: int) -> str:
    return f"etl-server{ordinal}"


class InstanceSpec(BaseModel):
    ordinal: int = Field(ge=1, le=MAX_INSTANCES)
    port: int = Field(ge=MIN_PORT, le=MAX_PORT)
    hostname: str
    password: str = ""
    rcon_password: str = ""
    referee_password: str = ""
    sc_password: str = ""
    startmap: Optional[str] = None
    maxclients: Optional[int] = Field(default=None, ge=1, le=64)

    @classmethod
    def default(cls, ordinal: int) -> "InstanceSpec":
        return cls(ordinal=ordinal, port=default_port(ordinal), hostname=default_hostname(ordinal))

    def credentials(self) -> Dict[str, str]:
        return {
            "PASSWORD": self.password,
            "RCONPASSWORD": self.rcon_password,
            "REFEREEPASSWORD": self.referee_password,
            "SCPASSWORD": self.sc_password,
        }

    def overrides(self) -> Dict[str, str]:
        out: Dict[str, str] = {}
        if self.startmap:
            out["STARTMAP"] = self.startmap
        if self.maxclients is not None:
            out["MAXCLIENTS"] = str(self.maxclients)
        return out


def make_instance(ordinal: int, **kwargs: Any) -> InstanceSpec:
    """InstanceSpec construction with validation errors mapped to InstanceConfigError."""
    try:
        return InstanceSpec(ordinal=ordinal, **kwargs)
    except ValidationError as e:
        raise InstanceConfigError(f"server {ordinal}: {e.errors()[0].get('msg', e)}") from e


def validate_port(value: str) -> int:
    if not str(value).strip().isdigit():
        raise InstanceConfigError(f"Invalid port number {value!r}. Must be between {MIN_PORT} and {MAX_PORT}")
    port = int(value)
    if port < MIN_PORT or port > MAX_PORT:
        raise InstanceConfigError(f"Invalid port number {port}. Must be between {MIN_PORT} and {MAX_PORT}")
    return port


def validate_instance_count(value: Any) -> int:
    try:
        n = int(str(value).strip())
    except ValueError:
        raise InstanceConfigError(f"Please enter a valid number between 1 and {MAX_INSTANCES}") from None
    if n < 1 or n > MAX_INSTANCES:
        raise InstanceConfigError(f"Please enter a valid number between 1 and {MAX_INSTANCES}")
    return n


@dataclass
class ComposeOptions:
    image: str = IMAGE
    settings_file: str = SETTINGS_FILE
    watchtower: bool = False
    mapserver: bool = False
    mapserver_port: int = 8080


class InstanceComposer:
    def __init__(self, store: SettingsStore, options: Optional[ComposeOptions] = None):
        self.store = store
        self.options = options or ComposeOptions()

    # ---------------- validation ----------------
    @staticmethod
    def validate_instances(instances: Sequence[InstanceSpec]) -> List[InstanceSpec]:
        validate_instance_count(len(instances))
        ordinals = [i.ordinal for i in instances]
        if sorted(ordinals) != list(range(1, len(instances) + 1)):
            raise InstanceConfigError(f"instance ordinals must be 1..{len(instances)}, got {ordinals}")
        seen: Dict[int, int] = {}
        for inst in instances:
            if inst.port in seen:
                raise InstanceConfigError(
                    f"port {inst.port} of server {inst.ordinal} is already used by server {seen[inst.port]}")
            seen[inst.port] = inst.ordinal
        return sorted(instances, key=lambda i: i.ordinal)

    # ---------------- settings ----------------
    def store_instances(self, instances: Sequence[InstanceSpec]) -> None:
        for inst in self.validate_instances(instances):
            n = inst.ordinal
            self.store.set(Category.SERVERS, "HOSTNAME", inst.hostname, Scope.INSTANCE, n)
            self.store.set(Category.SERVERS, "PORT", inst.port, Scope.INSTANCE, n)
            for key, value in {**inst.credentials(), **inst.overrides()}.items():
                if value:
                    self.store.set(Category.SERVERS, key, value, Scope.INSTANCE, n)
                elif self.store.get(Category.SERVERS, key, instance=n) is not None:
                    self.store.unset(key, instance=n)
        log.info("Stored settings for %d instance(s)", len(instances))

    # ---------------- descriptor ----------------
    def _common_core(self) -> Dict[str, Any]:
        core: Dict[str, Any] = {
            "image": f"{self.options.image}:${{VERSION}}",
            "env_file": self.options.settings_file,
            "networks": [NETWORK],
            "stdin_open": True,
            "tty": True,
            "restart": "unless-stopped",
        }
        if self.options.watchtower:
            core["labels"] = [
                "com.centurylinklabs.watchtower.enable=true",
                "com.centurylinklabs.watchtower.lifecycle.pre-update=etl-launcher autorestart",
            ]
        return core

    def service_for(self, inst: InstanceSpec) -> Dict[str, Any]:
        n = inst.ordinal
        def ref(key: str) -> str:
            return f"${{{instance_key(n, key)}}}"

        env: Dict[str, str] = {"MAP_PORT": ref("PORT"), "HOSTNAME": ref("HOSTNAME")}
        for key, value in {**inst.credentials(), **inst.overrides()}.items():
            if value:
                env[key] = ref(key)
        svc = copy.deepcopy(self._common_core())
        svc.update({
            "container_name": service_name(n),
            "environment": env,
            "volumes": [
                "${MAPSDIR}:/maps",
                f"${{LOGS}}/{service_name(n)}:/legacy/homepath/legacy/",
            ],
            "ports": [f"{ref('PORT')}:{ref('PORT')}/udp"],
        })
        return svc

    def build_descriptor(self, instances: Sequence[InstanceSpec]) -> Dict[str, Any]:
        instances = self.validate_instances(instances)
        services: Dict[str, Any] = {service_name(i.ordinal): self.service_for(i) for i in instances}

        if self.options.watchtower:
            services["watchtower"] = {
                "container_name": "watchtower",
                "image": "containrrr/watchtower",
                "command": "--enable-lifecycle-hooks",
                "volumes": ["/var/run/docker.sock:/var/run/docker.sock"],
                "labels": [
                    "com.centurylinklabs.watchtower.enable=true",
                    "com.watchtower=watchtower",
                ],
                "restart": "unless-stopped",
            }
        if self.options.mapserver:
            services["mapserver"] = {
                "container_name": "etl-mapserver",
                "image": "nginx:alpine",
                "volumes": ["${MAPSDIR}:/usr/share/nginx/html/etmain:ro"],
                "ports": [f"{self.options.mapserver_port}:80"],
                "networks": [NETWORK],
                "restart": "unless-stopped",
            }

        return {
            "networks": {NETWORK: {"name": NETWORK}},
            "services": services,
        }

    def render_descriptor(self, instances: Sequence[InstanceSpec]) -> str:
        return yaml.safe_dump(self.build_descriptor(instances), sort_keys=False, default_flow_style=False,
                              allow_unicode=True)

    def write_descriptor(self, instances: Sequence[InstanceSpec], path: Path) -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(self.render_descriptor(instances), encoding="utf-8")
        log.info("Docker Compose configuration written: %s", path)
        return path

    # ---------------- filesystem ----------------
    def scaffold(self, install_dir: Path, instances: Sequence[InstanceSpec]) -> List[Path]:
        """``logs/etl-server<n>`` per instance, world-writable for the container user."""
        logs = Path(install_dir) / "logs"
        created = [logs] + [logs / service_name(i.ordinal) for i in instances]
        for p in created:
            try:
                p.mkdir(parents=True, exist_ok=True)
                os.chmod(p, 0o777)
            except OSError as e:
                raise ProvisioningError(f"Failed to set up directory {p}: {e}") from e
        return created

    def instances_from_store(self) -> List[InstanceSpec]:
        """Rebuild the instance list from settings.env (hand edits included)."""
        out: List[InstanceSpec] = []
        for n in self.store.instances():
            port = self.store.get(Category.SERVERS, "PORT", instance=n)
            hostname = self.store.get(Category.SERVERS, "HOSTNAME", instance=n) or default_hostname(n)
            kwargs: Dict[str, Any] = {
                "port": validate_port(port) if port else default_port(n),
                "hostname": hostname,
                "password": self.store.get(Category.SERVERS, "PASSWORD", "", instance=n),
                "rcon_password": self.store.get(Category.SERVERS, "RCONPASSWORD", "", instance=n),
                "referee_password": self.store.get(Category.SERVERS, "REFEREEPASSWORD", "", instance=n),
                "sc_password": self.store.get(Category.SERVERS, "SCPASSWORD", "", instance=n),
                "startmap": self.store.get(Category.SERVERS, "STARTMAP", instance=n),
            }
            maxclients = self.store.get(Category.SERVERS, "MAXCLIENTS", instance=n)
            if maxclients:
                kwargs["maxclients"] = maxclients
            out.append(make_instance(n, **kwargs))
        return out
