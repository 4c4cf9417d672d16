"""
host.py: host provisioning for the installer
--------------------------------------------
OS/root/resource checks, apt packages, Docker CE from the official
repository, service user handling, directory ownership and cron entries.
Every failed step raises ProvisioningError; the installer aborts on it.
"""

from __future__ import annotations
import os
import pwd
import re
import shutil
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from ..errors import ProvisioningError
from ..logging_setup import get_logger

log = get_logger("etl.launcher.host")

SUPPORTED_OS = ("ubuntu", "debian")
REQUIRED_PACKAGES = [
    "curl",
    "wget",
    "git",
    "cron",
    "lsb-release",
    "gnupg",
    "ca-certificates",
    "apt-transport-https",
]
DOCKER_PACKAGES = ["docker-ce", "docker-ce-cli", "containerd.io", "docker-compose-plugin"]
USERNAME_RE = re.compile(r"^[a-z_][a-z0-9_-]*[$]?$")


@dataclass
class OsInfo:
    id: str
    version: str
    codename: str


@dataclass
class Resources:
    cpu_cores: int
    memory_mb: int
    disk_free_mb: int
    warnings: List[str] = field(default_factory=list)


def parse_os_release(text: str) -> Dict[str, str]:
    out: Dict[str, str] = {}
    for line in text.splitlines():
        if "=" not in line or line.lstrip().startswith("#"):
            continue
        k, _, v = line.partition("=")
        out[k.strip()] = v.strip().strip('"').strip("'")
    return out


class HostProvisioner:
    def __init__(self, os_release: Path = Path("/etc/os-release")):
        self.os_release = os_release

    # ---------------- command helper ----------------
    def run(self, cmd: List[str], *, what: str, input: Optional[str] = None) -> str:
        log.debug("exec: %s", " ".join(cmd))
        try:
            proc = subprocess.run(cmd, capture_output=True, text=True, input=input)
        except OSError as e:
            raise ProvisioningError(f"{what} failed: {e}") from e
        if proc.returncode != 0:
            log.debug("stderr: %s", (proc.stderr or "")[-4000:])
            raise ProvisioningError(f"{what} failed (rc={proc.returncode}): {(proc.stderr or '').strip()[-400:]}")
        return proc.stdout

    # ---------------- checks ----------------
    def check_system(self) -> OsInfo:
        try:
            data = parse_os_release(self.os_release.read_text(encoding="utf-8"))
        except OSError as e:
            raise ProvisioningError(f"Cannot detect operating system: {e}") from e
        info = OsInfo(
            id=data.get("ID", "").lower(),
            version=data.get("VERSION_ID", ""),
            codename=data.get("VERSION_CODENAME", "") or data.get("UBUNTU_CODENAME", ""),
        )
        if info.id not in SUPPORTED_OS:
            raise ProvisioningError(
                f"This script only supports Ubuntu and Debian systems. Detected system: {info.id} {info.version}")
        log.info("System compatibility check passed (%s %s)", info.id, info.version)
        return info

    @staticmethod
    def check_root() -> None:
        if os.geteuid() != 0:
            raise ProvisioningError("This script must be run as root or with sudo.")

    @staticmethod
    def _memory_mb(meminfo: Path = Path("/proc/meminfo")) -> int:
        try:
            for line in meminfo.read_text().splitlines():
                if line.startswith("MemTotal:"):
                    return int(line.split()[1]) // 1024
        except (OSError, ValueError, IndexError):
            pass
        return 0

    def check_resources(self, path: Path = Path.home()) -> Resources:
        res = Resources(
            cpu_cores=os.cpu_count() or 1,
            memory_mb=self._memory_mb(),
            disk_free_mb=shutil.disk_usage(path).free // (1024 * 1024),
        )
        if res.cpu_cores < 2:
            res.warnings.append("Low CPU cores detected (minimum recommended: 2)")
        if res.memory_mb < 1024:
            res.warnings.append("Low memory detected (minimum recommended: 1GB)")
        if res.disk_free_mb < 2048:
            res.warnings.append("Low disk space detected (minimum recommended: 2GB)")
        return res

    # ---------------- packages ----------------
    def install_requirements(self, packages: Optional[List[str]] = None) -> None:
        self.run(["apt-get", "update"], what="apt-get update")
        for pkg in packages or REQUIRED_PACKAGES:
            log.info("Installing %s...", pkg)
            self.run(["apt-get", "install", "-y", pkg], what=f"Installing {pkg}")

    @staticmethod
    def docker_status() -> int:
        """0 ready, 1 docker missing, 2 compose plugin missing."""
        if not shutil.which("docker"):
            return 1
        proc = subprocess.run(["docker", "compose", "version"], capture_output=True, text=True)
        if proc.returncode == 0 or shutil.which("docker-compose"):
            return 0
        return 2

    def install_docker(self, os_info: OsInfo) -> None:
        if os_info.id not in SUPPORTED_OS:
            raise ProvisioningError(f"Unsupported operating system: {os_info.id}")
        keyrings = Path("/etc/apt/keyrings")
        keyrings.mkdir(parents=True, exist_ok=True)
        key = keyrings / "docker.asc"
        self.run(["curl", "-fsSL", f"https://download.docker.com/linux/{os_info.id}/gpg", "-o", str(key)],
                 what="Downloading Docker GPG key")
        key.chmod(0o644)
        arch = self.run(["dpkg", "--print-architecture"], what="Detecting architecture").strip()
        Path("/etc/apt/sources.list.d/docker.list").write_text(
            f"deb [arch={arch} signed-by={key}] https://download.docker.com/linux/{os_info.id} "
            f"{os_info.codename} stable\n")
        self.run(["apt-get", "update"], what="apt-get update")
        self.run(["apt-get", "install", "-y"] + DOCKER_PACKAGES, what="Installing Docker packages")
        log.info("Docker installation completed successfully!")

    def add_to_docker_group(self, user: str) -> None:
        self.run(["usermod", "-aG", "docker", user], what=f"Adding {user} to docker group")

    # ---------------- users ----------------
    @staticmethod
    def user_exists(name: str) -> bool:
        try:
            pwd.getpwnam(name)
        except KeyError:
            return False
        return True

    @staticmethod
    def user_home(name: str) -> Path:
        try:
            return Path(pwd.getpwnam(name).pw_dir)
        except KeyError:
            return Path.home()

    @staticmethod
    def user_uid(name: str) -> int:
        return pwd.getpwnam(name).pw_uid

    @staticmethod
    def regular_users() -> List[str]:
        return [p.pw_name for p in pwd.getpwall() if p.pw_uid >= 1000 and p.pw_uid != 65534]

    @staticmethod
    def valid_username(name: str) -> bool:
        return bool(USERNAME_RE.match(name))

    def create_user(self, name: str) -> None:
        self.run(["useradd", "-m", "-s", "/bin/bash", name], what=f"Creating user {name}")
        # interactive: inherits the terminal
        if subprocess.run(["passwd", name]).returncode != 0:
            subprocess.run(["userdel", "-r", name], capture_output=True)
            raise ProvisioningError(f"Failed to set password for {name}; user removed")

    # ---------------- filesystem ----------------
    @staticmethod
    def setup_directory(path: Path, owner: Optional[str], mode: int = 0o755) -> Path:
        path = Path(path)
        try:
            path.mkdir(parents=True, exist_ok=True)
            path.chmod(mode)
            if owner:
                shutil.chown(path, user=owner, group=owner)
        except (OSError, LookupError) as e:
            raise ProvisioningError(f"Failed to set up directory {path}: {e}") from e
        return path

    @staticmethod
    def chown_tree(path: Path, owner: str) -> None:
        try:
            shutil.chown(path, user=owner, group=owner)
            for root, dirs, files in os.walk(path):
                for name in dirs + files:
                    shutil.chown(os.path.join(root, name), user=owner, group=owner)
        except (OSError, LookupError) as e:
            raise ProvisioningError(f"Failed to set ownership of {path} to {owner}: {e}") from e

    # ---------------- cron ----------------
    def add_cron(self, user: str, line: str) -> bool:
        """Append ``line`` to the user's crontab unless it is already there."""
        proc = subprocess.run(["crontab", "-l", "-u", user], capture_output=True, text=True)
        current = proc.stdout if proc.returncode == 0 else ""
        if line in current.splitlines():
            return False
        new = (current.rstrip("\n") + "\n" if current.strip() else "") + line + "\n"
        self.run(["crontab", "-u", user, "-"], what=f"Installing crontab for {user}", input=new)
        return True

    def run_as(self, user: str, command: str) -> None:
        self.run(["su", "-", user, "-c", command], what=f"Running '{command}' as {user}")
