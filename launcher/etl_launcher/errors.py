from __future__ import annotations


class LauncherError(Exception):
    """Base error; the CLI turns it into a non-zero exit."""


class ProvisioningError(LauncherError):
    """Fatal host/provisioning failure (unsupported OS, failed install, chown...)."""


class SettingsStoreError(LauncherError):
    """settings.env could not be read or written."""


class InstanceConfigError(LauncherError, ValueError):
    """Invalid instance input (count, port range, duplicate ports)."""


class TemplateMissingError(LauncherError, FileNotFoundError):
    """etl_server.cfg template absent from the config repository."""
