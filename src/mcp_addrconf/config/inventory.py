"""Updater and device inventory loaded from YAML configuration."""
import logging
import os
import shlex
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

import yaml

from ..exceptions import AddrconfConfigError
from .schema import AddrconfMode, UpdateKind

logger = logging.getLogger(__name__)

DEFAULT_SCRIPT_TIMEOUT = 30.0


@dataclass
class UpdaterScripts:
    """External scripts configured for one update kind."""
    install: Optional[list[str]] = None
    backup: Optional[list[str]] = None
    restore: Optional[list[str]] = None
    timeout: Optional[float] = None

    @property
    def has_backup_restore(self) -> bool:
        return self.backup is not None and self.restore is not None


def parse_command(value: Union[str, list, None]) -> Optional[list[str]]:
    """Turn a script entry into an argv list.

    Accepts a shell-style string or a list of arguments.
    """
    if value is None:
        return None
    if isinstance(value, str):
        argv = shlex.split(value)
    elif isinstance(value, list):
        argv = [str(arg) for arg in value]
    else:
        raise AddrconfConfigError(f"Invalid script entry: {value!r}")
    return argv or None


class AddrconfInventory:
    """Loads updater scripts and managed devices from YAML config.

    ```yaml
    defaults:
      timeout: 30
    updaters:
      hostname:
        backup: /usr/libexec/addrconf/hostname backup
        restore: /usr/libexec/addrconf/hostname restore
        install: /usr/libexec/addrconf/hostname install
      resolver:
        install: [/usr/libexec/addrconf/resolver, install]
    devices:
      eth0: {ifindex: 2}
    acquisition:
      mode: static
    ```
    """

    def __init__(self, config_path: Optional[str] = None):
        self.config_path = config_path or os.environ.get("ADDRCONF_CONFIG") or self._find_config()
        self._config: dict = {}
        self._load_config()

    @classmethod
    def from_dict(cls, config: dict) -> "AddrconfInventory":
        """Build an inventory from an already parsed mapping."""
        inv = cls.__new__(cls)
        inv.config_path = None
        inv._config = config or {}
        inv._validate()
        return inv

    def _find_config(self) -> str:
        """Find the addrconf.yaml config file."""
        search_paths = [
            Path.cwd() / "configs" / "addrconf.yaml",
            Path.cwd() / "addrconf.yaml",
            Path.home() / ".config" / "mcp-addrconf" / "addrconf.yaml",
            Path("/etc/mcp-addrconf/addrconf.yaml"),
        ]

        for path in search_paths:
            if path.exists():
                return str(path)

        raise FileNotFoundError(
            "Could not find addrconf.yaml. Create one in ./configs/addrconf.yaml"
        )

    def _load_config(self) -> None:
        """Load the YAML configuration."""
        with open(self.config_path) as f:
            self._config = yaml.safe_load(f) or {}
        self._validate()

    def _validate(self) -> None:
        """Warn about updater blocks that name unknown kinds."""
        known = {kind.value for kind in UpdateKind}
        for name in self._config.get("updaters", {}) or {}:
            if name not in known:
                logger.warning(f"Ignoring updater for unknown kind: {name}")

    def get_script_timeout(self) -> float:
        defaults = self._config.get("defaults", {}) or {}
        return float(defaults.get("timeout", DEFAULT_SCRIPT_TIMEOUT))

    def get_updater_scripts(self, kind: UpdateKind) -> Optional[UpdaterScripts]:
        """Get the scripts configured for a kind, or None if unconfigured."""
        updaters = self._config.get("updaters", {}) or {}
        block = updaters.get(kind.value)
        if block is None:
            return None
        if not isinstance(block, dict):
            raise AddrconfConfigError(f"Updater block for {kind.value} must be a mapping")

        timeout = block.get("timeout")
        return UpdaterScripts(
            install=parse_command(block.get("install")),
            backup=parse_command(block.get("backup")),
            restore=parse_command(block.get("restore")),
            timeout=float(timeout) if timeout is not None else None,
        )

    def get_device_names(self) -> list[str]:
        """Get names of all managed devices."""
        return list((self._config.get("devices", {}) or {}).keys())

    def get_device_config(self, name: str) -> dict:
        devices = self._config.get("devices", {}) or {}
        if name not in devices:
            raise KeyError(f"Unknown device: {name}")
        return devices[name] or {}

    def get_acquisition_mode(self) -> AddrconfMode:
        acquisition = self._config.get("acquisition", {}) or {}
        value = acquisition.get("mode", AddrconfMode.STATIC.value)
        try:
            return AddrconfMode(value)
        except ValueError:
            raise AddrconfConfigError(f"Unknown acquisition mode: {value}")
