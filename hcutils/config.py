"""TOML-based settings for hcutils.

Loads ~/.hcutils/defaults.toml (global) and hcutils.toml (project),
merges them, and overlays the API token from the environment.

Example hcutils.toml:

    server_type = "cx22"
    image = "ubuntu-22.04"
    reachability_timeout = 90
"""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any

from hcutils.exceptions import ConfigurationError

type RawConfig = dict[str, Any]

TOKEN_ENV_VAR = "HCLOUD_TOKEN"
GLOBAL_CONFIG_PATH = Path.home() / ".hcutils" / "defaults.toml"
PROJECT_CONFIG_NAME = "hcutils.toml"


@dataclass(frozen=True, slots=True)
class Settings:
    """Immutable run configuration.

    Args:
        token: Hetzner Cloud API token. Falls back to HCLOUD_TOKEN env var.
        server_type: Server type of the temporary server.
        image: OS image of the temporary server.
        ssh_user: Login user on the temporary server.
        ssh_port: SSH port probed for reachability and dialed for transfer.
        reachability_timeout: Seconds to wait for the SSH port to open.
        poll_interval: Seconds between action and reachability polls.
        connect_timeout: Seconds allowed for the SSH handshake.
        volume_format: Filesystem for volumes created by upload.
        labels: Marker labels put on every resource hcutils creates.
    """

    token: str = field(default="", repr=False)
    server_type: str = "cx22"
    image: str = "ubuntu-22.04"
    ssh_user: str = "root"
    ssh_port: int = 22
    reachability_timeout: float = 60.0
    poll_interval: float = 2.0
    connect_timeout: float = 30.0
    volume_format: str = "ext4"
    labels: dict[str, str] = field(default_factory=lambda: {"created-by": "hcutils"})

    def require_token(self) -> str:
        if not self.token:
            raise ConfigurationError(f"{TOKEN_ENV_VAR} environment variable is not set")
        return self.token


def _deep_merge(base: RawConfig, override: RawConfig) -> RawConfig:
    result = dict(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _read_toml(path: Path) -> RawConfig:
    if not path.is_file():
        return {}
    try:
        with path.open("rb") as f:
            return tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigurationError(f"Invalid TOML in {path}: {e}") from e


def load_config(
    *,
    project_dir: Path | None = None,
    global_path: Path | None = None,
) -> RawConfig:
    global_cfg = _read_toml(global_path or GLOBAL_CONFIG_PATH)
    project_path = (project_dir or Path.cwd()) / PROJECT_CONFIG_NAME
    project_cfg = _read_toml(project_path)
    return _deep_merge(global_cfg, project_cfg)


def load_settings(
    *,
    project_dir: Path | None = None,
    global_path: Path | None = None,
    environ: dict[str, str] | None = None,
) -> Settings:
    """Build Settings from defaults, TOML files and the environment.

    The token is never read from TOML; it only comes from the environment.

    Raises:
        ConfigurationError: On unknown keys or unparseable files.
    """
    raw = load_config(project_dir=project_dir, global_path=global_path)
    known = {f.name for f in fields(Settings)} - {"token"}
    unknown = sorted(set(raw) - known)
    if unknown:
        raise ConfigurationError(
            f"Unknown setting(s): {', '.join(unknown)}. Valid: {', '.join(sorted(known))}"
        )

    env = os.environ if environ is None else environ
    defaults = Settings()
    if "labels" in raw:
        raw["labels"] = {**defaults.labels, **raw["labels"]}
    try:
        settings = replace(defaults, **raw)
    except TypeError as e:
        raise ConfigurationError(str(e)) from e
    return replace(settings, token=env.get(TOKEN_ENV_VAR, ""))
