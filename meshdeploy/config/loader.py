# Copyright 2025 Roger Cibrian
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Configuration loading and merging for meshdeploy.

The deployment configuration is built once per run and handed to every
component as an immutable DeployConfig. There are no module-level path or
URL variables anywhere else in the package.

Configuration Layers
--------------------
1. **Built-in defaults** (DEFAULTS below)
   - Target the NetBird Windows client and its GitHub releases

2. **Organization defaults** (defaults/org.yaml)
   - Found by walking upward from the deployment file
   - Typical content: self-hosted management URL, relay hosts

3. **Deployment file** (e.g. deploy.yaml)
   - Site/device-group specific settings

Merge Behavior
--------------
  - **Dicts**: Recursively merged (keys from overlay override base)
  - **Lists**: Completely replaced (NOT appended/extended)
  - **Scalars**: Overwritten

Environment Expansion
---------------------
A ``.env`` file next to the deployment file (or in the working directory)
is loaded with python-dotenv. String values of the form ``${VAR}`` are then
replaced by the environment value, or None if VAR is unset. The setup key
additionally falls back to ``MESHDEPLOY_SETUP_KEY``.

Examples
--------
    >>> from pathlib import Path
    >>> from meshdeploy.config import load_deploy_config
    >>> cfg = load_deploy_config(Path("deploy.yaml"))
    >>> cfg.management_url
    'https://netbird.example.com:443'
    >>> load_deploy_config().service_name
    'netbird'
"""

from __future__ import annotations

from dataclasses import dataclass, field
import os
from pathlib import Path
import re
import string
from typing import Any

from dotenv import load_dotenv
import yaml

from meshdeploy.exceptions import ConfigError

SETUP_KEY_ENV = "MESHDEPLOY_SETUP_KEY"

DEFAULTS: dict[str, Any] = {
    "client": {
        "product_name": "NetBird",
        "service_name": "netbird",
        "executable": r"C:\Program Files\NetBird\netbird.exe",
        "data_dir": r"C:\ProgramData\Netbird",
        "config_file": r"C:\ProgramData\Netbird\config.json",
        "log_dir_name": "logs",
    },
    "management": {
        "url": "https://api.netbird.io:443",
        "default_url": "https://api.netbird.io:443",
        "setup_key": None,
    },
    "releases": {
        "api_url": "https://api.github.com/repos/netbirdio/netbird/releases",
        "asset_pattern": r"netbird_installer_[0-9.]+_windows_amd64\.msi$",
        "token": None,
        "download_dir": "downloads",
    },
    "network": {
        "internet_anchor": "8.8.8.8",
        "http_probe_url": "http://clients3.google.com/generate_204",
        "time_reference_url": "https://www.google.com",
        "relay_hosts": ["signal.netbird.io", "relay.netbird.io"],
    },
    "registration": {
        "max_retries": 5,
        "verification_timeout": 120,
        "oobe_verification_timeout": 60,
        "status_json": True,
        "min_free_disk_mb": 200,
    },
}

_ENV_REF = re.compile(r"^\$\{(?P<name>[A-Za-z_][A-Za-z0-9_]*)\}$")


# -------------------------------
# Data types
# -------------------------------


@dataclass(frozen=True)
class DeployConfig:
    """Immutable deployment configuration shared by all components.

    Attributes mirror the YAML layout flattened one level: ``client.*``,
    ``management.*``, ``releases.*``, ``network.*`` and ``registration.*``.
    """

    product_name: str = "NetBird"
    service_name: str = "netbird"
    executable_path: Path = Path(r"C:\Program Files\NetBird\netbird.exe")
    data_dir: Path = Path(r"C:\ProgramData\Netbird")
    config_file: Path = Path(r"C:\ProgramData\Netbird\config.json")
    log_dir_name: str = "logs"
    management_url: str = "https://api.netbird.io:443"
    default_management_url: str = "https://api.netbird.io:443"
    setup_key: str | None = None
    releases_api_url: str = "https://api.github.com/repos/netbirdio/netbird/releases"
    asset_pattern: str = r"netbird_installer_[0-9.]+_windows_amd64\.msi$"
    github_token: str | None = None
    download_dir: Path = Path("downloads")
    internet_anchor: str = "8.8.8.8"
    http_probe_url: str = "http://clients3.google.com/generate_204"
    time_reference_url: str = "https://www.google.com"
    relay_hosts: tuple[str, ...] = field(
        default=("signal.netbird.io", "relay.netbird.io")
    )
    max_retries: int = 5
    verification_timeout: int = 120
    oobe_verification_timeout: int = 60
    status_json: bool = True
    min_free_disk_mb: int = 200

    @property
    def management_host(self) -> str:
        """Hostname part of the management URL (for DNS checks)."""
        from urllib.parse import urlparse

        return urlparse(self.management_url).hostname or ""

    @classmethod
    def from_mapping(
        cls, data: dict[str, Any], base_dir: Path | None = None
    ) -> DeployConfig:
        """Build a DeployConfig from a merged, env-expanded mapping.

        Args:
            data: Mapping with the same layout as DEFAULTS (missing sections
                fall back to DEFAULTS).
            base_dir: Directory that relative ``releases.download_dir``
                values are resolved against. Defaults to the working directory.

        Raises:
            ConfigError: If a value has the wrong type.
        """
        merged = _deep_merge_dicts(DEFAULTS, data)
        client = merged["client"]
        management = merged["management"]
        releases = merged["releases"]
        network = merged["network"]
        registration = merged["registration"]

        download_dir = Path(releases["download_dir"])
        if not download_dir.is_absolute() and base_dir is not None:
            download_dir = (base_dir / download_dir).resolve()

        relay_hosts = network["relay_hosts"] or []
        if not isinstance(relay_hosts, list):
            raise ConfigError("network.relay_hosts must be a list of hostnames")

        try:
            return cls(
                product_name=str(client["product_name"]),
                service_name=str(client["service_name"]),
                executable_path=Path(client["executable"]),
                data_dir=Path(client["data_dir"]),
                config_file=Path(client["config_file"]),
                log_dir_name=str(client["log_dir_name"]),
                management_url=str(management["url"]).rstrip("/"),
                default_management_url=str(management["default_url"]).rstrip("/"),
                setup_key=management["setup_key"] or os.environ.get(SETUP_KEY_ENV),
                releases_api_url=str(releases["api_url"]).rstrip("/"),
                asset_pattern=str(releases["asset_pattern"]),
                github_token=releases["token"],
                download_dir=download_dir,
                internet_anchor=str(network["internet_anchor"]),
                http_probe_url=str(network["http_probe_url"]),
                time_reference_url=str(network["time_reference_url"]),
                relay_hosts=tuple(str(h) for h in relay_hosts),
                max_retries=int(registration["max_retries"]),
                verification_timeout=int(registration["verification_timeout"]),
                oobe_verification_timeout=int(
                    registration["oobe_verification_timeout"]
                ),
                status_json=bool(registration["status_json"]),
                min_free_disk_mb=int(registration["min_free_disk_mb"]),
            )
        except (TypeError, ValueError) as err:
            raise ConfigError(f"Invalid configuration value: {err}") from err


# -------------------------------
# YAML helpers
# -------------------------------


def _load_yaml_file(p: Path) -> dict[str, Any]:
    """
    Load a YAML file that must contain a mapping.

    Raises:
      ConfigError - missing file, invalid YAML, empty or non-mapping document
    """
    if not p.exists():
        raise ConfigError(f"Configuration file not found: {p}")
    try:
        with p.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as err:
        raise ConfigError(f"Error parsing YAML: {p}: {err}") from err
    if data is None:
        raise ConfigError(f"YAML file is empty: {p}")
    if not isinstance(data, dict):
        raise ConfigError(f"Top-level YAML must be a mapping (dict): {p}")
    return data


# -------------------------------
# Merge logic
# -------------------------------


def _deep_merge_dicts(base: dict[str, Any], overlay: dict[str, Any]) -> dict[str, Any]:
    """
    Deep-merge two dicts with "overlay wins".

    Rules:
      - dict + dict -> deep merge
      - list + list -> overlay REPLACES base (not concatenated)
      - everything else -> overlay overwrites base

    This function does not mutate inputs; returns a new dict.
    """
    result: dict[str, Any] = dict(base)
    for k, v in overlay.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = _deep_merge_dicts(result[k], v)
        else:
            result[k] = v
    return result


def unknown_keys(data: dict[str, Any]) -> list[str]:
    """Return dotted names of keys that DEFAULTS does not know about.

    Example:
        ```python
        unknown_keys({"client": {"servce_name": "x"}, "extra": 1})
        # ['client.servce_name', 'extra']
        ```
    """
    found: list[str] = []
    for section, value in data.items():
        if section not in DEFAULTS:
            found.append(str(section))
            continue
        if isinstance(value, dict):
            for key in value:
                if key not in DEFAULTS[section]:
                    found.append(f"{section}.{key}")
    return found


# -------------------------------
# Defaults discovery
# -------------------------------


def _find_org_defaults(start_dir: Path) -> Path | None:
    """
    Walk upward from 'start_dir' looking for 'defaults/org.yaml'.
    Returns the file path or None if not found.
    """
    for parent in [start_dir] + list(start_dir.parents):
        candidate = parent / "defaults" / "org.yaml"
        if candidate.exists():
            return candidate
    return None


# -------------------------------
# Environment expansion
# -------------------------------


def _expand_env(value: Any) -> Any:
    """
    Recursively expand environment references in string values.

    A value that is exactly ``${VAR}`` becomes the variable's value or None.
    Other strings get ``$VAR``/``${VAR}`` substituted where defined and are
    otherwise left untouched.
    """
    if isinstance(value, dict):
        return {k: _expand_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_expand_env(v) for v in value]
    if isinstance(value, str):
        m = _ENV_REF.match(value.strip())
        if m:
            return os.environ.get(m.group("name")) or None
        return string.Template(value).safe_substitute(os.environ)
    return value


# -------------------------------
# Public API
# -------------------------------


def load_deploy_config(
    config_path: Path | None = None,
    *,
    overrides: dict[str, Any] | None = None,
) -> DeployConfig:
    """
    Load and merge the effective deployment configuration.

    Steps
      1) Load .env files (config directory first, then working directory).
      2) Start from DEFAULTS.
      3) Merge defaults/org.yaml if one is found above the config file.
      4) Merge the deployment file itself.
      5) Merge caller overrides (e.g. CLI flags).
      6) Reject unknown keys, expand ${VAR} references, build DeployConfig.

    Args:
      config_path: Deployment YAML. None means "built-in defaults only".
      overrides: Extra mapping merged last, same layout as the YAML.

    Returns
      DeployConfig ready to pass to components.

    Raises
      ConfigError on missing files, YAML errors, unknown keys or bad values.
    """
    from meshdeploy.logging import get_global_logger

    logger = get_global_logger()
    merged: dict[str, Any] = {}
    base_dir: Path | None = None

    if config_path is not None:
        config_path = config_path.resolve()
        base_dir = config_path.parent
        env_file = base_dir / ".env"
        if env_file.exists():
            logger.verbose("CONFIG", f"Loading environment from: {env_file}")
            load_dotenv(env_file, override=False)
    load_dotenv(override=False)

    if config_path is not None:
        org_defaults = _find_org_defaults(base_dir)
        if org_defaults is not None:
            logger.verbose("CONFIG", f"Loading: {org_defaults}")
            merged = _deep_merge_dicts(merged, _load_yaml_file(org_defaults))

        logger.verbose("CONFIG", f"Loading: {config_path}")
        merged = _deep_merge_dicts(merged, _load_yaml_file(config_path))

    if overrides:
        merged = _deep_merge_dicts(merged, overrides)

    bad = unknown_keys(merged)
    if bad:
        raise ConfigError(f"Unknown configuration key(s): {', '.join(bad)}")

    config = DeployConfig.from_mapping(_expand_env(merged), base_dir=base_dir)
    logger.debug("CONFIG", f"Management URL: {config.management_url}")
    logger.debug("CONFIG", f"Client executable: {config.executable_path}")
    return config
