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

"""Deployment configuration validation.

This module checks a deployment file without making network calls, so it
can run in CI before a configuration is pushed to endpoints.

Validation Checks:

- YAML syntax is valid and the document is a mapping
- No unknown sections or keys
- Management URLs use HTTPS
- The installer asset pattern compiles
- Retry count and timeouts are positive integers
- Setup key looks like a UUID (warning only; self-hosted keys may differ)

Example:
    ```python
    from pathlib import Path
    from meshdeploy.validation import validate_config

    result = validate_config(Path("deploy.yaml"))
    if result.status == "valid":
        print("Configuration is valid")
    else:
        for error in result.errors:
            print(f"Error: {error}")
    ```

"""

from __future__ import annotations

from pathlib import Path
import re
from typing import Any
from urllib.parse import urlparse

import yaml

from meshdeploy.config.loader import _expand_env, unknown_keys
from meshdeploy.results import ValidationResult

__all__ = ["validate_config"]

_UUID = re.compile(
    r"^[0-9A-Fa-f]{8}-[0-9A-Fa-f]{4}-[0-9A-Fa-f]{4}-[0-9A-Fa-f]{4}-[0-9A-Fa-f]{12}$"
)

_POSITIVE_INTS = (
    ("registration", "max_retries"),
    ("registration", "verification_timeout"),
    ("registration", "oobe_verification_timeout"),
)


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    value = data.get(name)
    return value if isinstance(value, dict) else {}


def validate_config(config_path: Path) -> ValidationResult:
    """Validate a deployment file without touching the network.

    Args:
        config_path: Deployment YAML to check.

    Returns:
        ValidationResult with status "valid" or "invalid".
    """
    errors: list[str] = []
    warnings: list[str] = []

    def result() -> ValidationResult:
        return ValidationResult(
            status="invalid" if errors else "valid",
            errors=errors,
            warnings=warnings,
            config_path=str(config_path),
        )

    if not config_path.exists():
        errors.append(f"Configuration file not found: {config_path}")
        return result()

    try:
        with open(config_path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as err:
        errors.append(f"Invalid YAML syntax: {err}")
        return result()

    if data is None:
        errors.append("Configuration file is empty")
        return result()
    if not isinstance(data, dict):
        errors.append("Top-level YAML must be a mapping")
        return result()

    for key in unknown_keys(data):
        errors.append(f"Unknown configuration key: {key}")

    for section in data:
        if section in ("client", "management", "releases", "network", "registration"):
            if data[section] is not None and not isinstance(data[section], dict):
                errors.append(f"Section '{section}' must be a mapping")

    management = _section(data, "management")
    for key in ("url", "default_url"):
        url = management.get(key)
        if url is None:
            continue
        parsed = urlparse(str(url))
        if parsed.scheme != "https" or not parsed.hostname:
            errors.append(f"management.{key} must be an https:// URL: {url}")

    pattern = _section(data, "releases").get("asset_pattern")
    if pattern is not None:
        try:
            re.compile(str(pattern))
        except re.error as err:
            errors.append(f"releases.asset_pattern is not a valid regex: {err}")

    relay_hosts = _section(data, "network").get("relay_hosts")
    if relay_hosts is not None and not isinstance(relay_hosts, list):
        errors.append("network.relay_hosts must be a list")

    for section, key in _POSITIVE_INTS:
        value = _section(data, section).get(key)
        if value is None:
            continue
        if not isinstance(value, int) or isinstance(value, bool) or value < 1:
            errors.append(f"{section}.{key} must be a positive integer")

    setup_key = _expand_env(management.get("setup_key"))
    if isinstance(setup_key, str) and setup_key and not _UUID.match(setup_key):
        warnings.append("management.setup_key does not look like a UUID setup key")
    elif management.get("setup_key") and setup_key is None:
        warnings.append("management.setup_key references an unset environment variable")

    return result()
