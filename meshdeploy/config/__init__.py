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

"""Configuration loading for meshdeploy.

Layers built-in defaults, organization defaults (defaults/org.yaml) and a
deployment YAML into one immutable DeployConfig.

Public API:

- DeployConfig: Frozen configuration passed to every component
- load_deploy_config: Load and merge configuration from YAML

Example:
    Basic usage:

        from pathlib import Path
        from meshdeploy.config import load_deploy_config

        config = load_deploy_config(Path("deploy.yaml"))
        print(config.management_url)

"""

from .loader import DEFAULTS, DeployConfig, load_deploy_config, unknown_keys

__all__ = ["DEFAULTS", "DeployConfig", "load_deploy_config", "unknown_keys"]
