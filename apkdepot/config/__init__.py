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

"""Configuration loading for APK Depot.

Settings come from built-in defaults, an optional YAML file (depot.yaml)
and a few environment variables, deep-merged in that order. Relative
storage paths are resolved against the config file location.

Public API:

- load_depot_config: Build the effective DepotSettings
- DepotSettings: Frozen settings consumed by the CLI and server

Example:
    Basic usage:

        from pathlib import Path
        from apkdepot.config import load_depot_config

        settings = load_depot_config(Path("depot.yaml"))
        print(settings.metadata_file)

"""

from .loader import DepotSettings, load_depot_config

__all__ = ["DepotSettings", "load_depot_config"]
