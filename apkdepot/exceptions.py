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

"""Exception hierarchy for APK Depot.

This module defines a custom exception hierarchy that allows callers to
distinguish between the failure modes of the release-policy engine:

- ValidationError: Missing or malformed request fields (client errors)
- UnparsablePackage: The package inspector could not decode a binary
- StoreIOError: Policy snapshot load/persist failures
- ConfigError: Configuration file problems (YAML parse, wrong types)
- NetworkError: Remote APK fetch failures
- ArtifactNotFound: A stored artifact name does not exist

All exceptions inherit from DepotError, allowing users to catch all depot
errors with a single except clause if needed.

Example:
    Catching specific error types:
        ```python
        from apkdepot.core import check_update
        from apkdepot.exceptions import ValidationError

        try:
            decision = check_update(store, "com.example.app", None, "device-1")
        except ValidationError as e:
            print(f"Bad request: {e}")
        ```

    Catching all depot errors:
        ```python
        from apkdepot.exceptions import DepotError

        try:
            result = ingest_package(path, store=store, artifacts=artifacts)
        except DepotError as e:
            print(f"Depot error: {e}")
        ```
"""

from __future__ import annotations

__all__ = [
    "DepotError",
    "ValidationError",
    "UnparsablePackage",
    "StoreIOError",
    "DeserializationError",
    "SerializationError",
    "ConfigError",
    "NetworkError",
    "ArtifactNotFound",
]


class DepotError(Exception):
    """Base exception for all APK Depot errors.

    All depot-specific exceptions inherit from this class, allowing users
    to catch all depot errors with a single except clause if needed.
    """

    pass


class ValidationError(DepotError):
    """Raised when a request is missing required fields or is malformed.

    This exception is raised when there are problems with:

    - Missing packageName, versionCode or deviceId on check-update
    - Non-integer version codes
    - Malformed JSON on policy updates
    - Rollout rates outside [0, 10000]
    - Artifact names that could escape the storage directory

    No state is mutated when this error is raised.
    """

    pass


class UnparsablePackage(DepotError):
    """Raised when the package inspector cannot decode a binary.

    On listing paths the offending artifact is skipped and logged. On
    ingestion the single upload is rejected.
    """

    pass


class StoreIOError(DepotError):
    """Raised for policy snapshot load/persist failures."""

    pass


class DeserializationError(StoreIOError):
    """Raised when a policy snapshot cannot be decoded."""

    pass


class SerializationError(StoreIOError):
    """Raised when the policy map cannot be encoded to a snapshot."""

    pass


class ConfigError(DepotError):
    """Raised for configuration-related errors.

    This exception is raised when there are problems with:

    - YAML parsing (syntax errors, invalid structure)
    - Configuration values of the wrong type
    - Missing configuration files that were explicitly requested

    Example:
        Catching configuration errors:
            ```python
            from apkdepot.exceptions import ConfigError

            try:
                settings = load_depot_config(Path("depot.yaml"))
            except ConfigError as e:
                print(f"Config error: {e}")
            ```
    """

    pass


class NetworkError(DepotError):
    """Raised when fetching a remote APK for ingestion fails."""

    pass


class ArtifactNotFound(DepotError):
    """Raised when a stored artifact name does not exist."""

    pass
