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

"""Request validation for APK Depot.

This module turns raw request input (query strings, JSON bodies, CLI
arguments) into typed values before any state is read or written. Every
failure raises ValidationError, which the HTTP layer maps to 400 and the
CLI to exit code 1; nothing is mutated when validation fails.

Validation Checks:

- check-update: packageName, versionCode and deviceId are present and
  non-blank; versionCode is a non-negative integer
- version-list: packageName is present and non-blank
- policy update: body is a JSON object; packageName is a non-blank string;
  minForceVersionCode is a non-negative integer; rolloutRate is an integer
  within [0, 10000]

Example:
    Validate a policy update body:
        ```python
        from apkdepot.validation import parse_policy_update

        request = parse_policy_update(
            b'{"packageName": "com.example.app", "minForceVersionCode": 8, "rolloutRate": 2500}'
        )
        print(request.rollout_rate)  # 2500
        ```

"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
import json
from typing import Any

from apkdepot.exceptions import ValidationError
from apkdepot.state.store import ROLLOUT_SCALE

__all__ = [
    "CheckUpdateRequest",
    "PolicyUpdateRequest",
    "parse_check_update",
    "parse_policy_update",
    "require_package_name",
    "parse_version_code",
    "validate_rollout_rate",
]


@dataclass(frozen=True)
class CheckUpdateRequest:
    package_name: str
    version_code: int
    device_id: str


@dataclass(frozen=True)
class PolicyUpdateRequest:
    package_name: str
    min_force_version_code: int
    rollout_rate: int


def _first(params: Mapping[str, Any], key: str) -> str | None:
    """Return a single query value; parse_qs yields lists."""
    value = params.get(key)
    if isinstance(value, list):
        value = value[0] if value else None
    if value is None:
        return None
    return str(value).strip() or None


def require_package_name(value: Any) -> str:
    """Return a stripped package name or raise ValidationError."""
    if not isinstance(value, str) or not value.strip():
        raise ValidationError("Missing packageName")
    return value.strip()


def parse_version_code(value: Any, field: str = "versionCode") -> int:
    """Parse a non-negative integer version code.

    Accepts ints and decimal strings. Booleans are rejected even though
    they are ints in Python.
    """
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    if isinstance(value, int):
        code = value
    elif isinstance(value, str):
        try:
            code = int(value.strip())
        except ValueError as err:
            raise ValidationError(f"{field} must be an integer: {value!r}") from err
    else:
        raise ValidationError(f"{field} must be an integer")
    if code < 0:
        raise ValidationError(f"{field} must not be negative")
    return code


def validate_rollout_rate(value: Any) -> int:
    """Return a rollout rate within [0, 10000] or raise ValidationError."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError("rolloutRate must be an integer")
    if not 0 <= value <= ROLLOUT_SCALE:
        raise ValidationError(
            f"rolloutRate must be within [0, {ROLLOUT_SCALE}], got {value}"
        )
    return value


def parse_check_update(params: Mapping[str, Any]) -> CheckUpdateRequest:
    """Validate check-update query parameters.

    Args:
        params: Query mapping (values may be strings or parse_qs lists).

    Returns:
        The typed request.

    Raises:
        ValidationError: If any parameter is missing or malformed.

    """
    package_name = _first(params, "packageName")
    raw_version = _first(params, "versionCode")
    device_id = _first(params, "deviceId")

    if package_name is None or raw_version is None or device_id is None:
        raise ValidationError("Missing params")

    return CheckUpdateRequest(
        package_name=package_name,
        version_code=parse_version_code(raw_version),
        device_id=device_id,
    )


def parse_policy_update(body: bytes | str | Mapping[str, Any]) -> PolicyUpdateRequest:
    """Validate an admin policy update.

    Args:
        body: Raw JSON (bytes or str) or an already-decoded mapping.

    Returns:
        The typed request.

    Raises:
        ValidationError: On malformed JSON or invalid fields.

    """
    if isinstance(body, Mapping):
        data: Any = body
    else:
        try:
            data = json.loads(body)
        except (UnicodeDecodeError, ValueError) as err:
            raise ValidationError("Invalid JSON") from err

    if not isinstance(data, Mapping):
        raise ValidationError("Invalid JSON")

    return PolicyUpdateRequest(
        package_name=require_package_name(data.get("packageName")),
        min_force_version_code=parse_version_code(
            data.get("minForceVersionCode", 0), "minForceVersionCode"
        ),
        rollout_rate=validate_rollout_rate(data.get("rolloutRate", 0)),
    )
