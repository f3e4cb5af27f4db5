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

"""Gray-scale rollout decision for APK Depot.

Decides whether a device should be offered the latest version of a package,
and whether that update is mandatory.

A device is "in" a rollout when the CRC-32 of its identifier, taken modulo
10000, is below the package's rollout rate. The bucket depends only on the
identifier, so for a fixed rate the answer never changes between calls or
restarts, and raising the rate only ever adds devices.

Example:
    Decide for one device:

        from apkdepot.policy.rollout import decide_update
        from apkdepot.state import ReleasePolicy

        policy = ReleasePolicy(
            package_name="com.example.app",
            latest_version_code=10,
            latest_version_name="1.0.0",
            latest_file_name="com.example.app_10.apk",
            min_force_version_code=8,
            rollout_rate=10000,
        )
        decision = decide_update("device-42", 5, policy)
        # UpdateDecision(has_update=True, force=True, version_code=10, ...)

"""

from __future__ import annotations

import zlib

from apkdepot.results import UpdateDecision
from apkdepot.state.store import ROLLOUT_SCALE, ReleasePolicy

DEFAULT_DOWNLOAD_PREFIX = "/apks"


def rollout_bucket(device_id: str) -> int:
    """Map a device identifier to its stable bucket in [0, 10000)."""
    return zlib.crc32(device_id.encode("utf-8")) % ROLLOUT_SCALE


def is_in_rollout(device_id: str, rollout_rate: int) -> bool:
    """Return True if the device falls inside the rollout.

    Args:
        device_id: Opaque device identifier sent by the client.
        rollout_rate: Parts-per-ten-thousand of devices to include.

    Returns:
        False for rates <= 0, True for rates >= 10000, otherwise whether
        the device's bucket is below the rate.

    """
    if rollout_rate <= 0:
        return False
    if rollout_rate >= ROLLOUT_SCALE:
        return True
    return rollout_bucket(device_id) < rollout_rate


def decide_update(
    device_id: str,
    client_version_code: int,
    policy: ReleasePolicy | None,
    *,
    download_prefix: str = DEFAULT_DOWNLOAD_PREFIX,
) -> UpdateDecision:
    """Decide whether a device should update, and whether it must.

    Args:
        device_id: Opaque device identifier sent by the client.
        client_version_code: Version code currently installed on the device.
        policy: Release policy of the package, or None if none exists.
        download_prefix: URL prefix the latest artifact is served under.

    Returns:
        UpdateDecision with has_update False when there is no policy, the
        client is already current, or the device is outside the rollout.
        Otherwise the target version and the force flag.

    """
    if policy is None or policy.latest_version_code <= client_version_code:
        return UpdateDecision(has_update=False)

    if not is_in_rollout(device_id, policy.rollout_rate):
        return UpdateDecision(has_update=False)

    return UpdateDecision(
        has_update=True,
        force=client_version_code < policy.min_force_version_code,
        version_code=policy.latest_version_code,
        version_name=policy.latest_version_name,
        download_url=f"{download_prefix.rstrip('/')}/{policy.latest_file_name}",
    )
