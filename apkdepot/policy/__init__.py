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

"""Release policies for APK Depot.

This package holds the pure decision rules of the release-policy engine.
Nothing here takes locks or touches the filesystem.

Modules:

rollout : module
    Deterministic gray-scale decision and force-update flag.
ingestion : module
    Canonical artifact naming and the forward-only latest pointer.

Public API:

decide_update : function
    Decide whether a device should update and whether it must.
is_in_rollout : function
    Stable per-device inclusion test for a rollout rate.
canonical_artifact_name : function
    Stored name for a (package, version code) pair.
advance_latest : function
    Mutator moving a policy's latest-version fields forward only.

Example:
    from apkdepot.policy import is_in_rollout

    if is_in_rollout("device-42", 2500):
        print("device-42 is in the first quarter of the rollout")

"""

from .ingestion import advance_latest, canonical_artifact_name, is_artifact_name
from .rollout import decide_update, is_in_rollout, rollout_bucket

__all__ = [
    "advance_latest",
    "canonical_artifact_name",
    "decide_update",
    "is_artifact_name",
    "is_in_rollout",
    "rollout_bucket",
]
