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

"""Release-policy state for APK Depot.

This package holds the only shared mutable state of the service: the map
from package name to release policy, and its JSON snapshot.

Public API:

- ReleasePolicy: Immutable per-package policy record
- PolicyStore: Lock-guarded policy map with snapshot load/persist
- with_rollout: Mutator setting the admin-controlled rollout fields
- ROLLOUT_SCALE: Upper bound of a rollout rate (10000)

Example:
    Basic usage:

        from pathlib import Path
        from apkdepot.state import PolicyStore, with_rollout

        store = PolicyStore()
        store.load(Path("metadata.json"))
        store.update_or_create("com.example.app", with_rollout(10, 2500))
        store.save(Path("metadata.json"))

"""

from .store import ROLLOUT_SCALE, PolicyStore, ReleasePolicy, with_rollout

__all__ = ["ROLLOUT_SCALE", "PolicyStore", "ReleasePolicy", "with_rollout"]
