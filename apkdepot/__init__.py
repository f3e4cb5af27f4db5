"""
APK Depot - release policy engine for self-hosted Android updates

A small service that stores uploaded APKs, tracks the latest version of
every package, and answers device update checks with a gray-scale
(percentage) rollout and a force-update baseline.

APK Depot provides:
  - Ingestion keyed by the manifest identity (package_name_versionCode.apk)
  - A latest-version pointer that never moves backwards
  - Deterministic per-device rollout buckets (CRC-32 of the device id)
  - Version lists and a catalog of every stored binary
  - A JSON snapshot of all release policies, reloaded at startup
  - A small HTTP API and an admin CLI

Quick Start
-----------
Serve the API on port 8080:

    $ apkdepot serve

Ingest a build and open a 10% rollout:

    $ apkdepot ingest app-release.apk
    $ apkdepot set-policy com.example.app --rollout-rate 1000

Ask what a device would get:

    $ apkdepot check com.example.app 41 device-42

Package Structure
-----------------
cli : module
    Command-line interface with argparse.
core : module
    High-level operations (ingest, check, list, update policy).
server : module
    HTTP API on http.server.
config : package
    YAML configuration loading and merging.
state : package
    Concurrent policy store and its JSON snapshot.
policy : package
    Pure rollout and ingestion rules.
io : package
    Artifact storage and remote fetch.

Public API
----------
    from apkdepot.core import check_update, ingest_package
    from apkdepot.state import PolicyStore
    from apkdepot.config import load_depot_config
"""

__version__ = "0.1.0"
__author__ = "Roger Cibrian"
__license__ = "Apache-2.0"
__description__ = "APK Depot - release policy engine for Android updates"

# Re-export commonly used functions for convenience
from apkdepot.config import load_depot_config
from apkdepot.core import (
    check_update,
    ingest_package,
    list_catalog,
    list_versions,
    update_policy,
)
from apkdepot.state import PolicyStore, ReleasePolicy

__all__ = [
    "__version__",
    "__author__",
    "__license__",
    "__description__",
    "check_update",
    "ingest_package",
    "list_catalog",
    "list_versions",
    "update_policy",
    "load_depot_config",
    "PolicyStore",
    "ReleasePolicy",
]
