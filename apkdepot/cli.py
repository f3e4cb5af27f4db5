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

"""Command-line interface for APK Depot.

This module provides the apkdepot entry point: running the HTTP API and
administering the depot (ingest, rollout changes, inspection) directly
against the configured storage and policy snapshot.

Commands:

    serve: Run the HTTP API
    ingest: Store an APK (local path or URL) and advance the latest pointer
    check: Show the update decision for one device
    versions: List stored versions of one package
    catalog: List every stored binary
    set-policy: Change the force baseline and/or rollout rate
    show-policy: Print the stored policy of one or all packages
    delete: Remove a stored binary

Example:
    Serve on a custom port:
        ```bash
        $ apkdepot serve --port 9000
        ```

    Ingest a build from CI:
        ```bash
        $ apkdepot ingest https://ci.example.com/artifacts/app-release.apk
        ```

    Roll out to 25% of devices and force everyone below code 40:
        ```bash
        $ apkdepot set-policy com.example.app --rollout-rate 2500 --min-force 40
        ```

Exit Codes:

- 0: Success
- 1: Error (configuration, validation, storage, or download failure)

Note:
    Admin commands and a running server must share one snapshot file with
    care. The server only reads the snapshot at startup, so a change made
    here while it runs is overwritten by the server's next persist.

"""

from __future__ import annotations

import argparse
import json
from pathlib import Path
import sys
import tempfile
from typing import Any

from apkdepot import __version__
from apkdepot.config import DepotSettings, load_depot_config
from apkdepot.core import (
    check_update,
    ingest_package,
    list_catalog,
    list_versions,
    open_policy_store,
    update_policy,
)
from apkdepot.exceptions import DepotError
from apkdepot.inspector import ApkInspector
from apkdepot.io import ArtifactStore, fetch_apk
from apkdepot.logging import get_logger, set_global_logger
from apkdepot.server import build_context, create_server
from apkdepot.validation import parse_policy_update, require_package_name


def _setup(args: argparse.Namespace) -> DepotSettings:
    """Configure the global logger and load settings for a command."""
    logger = get_logger(verbose=args.verbose, debug=args.debug)
    set_global_logger(logger)
    config_path = Path(args.config) if args.config else None
    return load_depot_config(config_path)


def _fail(err: Exception, args: argparse.Namespace) -> int:
    print(f"Error: {err}")
    if args.verbose or args.debug:
        import traceback

        traceback.print_exc()
    return 1


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2))


def cmd_serve(args: argparse.Namespace) -> int:
    """Handler for 'apkdepot serve' command.

    Loads the policy snapshot and serves the HTTP API until interrupted.

    Returns:
        Exit code (0 on clean shutdown, 1 on startup failure).

    """
    try:
        settings = _setup(args)
        context = build_context(settings)
        httpd = create_server(context, host=args.host, port=args.port)
    except (DepotError, OSError) as err:
        return _fail(err, args)

    host, port = httpd.server_address[:2]
    print(f"APK directory:  {settings.apk_dir}")
    print(f"Metadata file:  {settings.metadata_file}")
    print(f"Policies:       {len(context.store)}")
    print(f"Serving on http://{host}:{port}")

    try:
        httpd.serve_forever()
    except KeyboardInterrupt:
        print()
        print("Shutting down...")
    finally:
        httpd.server_close()
    return 0


def cmd_ingest(args: argparse.Namespace) -> int:
    """Handler for 'apkdepot ingest' command.

    Stores an APK under its canonical name and advances the package's
    latest pointer if this is the newest version. The source may be a
    local path or an http(s) URL; URLs are downloaded into a temporary
    staging directory first.

    Returns:
        Exit code (0 for success, 1 for failure).

    """
    try:
        settings = _setup(args)
    except DepotError as err:
        return _fail(err, args)

    source = args.source
    is_url = source.startswith(("http://", "https://"))
    if not is_url and not Path(source).is_file():
        print(f"Error: APK file not found: {source}")
        return 1

    print(f"Ingesting: {source}")
    print()

    store = open_policy_store(settings.metadata_file)
    artifacts = ArtifactStore(settings.apk_dir)

    try:
        artifacts.ensure()
        if settings.staging_dir is not None:
            settings.staging_dir.mkdir(parents=True, exist_ok=True)
        with tempfile.TemporaryDirectory(dir=settings.staging_dir) as staging:
            if is_url:
                staged, sha256 = fetch_apk(
                    source,
                    Path(staging),
                    expected_sha256=args.sha256,
                    max_size=settings.max_upload_size,
                )
                print(f"Downloaded {staged.name} (sha256 {sha256})")
            else:
                staged = Path(source).resolve()
            result = ingest_package(
                staged,
                store=store,
                artifacts=artifacts,
                inspector=ApkInspector(with_icon=False),
                metadata_file=settings.metadata_file,
            )
    except (DepotError, OSError) as err:
        return _fail(err, args)

    print("=" * 70)
    print("INGEST RESULTS")
    print("=" * 70)
    print(f"Package:         {result.package_name}")
    print(f"Version:         {result.version_name} ({result.version_code})")
    print(f"Saved As:        {result.saved_as}")
    print(f"Became Latest:   {'yes' if result.became_latest else 'no'}")
    print(f"Persisted:       {'yes' if result.persisted else 'NO (in memory only)'}")
    print("=" * 70)
    print()
    print("[SUCCESS] Package ingested!")
    return 0 if result.persisted else 1


def cmd_check(args: argparse.Namespace) -> int:
    """Handler for 'apkdepot check' command.

    Shows exactly what the API would answer for this device.
    """
    try:
        settings = _setup(args)
        store = open_policy_store(settings.metadata_file)
        decision = check_update(
            store,
            args.package_name,
            args.version_code,
            args.device_id,
            download_prefix=settings.download_prefix,
        )
    except DepotError as err:
        return _fail(err, args)

    if args.json:
        _print_json(decision.to_dict())
        return 0

    print("=" * 70)
    print("UPDATE DECISION")
    print("=" * 70)
    print(f"Package:         {args.package_name}")
    print(f"Client Code:     {args.version_code}")
    print(f"Device:          {args.device_id}")
    print(f"Has Update:      {'yes' if decision.has_update else 'no'}")
    if decision.has_update:
        print(f"Force:           {'yes' if decision.force else 'no'}")
        print(f"Target:          {decision.version_name} ({decision.version_code})")
        print(f"Download URL:    {decision.download_url}")
    print("=" * 70)
    return 0


def cmd_versions(args: argparse.Namespace) -> int:
    """Handler for 'apkdepot versions' command."""
    try:
        settings = _setup(args)
        store = open_policy_store(settings.metadata_file)
        result = list_versions(
            store,
            ArtifactStore(settings.apk_dir),
            ApkInspector(with_icon=False),
            args.package_name,
        )
    except DepotError as err:
        return _fail(err, args)

    if args.json:
        _print_json(result.to_dict())
        return 0

    print("=" * 70)
    print(f"VERSIONS: {result.package_name}")
    print("=" * 70)
    print(f"Force Below:     {result.min_force_version_code}")
    print()
    if not result.versions:
        print("  (no stored versions)")
    for v in result.versions:
        print(
            f"  {v.version_code:>10}  {v.version_name:<16} {v.file_size:>12}  "
            f"{v.upload_time}  {v.file_name}"
        )
    print("=" * 70)
    return 0


def cmd_catalog(args: argparse.Namespace) -> int:
    """Handler for 'apkdepot catalog' command."""
    try:
        settings = _setup(args)
        store = open_policy_store(settings.metadata_file)
        catalog = list_catalog(
            store,
            ArtifactStore(settings.apk_dir),
            ApkInspector(with_icon=args.json),
        )
    except DepotError as err:
        return _fail(err, args)

    if args.json:
        _print_json([entry.to_dict() for entry in catalog])
        return 0

    print("=" * 70)
    print(f"CATALOG ({len(catalog)} binaries)")
    print("=" * 70)
    for entry in catalog:
        print(f"{entry.file_name}")
        print(f"  App:           {entry.app_name or '-'}")
        print(f"  Version:       {entry.version_name} ({entry.version_code})")
        print(f"  Size:          {entry.file_size}")
        print(f"  Uploaded:      {entry.upload_time}")
        print(
            f"  Rollout:       {entry.rollout_rate / 100:.2f}%  "
            f"force below {entry.min_force_version_code}"
        )
    print("=" * 70)
    return 0


def cmd_set_policy(args: argparse.Namespace) -> int:
    """Handler for 'apkdepot set-policy' command.

    Options that are not given keep their stored value (0 for a package
    that has no policy yet).

    Returns:
        Exit code (0 for success, 1 for failure).

    """
    try:
        settings = _setup(args)
        store = open_policy_store(settings.metadata_file)
        package_name = require_package_name(args.package_name)
        current = store.get(package_name)
        request = parse_policy_update(
            {
                "packageName": package_name,
                "minForceVersionCode": (
                    args.min_force
                    if args.min_force is not None
                    else (current.min_force_version_code if current else 0)
                ),
                "rolloutRate": (
                    args.rollout_rate
                    if args.rollout_rate is not None
                    else (current.rollout_rate if current else 0)
                ),
            }
        )
        updated = update_policy(store, request, metadata_file=settings.metadata_file)
    except DepotError as err:
        return _fail(err, args)

    print("=" * 70)
    print("POLICY UPDATED")
    print("=" * 70)
    print(f"Package:         {updated.package_name}")
    print(f"Rollout Rate:    {updated.rollout_rate} ({updated.rollout_rate / 100:.2f}%)")
    print(f"Force Below:     {updated.min_force_version_code}")
    print("=" * 70)
    return 0


def cmd_show_policy(args: argparse.Namespace) -> int:
    """Handler for 'apkdepot show-policy' command."""
    try:
        settings = _setup(args)
    except DepotError as err:
        return _fail(err, args)

    store = open_policy_store(settings.metadata_file)
    names = [args.package_name] if args.package_name else store.package_names()

    policies = {}
    for name in names:
        policy = store.get(name)
        if policy is None:
            print(f"Error: No policy for package: {name}")
            return 1
        policies[name] = policy.to_dict()

    if args.json:
        _print_json(policies)
        return 0

    if not policies:
        print("No policies stored.")
        return 0

    print("=" * 70)
    print("RELEASE POLICIES")
    print("=" * 70)
    for name, data in policies.items():
        print(f"{name}")
        print(
            f"  Latest:        {data['latestVersionName'] or '-'} "
            f"({data['latestVersionCode']})  {data['latestFileName'] or '-'}"
        )
        print(f"  Rollout Rate:  {data['rolloutRate']}")
        print(f"  Force Below:   {data['minForceVersionCode']}")
    print("=" * 70)
    return 0


def cmd_delete(args: argparse.Namespace) -> int:
    """Handler for 'apkdepot delete' command.

    Removes the binary only. A policy whose latest pointer names it is left
    as is; re-ingest or upload a newer build to move the pointer.
    """
    try:
        settings = _setup(args)
        ArtifactStore(settings.apk_dir).delete(args.file_name)
    except DepotError as err:
        return _fail(err, args)

    print(f"[SUCCESS] Deleted {args.file_name}")
    return 0


def _add_common(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--config",
        default=None,
        help="Path to depot.yaml (default: ./depot.yaml if present)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Show progress and high-level status updates",
    )
    parser.add_argument(
        "-d",
        "--debug",
        action="store_true",
        help="Show detailed debugging output (implies --verbose)",
    )


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse parser with every subcommand registered."""
    parser = argparse.ArgumentParser(
        prog="apkdepot",
        description="APK Depot - release policy engine for self-hosted Android updates",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"apkdepot {__version__}",
    )

    subparsers = parser.add_subparsers(
        dest="command",
        help="Available commands",
        required=True,
    )

    # 'serve' command
    parser_serve = subparsers.add_parser(
        "serve",
        help="Run the HTTP API",
        description="Load the policy snapshot and serve update checks, uploads and admin endpoints.",
    )
    parser_serve.add_argument(
        "--host", default=None, help="Bind address (default: from config)"
    )
    parser_serve.add_argument(
        "--port", type=int, default=None, help="Port (default: PORT or config, 8080)"
    )
    _add_common(parser_serve)
    parser_serve.set_defaults(func=cmd_serve)

    # 'ingest' command
    parser_ingest = subparsers.add_parser(
        "ingest",
        help="Store an APK and advance the latest pointer",
        description="Store a local or remote APK under package_versionCode.apk.",
    )
    parser_ingest.add_argument("source", help="APK path or http(s) URL")
    parser_ingest.add_argument(
        "--sha256",
        default=None,
        help="Expected SHA-256 of a downloaded APK (URL sources only)",
    )
    _add_common(parser_ingest)
    parser_ingest.set_defaults(func=cmd_ingest)

    # 'check' command
    parser_check = subparsers.add_parser(
        "check",
        help="Show the update decision for one device",
    )
    parser_check.add_argument("package_name", help="Package name")
    parser_check.add_argument("version_code", help="Installed version code")
    parser_check.add_argument("device_id", help="Device identifier")
    parser_check.add_argument("--json", action="store_true", help="Print API JSON")
    _add_common(parser_check)
    parser_check.set_defaults(func=cmd_check)

    # 'versions' command
    parser_versions = subparsers.add_parser(
        "versions",
        help="List stored versions of a package",
    )
    parser_versions.add_argument("package_name", help="Package name")
    parser_versions.add_argument("--json", action="store_true", help="Print API JSON")
    _add_common(parser_versions)
    parser_versions.set_defaults(func=cmd_versions)

    # 'catalog' command
    parser_catalog = subparsers.add_parser(
        "catalog",
        help="List every stored binary",
    )
    parser_catalog.add_argument(
        "--json", action="store_true", help="Print API JSON (includes icons)"
    )
    _add_common(parser_catalog)
    parser_catalog.set_defaults(func=cmd_catalog)

    # 'set-policy' command
    parser_set = subparsers.add_parser(
        "set-policy",
        help="Change rollout rate and/or force baseline",
        description="Rollout rate is in basis points: 0 = nobody, 10000 = everyone.",
    )
    parser_set.add_argument("package_name", help="Package name")
    parser_set.add_argument(
        "--rollout-rate", type=int, default=None, help="Rollout rate, 0-10000"
    )
    parser_set.add_argument(
        "--min-force",
        type=int,
        default=None,
        help="Clients below this version code must update",
    )
    _add_common(parser_set)
    parser_set.set_defaults(func=cmd_set_policy)

    # 'show-policy' command
    parser_show = subparsers.add_parser(
        "show-policy",
        help="Print stored release policies",
    )
    parser_show.add_argument(
        "package_name", nargs="?", default=None, help="Package name (default: all)"
    )
    parser_show.add_argument("--json", action="store_true", help="Print snapshot JSON")
    _add_common(parser_show)
    parser_show.set_defaults(func=cmd_show_policy)

    # 'delete' command
    parser_delete = subparsers.add_parser(
        "delete",
        help="Remove a stored binary",
    )
    parser_delete.add_argument("file_name", help="Stored file name, e.g. com.example.app_42.apk")
    _add_common(parser_delete)
    parser_delete.set_defaults(func=cmd_delete)

    return parser


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the apkdepot CLI.

    This function is registered as the 'apkdepot' console script in
    pyproject.toml.
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    sys.exit(args.func(args))


if __name__ == "__main__":
    main()
