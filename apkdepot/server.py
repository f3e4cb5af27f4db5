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

"""HTTP surface for APK Depot.

A thread-per-request server (http.server.ThreadingHTTPServer) exposing the
core operations as JSON endpoints. The policy store is the only shared
mutable state; each request thread goes through its lock.

Endpoints:

    GET    /api/check-update?packageName=&versionCode=&deviceId=
    GET    /api/version-list?packageName=
    GET    /api/apks                   catalog with icons and policy info
    POST   /api/upload                 raw APK body or multipart field "apkfile"
    DELETE /api/apks/<fileName>        remove a stored binary
    POST   /api/config/update          {"packageName", "minForceVersionCode", "rolloutRate"}
    GET    /apks/<fileName>            download a stored binary

Every API response carries CORS headers; OPTIONS preflights get 200.
Authentication is left to a fronting proxy.

Example:
    Serve from code:
        ```python
        from apkdepot.config import load_depot_config
        from apkdepot.server import build_context, create_server

        context = build_context(load_depot_config())
        httpd = create_server(context)
        httpd.serve_forever()
        ```

"""

from __future__ import annotations

from dataclasses import dataclass
from email import policy as email_policy
from email.parser import BytesParser
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
import json
from pathlib import Path
import shutil
import tempfile
from typing import Any, BinaryIO
from urllib.parse import parse_qs, unquote, urlparse

from apkdepot import __version__
from apkdepot.config import DepotSettings
from apkdepot.core import (
    check_update,
    ingest_package,
    list_catalog,
    list_versions,
    open_policy_store,
    update_policy,
)
from apkdepot.exceptions import (
    ArtifactNotFound,
    DepotError,
    StoreIOError,
    UnparsablePackage,
    ValidationError,
)
from apkdepot.inspector import ApkInspector, PackageInspector
from apkdepot.io.storage import ArtifactStore
from apkdepot.logging import get_global_logger
from apkdepot.state.store import PolicyStore
from apkdepot.validation import parse_check_update, parse_policy_update

UPLOAD_FIELD = "apkfile"
APK_MEDIA_TYPE = "application/vnd.android.package-archive"
_COPY_CHUNK = 1024 * 1024
# Policy update bodies are tiny JSON objects.
MAX_CONFIG_BODY = 64 * 1024


@dataclass
class DepotContext:
    """Everything a request handler needs, built once at startup.

    Attributes:
        store: Process-wide policy store.
        artifacts: Stored binaries.
        inspector: Package inspector for uploads and listings.
        settings: Effective service settings.

    """

    store: PolicyStore
    artifacts: ArtifactStore
    inspector: PackageInspector
    settings: DepotSettings


def build_context(
    settings: DepotSettings, inspector: PackageInspector | None = None
) -> DepotContext:
    """Load the policy snapshot and prepare storage for serving."""
    artifacts = ArtifactStore(settings.apk_dir)
    artifacts.ensure()
    return DepotContext(
        store=open_policy_store(settings.metadata_file),
        artifacts=artifacts,
        inspector=inspector or ApkInspector(),
        settings=settings,
    )


def _extract_multipart_file(body: bytes, content_type: str, field: str) -> bytes | None:
    """Return the bytes of one file field from a multipart/form-data body."""
    header = f"Content-Type: {content_type}\r\n\r\n".encode("latin-1")
    message = BytesParser(policy=email_policy.HTTP).parsebytes(header + body)
    if not message.is_multipart():
        return None
    for part in message.iter_parts():
        if part.get_param("name", header="content-disposition") == field:
            payload = part.get_payload(decode=True)
            return payload if isinstance(payload, bytes) else None
    return None


class DepotHTTPServer(ThreadingHTTPServer):
    """ThreadingHTTPServer carrying the depot context for its handlers."""

    daemon_threads = True

    def __init__(self, address: tuple[str, int], context: DepotContext):
        self.context = context
        super().__init__(address, DepotRequestHandler)


class DepotRequestHandler(BaseHTTPRequestHandler):
    """Routes depot API requests to apkdepot.core."""

    server: DepotHTTPServer
    server_version = f"apkdepot/{__version__}"

    # -------------------------------
    # Plumbing
    # -------------------------------

    @property
    def context(self) -> DepotContext:
        return self.server.context

    def log_message(self, format: str, *args: Any) -> None:
        get_global_logger().verbose(
            "HTTP", f"{self.address_string()} {format % args}"
        )

    def _send_cors(self) -> None:
        allowed = self.context.settings.cors_allowed_origins
        origin = self.headers.get("Origin")
        if origin and ("*" in allowed or origin in allowed):
            self.send_header("Access-Control-Allow-Origin", origin)
            self.send_header("Access-Control-Allow-Credentials", "true")
            self.send_header("Vary", "Origin")
        elif "*" in allowed:
            self.send_header("Access-Control-Allow-Origin", "*")
        self.send_header("Access-Control-Allow-Methods", "GET, POST, DELETE, OPTIONS")
        self.send_header("Access-Control-Allow-Headers", "Content-Type, Authorization")

    def _send_json(self, status: int, payload: Any) -> None:
        body = json.dumps(payload).encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(body)))
        self._send_cors()
        self.end_headers()
        self.wfile.write(body)

    def _send_error_json(self, status: int, message: str) -> None:
        self._send_json(status, {"error": message})

    def _query(self) -> dict[str, list[str]]:
        return parse_qs(urlparse(self.path).query)

    def _route(self) -> str:
        return urlparse(self.path).path

    def _content_length(self) -> int | None:
        raw = self.headers.get("Content-Length")
        if raw is None:
            return None
        try:
            length = int(raw)
        except ValueError:
            return None
        return length if length >= 0 else None

    # -------------------------------
    # Verbs
    # -------------------------------

    def do_OPTIONS(self) -> None:
        self.send_response(HTTPStatus.OK)
        self.send_header("Content-Length", "0")
        self._send_cors()
        self.end_headers()

    def do_GET(self) -> None:
        route = self._route()
        if route == "/api/check-update":
            self._handle_check_update()
        elif route == "/api/version-list":
            self._handle_version_list()
        elif route == "/api/apks":
            self._handle_catalog()
        elif route.startswith("/apks/"):
            self._handle_download(unquote(route[len("/apks/") :]))
        elif route in ("/api/upload", "/api/config/update"):
            self._send_error_json(HTTPStatus.METHOD_NOT_ALLOWED, "Method not allowed")
        else:
            self._send_error_json(HTTPStatus.NOT_FOUND, "Not found")

    def do_POST(self) -> None:
        route = self._route()
        if route == "/api/upload":
            self._handle_upload()
        elif route == "/api/config/update":
            self._handle_config_update()
        elif route in ("/api/check-update", "/api/version-list", "/api/apks"):
            self._send_error_json(HTTPStatus.METHOD_NOT_ALLOWED, "Method not allowed")
        else:
            self._send_error_json(HTTPStatus.NOT_FOUND, "Not found")

    def do_DELETE(self) -> None:
        route = self._route()
        if route.startswith("/api/apks/"):
            self._handle_delete(unquote(route[len("/api/apks/") :]))
        else:
            self._send_error_json(HTTPStatus.METHOD_NOT_ALLOWED, "Method not allowed")

    # -------------------------------
    # Read handlers
    # -------------------------------

    def _handle_check_update(self) -> None:
        try:
            request = parse_check_update(self._query())
            decision = check_update(
                self.context.store,
                request.package_name,
                request.version_code,
                request.device_id,
                download_prefix=self.context.settings.download_prefix,
            )
        except ValidationError as err:
            self._send_error_json(HTTPStatus.BAD_REQUEST, str(err))
            return
        self._send_json(HTTPStatus.OK, decision.to_dict())

    def _handle_version_list(self) -> None:
        package_name = self._query().get("packageName", [""])[0]
        try:
            result = list_versions(
                self.context.store,
                self.context.artifacts,
                self.context.inspector,
                package_name,
            )
        except ValidationError as err:
            self._send_error_json(HTTPStatus.BAD_REQUEST, str(err))
            return
        except StoreIOError as err:
            get_global_logger().warning("HTTP", str(err))
            self._send_error_json(
                HTTPStatus.INTERNAL_SERVER_ERROR, "Could not read APK directory"
            )
            return
        self._send_json(HTTPStatus.OK, result.to_dict())

    def _handle_catalog(self) -> None:
        try:
            catalog = list_catalog(
                self.context.store, self.context.artifacts, self.context.inspector
            )
        except StoreIOError as err:
            get_global_logger().warning("HTTP", str(err))
            self._send_error_json(
                HTTPStatus.INTERNAL_SERVER_ERROR, "Could not read APK directory"
            )
            return
        self._send_json(HTTPStatus.OK, [entry.to_dict() for entry in catalog])

    def _handle_download(self, name: str) -> None:
        try:
            path = self.context.artifacts.path_for(name)
        except ValidationError:
            self._send_error_json(HTTPStatus.BAD_REQUEST, "Invalid filename")
            return
        try:
            f = path.open("rb")
        except FileNotFoundError:
            self._send_error_json(HTTPStatus.NOT_FOUND, "Not found")
            return
        with f:
            size = path.stat().st_size
            self.send_response(HTTPStatus.OK)
            self.send_header("Content-Type", APK_MEDIA_TYPE)
            self.send_header("Content-Length", str(size))
            self.send_header("Content-Disposition", f'attachment; filename="{name}"')
            self._send_cors()
            self.end_headers()
            shutil.copyfileobj(f, self.wfile, _COPY_CHUNK)

    # -------------------------------
    # Write handlers
    # -------------------------------

    def _discard_body(self, length: int) -> None:
        # Unread request bytes make the close send RST before the client
        # has read the response.
        remaining = length
        while remaining > 0:
            chunk = self.rfile.read(min(_COPY_CHUNK, remaining))
            if not chunk:
                break
            remaining -= len(chunk)

    def _stage_upload(self, length: int, out: BinaryIO) -> None:
        """Write the request body (or its apkfile part) to a staging file."""
        content_type = self.headers.get("Content-Type", "")
        if content_type.lower().startswith("multipart/form-data"):
            body = self.rfile.read(length)
            payload = _extract_multipart_file(body, content_type, UPLOAD_FIELD)
            if payload is None:
                raise ValidationError("Invalid file")
            out.write(payload)
            return

        remaining = length
        while remaining > 0:
            chunk = self.rfile.read(min(_COPY_CHUNK, remaining))
            if not chunk:
                raise ValidationError("Incomplete upload")
            out.write(chunk)
            remaining -= len(chunk)

    def _handle_upload(self) -> None:
        settings = self.context.settings
        length = self._content_length()
        if length is None or length == 0:
            self._send_error_json(HTTPStatus.BAD_REQUEST, "Invalid file")
            return
        if length > settings.max_upload_size:
            self._discard_body(length)
            self.close_connection = True
            self._send_error_json(HTTPStatus.REQUEST_ENTITY_TOO_LARGE, "File too big")
            return

        staging = settings.staging_dir or Path(tempfile.gettempdir())
        staged: Path | None = None
        try:
            staging.mkdir(parents=True, exist_ok=True)
            fd, name = tempfile.mkstemp(prefix="upload-", suffix=".apk", dir=staging)
            staged = Path(name)
            with open(fd, "wb") as out:
                self._stage_upload(length, out)
            result = ingest_package(
                staged,
                store=self.context.store,
                artifacts=self.context.artifacts,
                inspector=self.context.inspector,
                metadata_file=settings.metadata_file,
            )
        except UnparsablePackage as err:
            get_global_logger().verbose("HTTP", f"Rejected upload: {err}")
            self._send_error_json(HTTPStatus.BAD_REQUEST, "Invalid APK file")
            return
        except ValidationError as err:
            self._send_error_json(HTTPStatus.BAD_REQUEST, str(err))
            return
        except (DepotError, OSError) as err:
            get_global_logger().warning("HTTP", f"Upload failed: {err}")
            self._send_error_json(HTTPStatus.INTERNAL_SERVER_ERROR, "Save failed")
            return
        finally:
            if staged is not None:
                staged.unlink(missing_ok=True)

        self._send_json(HTTPStatus.OK, result.to_dict())

    def _handle_config_update(self) -> None:
        length = self._content_length()
        if length is not None and length > MAX_CONFIG_BODY:
            self._discard_body(length)
            self.close_connection = True
            self._send_error_json(HTTPStatus.REQUEST_ENTITY_TOO_LARGE, "Body too large")
            return
        body = self.rfile.read(length) if length else b""
        try:
            request = parse_policy_update(body)
            update_policy(
                self.context.store,
                request,
                metadata_file=self.context.settings.metadata_file,
            )
        except ValidationError as err:
            self._send_error_json(HTTPStatus.BAD_REQUEST, str(err))
            return
        self._send_json(HTTPStatus.OK, {"message": "Config updated"})

    def _handle_delete(self, name: str) -> None:
        try:
            self.context.artifacts.delete(name)
        except ValidationError:
            self._send_error_json(HTTPStatus.BAD_REQUEST, "Invalid filename")
            return
        except ArtifactNotFound:
            self._send_error_json(HTTPStatus.NOT_FOUND, "Not found")
            return
        except StoreIOError as err:
            get_global_logger().warning("HTTP", str(err))
            self._send_error_json(HTTPStatus.INTERNAL_SERVER_ERROR, "Delete failed")
            return
        self._send_json(HTTPStatus.OK, {"message": "Deleted"})


def create_server(
    context: DepotContext, host: str | None = None, port: int | None = None
) -> DepotHTTPServer:
    """Bind a DepotHTTPServer; port 0 picks a free port (useful in tests)."""
    settings = context.settings
    address = (
        settings.host if host is None else host,
        settings.port if port is None else port,
    )
    return DepotHTTPServer(address, context)
