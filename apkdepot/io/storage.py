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

"""Flat-directory artifact storage for APK Depot.

Stored binaries live side by side in one directory under their canonical
names. Each write goes to its own hidden .part file first and is renamed
into place, so a listing never picks up a half-written APK.

Example:
    Store and enumerate:

        from pathlib import Path
        from apkdepot.io.storage import ArtifactStore

        artifacts = ArtifactStore(Path("apks"))
        artifacts.write(Path("/tmp/upload-1234.apk"), "com.example.app_102.apk")
        for entry in artifacts.entries():
            print(entry.name, format_file_size(entry.size))

"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
import os
from pathlib import Path
import shutil
import tempfile

from apkdepot.exceptions import ArtifactNotFound, StoreIOError, ValidationError
from apkdepot.logging import get_global_logger
from apkdepot.policy.ingestion import is_artifact_name


@dataclass(frozen=True)
class StoredArtifact:
    """A binary present in the artifact directory.

    Attributes:
        name: File name (canonical artifact name).
        path: Absolute path to the file.
        size: Size in bytes.
        modified: Modification time as a POSIX timestamp.

    """

    name: str
    path: Path
    size: int
    modified: float


def format_file_size(size: int) -> str:
    """Render a byte count as "B", "KB" or "MB" text.

    Example:
        >>> format_file_size(512)
        '512 B'
        >>> format_file_size(1536)
        '1.50 KB'

    """
    if size < 1024:
        return f"{size} B"
    kb = size / 1024
    if kb < 1024:
        return f"{kb:.2f} KB"
    return f"{kb / 1024:.2f} MB"


def format_timestamp(timestamp: float, with_time: bool = True) -> str:
    """Render a POSIX timestamp in local time for listings."""
    fmt = "%Y-%m-%d %H:%M:%S" if with_time else "%Y-%m-%d"
    return datetime.fromtimestamp(timestamp).strftime(fmt)


class ArtifactStore:
    """Stores binaries by name in a single directory.

    Attributes:
        root: Directory holding the stored binaries.

    """

    def __init__(self, root: Path):
        self.root = root

    def ensure(self) -> None:
        """Create the storage directory if needed."""
        self.root.mkdir(parents=True, exist_ok=True)

    def path_for(self, name: str) -> Path:
        """Return the on-disk path for a stored name.

        Raises:
            ValidationError: If the name could escape the storage directory.

        """
        if (
            not name
            or name in (".", "..")
            or ".." in name
            or Path(name).name != name
            or "\\" in name
        ):
            raise ValidationError(f"invalid artifact name: {name!r}")
        return self.root / name

    def exists(self, name: str) -> bool:
        return self.path_for(name).is_file()

    def write(self, source: Path, name: str) -> Path:
        """Copy a staged file into storage under name, replacing any old copy.

        Args:
            source: Staged file to copy from.
            name: Canonical artifact name.

        Returns:
            Path of the stored file.

        Raises:
            StoreIOError: If the copy fails. No partial file is left behind.

        """
        target = self.path_for(name)
        tmp: Path | None = None
        logger = get_global_logger()
        try:
            self.ensure()
            fd, tmp_name = tempfile.mkstemp(
                dir=self.root, prefix=f".{name}.", suffix=".part"
            )
            os.close(fd)
            tmp = Path(tmp_name)
            shutil.copyfile(source, tmp)
            os.chmod(tmp, 0o644)
            os.replace(tmp, target)
        except OSError as err:
            if tmp is not None:
                tmp.unlink(missing_ok=True)
            raise StoreIOError(f"could not store {name}: {err}") from err

        logger.verbose("FILE", f"Stored {target}")
        return target

    def entries(self) -> list[StoredArtifact]:
        """List stored binaries (name, size, modification time).

        A missing storage directory yields an empty list. A binary removed
        while the listing runs is skipped.

        Raises:
            StoreIOError: If the directory exists but cannot be read.

        """
        found: list[StoredArtifact] = []
        try:
            with os.scandir(self.root) as it:
                for entry in it:
                    if not entry.is_file() or not is_artifact_name(entry.name):
                        continue
                    try:
                        st = entry.stat()
                    except FileNotFoundError:
                        continue
                    found.append(
                        StoredArtifact(
                            name=entry.name,
                            path=Path(entry.path),
                            size=st.st_size,
                            modified=st.st_mtime,
                        )
                    )
        except FileNotFoundError:
            return []
        except OSError as err:
            raise StoreIOError(f"could not read {self.root}: {err}") from err
        return found

    def delete(self, name: str) -> None:
        """Remove a stored binary.

        Policy state is not touched: deleting the latest binary leaves the
        policy pointing at a missing file.

        Raises:
            ValidationError: If the name is unsafe.
            ArtifactNotFound: If no such binary is stored.
            StoreIOError: If the file cannot be removed.

        """
        target = self.path_for(name)
        try:
            target.unlink()
        except FileNotFoundError as err:
            raise ArtifactNotFound(f"artifact not found: {name}") from err
        except OSError as err:
            raise StoreIOError(f"could not delete {name}: {err}") from err
        get_global_logger().verbose("FILE", f"Deleted {target}")
