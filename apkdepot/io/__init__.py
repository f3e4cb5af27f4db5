"""Input/Output operations for APK Depot.

This package provides the filesystem and network collaborators of the
release-policy engine.

Modules:

storage : module
    Flat-directory artifact storage with atomic writes and enumeration.
download : module
    HTTP(S) fetch of a remote APK into a staging directory.

Public API:

ArtifactStore : class
    Store, enumerate and delete binaries by canonical name.
StoredArtifact : class
    Name, path, size and modification time of a stored binary.
fetch_apk : function
    Download a URL with retries, size cap and checksum.
format_file_size : function
    Human-readable byte count for listings.

Example:
    from pathlib import Path
    from apkdepot.io import ArtifactStore

    artifacts = ArtifactStore(Path("./apks"))
    print([a.name for a in artifacts.entries()])

"""

from .download import fetch_apk, make_session
from .storage import ArtifactStore, StoredArtifact, format_file_size, format_timestamp

__all__ = [
    "ArtifactStore",
    "StoredArtifact",
    "fetch_apk",
    "format_file_size",
    "format_timestamp",
    "make_session",
]
