"""Archive extraction and project-root resolution for uploaded projects."""

import logging
import shutil
import stat
import threading
import zipfile
from pathlib import Path
from typing import Iterable

from livepreview.core.constants import IGNORED_ARCHIVE_DIRS
from livepreview.core.exceptions import ExtractionError

logger = logging.getLogger(__name__)


def _is_symlink(info: zipfile.ZipInfo) -> bool:
    return stat.S_ISLNK(info.external_attr >> 16)


def _check_abort(abort: threading.Event | None) -> None:
    if abort is not None and abort.is_set():
        raise ExtractionError("Extraction aborted")


def extract_archive(
    archive_path: Path,
    destination: Path,
    abort: threading.Event | None = None,
) -> Path:
    """Extract a zip archive into ``destination``.

    Every entry is validated before anything is written: an absolute
    name, a ``..`` component resolving outside the destination, or a
    symlink entry rejects the whole archive. ``abort`` is checked between
    entries so a cancelled start stops writing promptly.

    Returns:
        The destination directory.

    Raises:
        ExtractionError: If the archive is corrupt or any entry escapes.
    """
    destination.mkdir(parents=True, exist_ok=True)
    root = destination.resolve()

    try:
        with zipfile.ZipFile(archive_path) as zf:
            members = zf.infolist()
            for info in members:
                target = (root / info.filename).resolve()
                if target != root and not target.is_relative_to(root):
                    raise ExtractionError(
                        f"Archive entry escapes extraction root: {info.filename}"
                    )
                if _is_symlink(info):
                    raise ExtractionError(f"Archive contains a symlink: {info.filename}")

            for info in members:
                _check_abort(abort)
                zf.extract(info, root)
    except zipfile.BadZipFile as e:
        raise ExtractionError(f"Invalid zip archive: {e}") from e
    except (OSError, RuntimeError) as e:
        # RuntimeError: encrypted entries
        raise ExtractionError(f"Failed to extract archive: {e}") from e

    logger.debug("Extracted %s into %s (%d entries)", archive_path, root, len(members))
    return destination


def copy_project(
    source: Path,
    destination: Path,
    ignore: Iterable[str] = (),
    abort: threading.Event | None = None,
) -> Path:
    """Copy a project directory, checking ``abort`` before every file.

    Raises:
        ExtractionError: If aborted.
    """

    def copy(src: str, dst: str) -> str:
        _check_abort(abort)
        return shutil.copy2(src, dst)

    shutil.copytree(
        source,
        destination,
        ignore=shutil.ignore_patterns(*ignore),
        copy_function=copy,
        dirs_exist_ok=True,
    )
    return destination


def _has_manifest(path: Path) -> bool:
    return (path / "package.json").is_file()


def _subdirs(path: Path) -> list[Path]:
    try:
        return sorted(
            p for p in path.iterdir()
            if p.is_dir() and p.name not in IGNORED_ARCHIVE_DIRS and not p.name.startswith(".")
        )
    except OSError:
        return []


def resolve_project_root(extracted_dir: Path) -> Path:
    """Find the real project root inside an extracted archive.

    Tolerates one wrapping folder (``my-app/package.json``) and OS metadata
    folders such as ``__MACOSX``. Falls back to ``extracted_dir`` itself
    when no ``package.json`` is found within two levels.
    """
    if _has_manifest(extracted_dir):
        return extracted_dir

    dirs = _subdirs(extracted_dir)

    if len(dirs) == 1:
        if _has_manifest(dirs[0]):
            return dirs[0]
        for sub in _subdirs(dirs[0]):
            if _has_manifest(sub):
                return sub

    for d in dirs:
        if _has_manifest(d):
            return d
    for d in dirs:
        for sub in _subdirs(d):
            if _has_manifest(sub):
                return sub

    return extracted_dir
