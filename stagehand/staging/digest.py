"""
Digest engine - size and content hash of an artifact in one streaming pass.

Files are streamed as-is. Directories are serialized into a zip archive whose
bytes depend only on relative paths and file contents:
- entries are written in sorted relative-path order
- timestamps are pinned to 1980-01-01
- permission bits are fixed
- the archive is always written in streaming mode (data descriptors), even
  when the destination is seekable

write_content() is the single writer used both for hashing and for upload, so
the digest always describes exactly the bytes that get staged.
"""

import base64
import hashlib
import os
import shutil
import zipfile
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Iterator

from stagehand.errors import ArtifactReadError

CHUNK_SIZE = 1024 * 1024

# Earliest timestamp a zip entry can carry
ZIP_EPOCH = (1980, 1, 1, 0, 0, 0)
FILE_MODE = 0o100644
DIR_MODE = 0o040755
MSDOS_DIR_ATTR = 0x10


@dataclass(frozen=True)
class Digest:
    """Byte size and URL-safe content hash of a staged byte stream."""
    size: int
    content_hash: str


class _HashingSink:
    """Write-only sink that counts and hashes what it receives."""

    def __init__(self):
        self._hasher = hashlib.md5()
        self.count = 0

    def write(self, data: bytes) -> int:
        self._hasher.update(data)
        self.count += len(data)
        return len(data)

    def flush(self) -> None:
        pass

    def digest(self) -> Digest:
        return Digest(size=self.count, content_hash=encode_hash(self._hasher.digest()))


class _StreamOnly:
    """
    Hide seek/tell of the wrapped stream.

    zipfile rewrites local headers when it can seek, which would make the
    uploaded bytes differ from the hashed bytes.
    """

    def __init__(self, stream: BinaryIO):
        self._stream = stream

    def write(self, data: bytes) -> int:
        self._stream.write(data)
        return len(data)

    def flush(self) -> None:
        self._stream.flush()


def encode_hash(raw: bytes) -> str:
    """URL-safe base64 without padding, safe as a file name component."""
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def compute_digest(path: Path) -> Digest:
    """
    Compute (size, content_hash) for a file or directory.

    Raises:
        ArtifactReadError: If the artifact cannot be read
    """
    sink = _HashingSink()
    write_content(path, sink)
    return sink.digest()


def write_content(path: Path, out: BinaryIO) -> None:
    """
    Write the staged byte stream of `path` into `out`.

    Directories are zipped on the fly, files are copied as-is. `out` is not
    closed; the caller owns it.

    Only failures reading the artifact are wrapped. Errors raised by `out`
    propagate unchanged so the caller can classify and retry them.

    Raises:
        ArtifactReadError: If the artifact cannot be read
    """
    path = Path(path)
    if path.is_dir():
        zip_directory(path, out)
    else:
        with _SourceFile(path) as src:
            shutil.copyfileobj(src, out, CHUNK_SIZE)


def _read_error(path: Path, e: OSError) -> ArtifactReadError:
    return ArtifactReadError(f"Cannot read artifact {path}: {e}", path=str(path))


class _SourceFile:
    """Local file opened for reading; its I/O errors surface as ArtifactReadError."""

    def __init__(self, path: Path):
        self._path = path
        try:
            self._file = open(path, "rb")
        except OSError as e:
            raise _read_error(path, e) from e

    def read(self, size: int = -1) -> bytes:
        try:
            return self._file.read(size)
        except OSError as e:
            raise _read_error(self._path, e) from e

    def close(self) -> None:
        self._file.close()

    def __enter__(self) -> "_SourceFile":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def _walk_sorted(root: Path) -> Iterator[tuple[str, Path, bool]]:
    """Yield (archive_name, path, is_dir) in sorted relative-path order."""

    def _raise(err: OSError) -> None:
        raise _read_error(Path(err.filename or root), err) from err

    entries = []
    for dirpath, dirnames, filenames in os.walk(root, onerror=_raise):
        base = Path(dirpath)
        for name in dirnames:
            entries.append((base / name).relative_to(root).as_posix() + "/")
        for name in filenames:
            entries.append((base / name).relative_to(root).as_posix())

    for name in sorted(entries):
        is_dir = name.endswith("/")
        yield name, root / name.rstrip("/"), is_dir


def zip_directory(root: Path, out: BinaryIO) -> None:
    """Write a deterministic zip of `root` into `out` without closing it."""
    with zipfile.ZipFile(_StreamOnly(out), mode="w", compression=zipfile.ZIP_DEFLATED) as zf:
        for name, entry_path, is_dir in _walk_sorted(root):
            info = zipfile.ZipInfo(name, date_time=ZIP_EPOCH)
            info.create_system = 3  # unix
            if is_dir:
                info.external_attr = (DIR_MODE << 16) | MSDOS_DIR_ATTR
                info.compress_type = zipfile.ZIP_STORED
                zf.writestr(info, b"")
                continue

            info.external_attr = FILE_MODE << 16
            info.compress_type = zipfile.ZIP_DEFLATED
            try:
                info.file_size = entry_path.stat().st_size
            except OSError as e:
                raise _read_error(entry_path, e) from e
            with _SourceFile(entry_path) as src, zf.open(info, mode="w") as dst:
                shutil.copyfileobj(src, dst, CHUNK_SIZE)
