"""Byte-range readers over the supported upload inputs."""

import io
import os
from pathlib import Path
from threading import Lock
from typing import Any, BinaryIO, Union

from .exceptions import ValidationError
from .models import MAX_UPLOAD_FILE_SIZE


class DataSource:
    """Random-access reader with a known total size."""

    kind = "unknown"

    def __init__(self, size: int) -> None:
        self.size = size

    def read(self, offset: int, size: int) -> bytes:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"<{type(self).__name__} kind={self.kind} size={self.size}>"


class FileSource(DataSource):
    """A file on disk, reopened for every range so parts can be read concurrently."""

    kind = "File"

    def __init__(self, path: Union[str, os.PathLike]) -> None:
        self.path = Path(path)
        if not self.path.exists():
            raise ValidationError("data", str(path), "local file not found")
        if self.path.is_dir():
            raise ValidationError("data", str(path), "path is a directory")
        super().__init__(self.path.stat().st_size)

    def read(self, offset: int, size: int) -> bytes:
        with open(self.path, "rb") as f:
            f.seek(offset)
            return f.read(size)


class BytesSource(DataSource):
    """An in-memory buffer."""

    kind = "Buffer"

    def __init__(self, data: Any) -> None:
        self._view = memoryview(data).cast("B")
        super().__init__(self._view.nbytes)

    def read(self, offset: int, size: int) -> bytes:
        return self._view[offset : offset + size].tobytes()


class BlobSource(DataSource):
    """A seekable binary file object shared between part readers."""

    kind = "Blob"

    def __init__(self, fileobj: BinaryIO) -> None:
        self._fileobj = fileobj
        self._lock = Lock()
        start = fileobj.tell()
        end = fileobj.seek(0, io.SEEK_END)
        fileobj.seek(start)
        super().__init__(end)

    def read(self, offset: int, size: int) -> bytes:
        with self._lock:
            self._fileobj.seek(offset)
            return self._fileobj.read(size)


def open_source(data: Any) -> DataSource:
    """Wrap ``data`` in a :class:`DataSource`.

    Accepts a filesystem path, a bytes-like object or a seekable binary file
    object. Streams whose length is unknown are rejected.
    """
    if isinstance(data, DataSource):
        source = data
    elif isinstance(data, (str, os.PathLike)):
        source = FileSource(data)
    elif isinstance(data, (bytes, bytearray, memoryview)):
        source = BytesSource(data)
    elif hasattr(data, "read"):
        seekable = getattr(data, "seekable", None)
        if not callable(seekable) or not seekable():
            raise ValidationError(
                "data", type(data).__name__, "streams are not supported, use a seekable file"
            )
        source = BlobSource(data)
    else:
        raise ValidationError("data", type(data).__name__, "unsupported data type")

    if source.size > MAX_UPLOAD_FILE_SIZE:
        raise ValidationError(
            "data", source.size, f"size exceeds {MAX_UPLOAD_FILE_SIZE} bytes (48.8TB)"
        )
    return source
