"""Filesystem providers the runtime can be pointed at.

When `ClientOptions.filesystem` is set the client answers the runtime's
``fs.*`` requests from the provider instead of letting the runtime touch the
host disk.
"""

from __future__ import annotations

import re
from typing import Dict, List, Mapping, Optional, Protocol, runtime_checkable


@runtime_checkable
class FileSystemProvider(Protocol):
    """Protocol for a filesystem served to the runtime.

    Examples:
        >>> fs = InMemoryFileSystem({"/doc.txt": "Hello world"})
        >>> await fs.read_file("/doc.txt")
        'Hello world'
    """

    async def read_file(self, path: str) -> str:
        """Return the file's text.

        Raises:
            FileNotFoundError: If no file exists at `path`.
        """
        ...

    async def write_file(self, path: str, content: str) -> None: ...

    async def exists(self, path: str) -> bool: ...

    async def read_dir(self, path: str) -> List[str]:
        """Return the sorted names of the direct children of `path`."""
        ...

    async def mkdir(self, path: str, recursive: bool = False) -> None: ...

    async def remove(self, path: str) -> None:
        """Remove `path` and, for a directory, everything below it."""
        ...


class InMemoryFileSystem:
    """Dict-backed filesystem for sandboxed runtimes and tests.

    Directories are implicit: a directory exists as long as some file lives
    under it, which is why `mkdir` does nothing.
    """

    def __init__(self, initial_files: Optional[Mapping[str, str]] = None) -> None:
        self._files: Dict[str, str] = {}
        for path, content in (initial_files or {}).items():
            self._files[self._normalize(path)] = content

    @staticmethod
    def _normalize(path: str) -> str:
        return re.sub(r"/+$", "", path.replace("\\", "/")) or "/"

    async def read_file(self, path: str) -> str:
        normalized = self._normalize(path)
        try:
            return self._files[normalized]
        except KeyError:
            raise FileNotFoundError(f"ENOENT: no such file: {normalized}") from None

    async def write_file(self, path: str, content: str) -> None:
        self._files[self._normalize(path)] = content

    async def exists(self, path: str) -> bool:
        normalized = self._normalize(path)
        if normalized in self._files:
            return True
        prefix = normalized if normalized.endswith("/") else normalized + "/"
        return any(key.startswith(prefix) for key in self._files)

    async def read_dir(self, path: str) -> List[str]:
        normalized = self._normalize(path)
        prefix = "/" if normalized == "/" else normalized + "/"
        entries = set()
        for key in self._files:
            if key.startswith(prefix):
                first = key[len(prefix) :].split("/")[0]
                if first:
                    entries.add(first)
        return sorted(entries)

    async def mkdir(self, path: str, recursive: bool = False) -> None:
        return None

    async def remove(self, path: str) -> None:
        normalized = self._normalize(path)
        self._files.pop(normalized, None)
        prefix = normalized + "/"
        for key in [k for k in self._files if k.startswith(prefix)]:
            del self._files[key]

    def write_sync(self, path: str, content: str) -> None:
        """Synchronous write for setting up fixtures before an event loop runs."""
        self._files[self._normalize(path)] = content

    def get_all_files(self) -> Dict[str, str]:
        return dict(self._files)
