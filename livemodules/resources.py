"""Resource access for module sources and package descriptors.

The engine reads module sources, package descriptors and directory
listings only through :class:`Resources`. Two implementations:

- FileResources: local file system (``file://`` urls or plain paths)
- MemoryResources: an in-memory tree keyed by url, for tests and scratch modules
"""

import logging
from abc import ABC
from abc import abstractmethod
from dataclasses import dataclass

from livemodules import urls

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResourceEntry:
    """One child of a listed directory."""

    url: str
    is_directory: bool

    @property
    def name(self) -> str:
        return urls.basename(self.url)


class Resources(ABC):
    """Read/write/list access to urls.

    All methods are coroutines; each call is a suspension point for the
    loading protocol.
    """

    @abstractmethod
    async def read(self, url: str) -> str:
        """Return the text at ``url``.

        Raises:
            FileNotFoundError: If nothing exists at ``url``
        """

    @abstractmethod
    async def write(self, url: str, text: str) -> None:
        """Store ``text`` at ``url``, creating parent directories."""

    @abstractmethod
    async def exists(self, url: str) -> bool:
        """Check whether a file or directory exists at ``url``."""

    @abstractmethod
    async def list_children(self, url: str) -> list[ResourceEntry]:
        """List the direct children of the directory at ``url``.

        Returns an empty list when ``url`` is not a directory.
        """


class FileResources(Resources):
    """Local filesystem resources."""

    async def read(self, url: str) -> str:
        return urls.to_path(url).read_text(encoding="utf-8")

    async def write(self, url: str, text: str) -> None:
        path = urls.to_path(url)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
        logger.debug(f"[resources:write] {path} ({len(text)} chars)")

    async def exists(self, url: str) -> bool:
        return urls.to_path(url).exists()

    async def list_children(self, url: str) -> list[ResourceEntry]:
        path = urls.to_path(url)
        if not path.is_dir():
            return []
        base = urls.from_path(path)
        return [
            ResourceEntry(urls.join(base, child.name), child.is_dir())
            for child in sorted(path.iterdir(), key=lambda p: p.name)
        ]

    def __repr__(self) -> str:
        return "FileResources()"


class MemoryResources(Resources):
    """In-memory resources keyed by url.

    Directories exist implicitly as prefixes of stored urls.
    """

    def __init__(self, files: dict[str, str] | None = None):
        self.files: dict[str, str] = {}
        for url, text in (files or {}).items():
            self.files[urls.normalize(url)] = text

    async def read(self, url: str) -> str:
        try:
            return self.files[urls.normalize(url)]
        except KeyError:
            raise FileNotFoundError(f"No such resource: {url}") from None

    async def write(self, url: str, text: str) -> None:
        self.files[urls.normalize(url)] = text

    async def exists(self, url: str) -> bool:
        url = urls.normalize(url)
        return url in self.files or self._is_directory(url)

    async def list_children(self, url: str) -> list[ResourceEntry]:
        prefix = urls.normalize(url).rstrip("/") + "/"
        children: dict[str, bool] = {}
        for file_url in self.files:
            if not file_url.startswith(prefix):
                continue
            name, _, rest = file_url[len(prefix) :].partition("/")
            children[name] = children.get(name, False) or bool(rest)
        return [ResourceEntry(prefix + name, is_dir) for name, is_dir in sorted(children.items())]

    def _is_directory(self, url: str) -> bool:
        prefix = url.rstrip("/") + "/"
        return any(file_url.startswith(prefix) for file_url in self.files)

    def __repr__(self) -> str:
        return f"MemoryResources({len(self.files)} files)"
