"""Package registry: discovers and indexes versioned packages.

Three root sets are scanned:

- package base dirs: collections laid out as ``<dir>/<name>/<version>/``
- individual package dirs: one package each
- dev package dirs: packages under development, one package each

Resolution order for a bare specifier like ``lib/sub/mod``:
1. An alias in the importing package's ``map``
2. The range the importing package declares for ``lib``
3. The latest registered version of ``lib``
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from dataclasses import field
from typing import TYPE_CHECKING

from pydantic import ValidationError

from livemodules import urls
from livemodules import versions
from livemodules.errors import ResolutionError
from livemodules.package import DESCRIPTOR_FILE
from livemodules.package import Package
from livemodules.package import PackageDescriptor

if TYPE_CHECKING:
    from livemodules.system import ModuleSystem

logger = logging.getLogger(__name__)


@dataclass
class PackageVersions:
    latest: str | None = None
    versions: dict[str | None, Package] = field(default_factory=dict)


class PackageRegistry:
    """Index of registered packages by name and version."""

    def __init__(
        self,
        system: ModuleSystem,
        package_base_dirs: list[str] | None = None,
        individual_package_dirs: list[str] | None = None,
        dev_package_dirs: list[str] | None = None,
    ):
        self.system = system
        self.package_base_dirs = [self._dir_url(d) for d in package_base_dirs or []]
        self.individual_package_dirs = [self._dir_url(d) for d in individual_package_dirs or []]
        self.dev_package_dirs = [self._dir_url(d) for d in dev_package_dirs or []]
        self.package_map: dict[str, PackageVersions] = {}
        self._updating: asyncio.Event | None = None

    def _dir_url(self, directory: str) -> str:
        if urls.is_url(directory):
            return urls.normalize(directory).rstrip("/")
        if directory.startswith("/"):
            return urls.from_path(directory)
        return urls.join(self.system.base_url, directory).rstrip("/")

    # ========================================================================
    # Queries
    # ========================================================================

    def package_names(self) -> list[str]:
        return list(self.package_map)

    def all_packages(self) -> list[Package]:
        return [package for entry in self.package_map.values() for package in entry.versions.values()]

    def lookup(self, name: str, range_: str | None = None) -> Package | None:
        """Find the package for ``name`` matching ``range_``.

        Args:
            name: Package name
            range_: npm-style version range; empty or "latest" picks the latest version

        Returns:
            The highest registered version satisfying the range, or None

        Raises:
            ResolutionError: If ``range_`` is not a valid version range
        """
        entry = self.package_map.get(name)
        if not entry:
            return None
        if not range_ or range_ == "latest":
            return entry.versions.get(entry.latest)
        if not versions.is_valid_range(range_):
            raise ResolutionError(f"Invalid version range {range_!r} for package {name}", specifier=name)
        best = versions.max_satisfying(entry.versions, range_)
        return entry.versions[best] if best is not None else None

    def matches(self, name: str, range_: str | None = None) -> bool:
        return self.lookup(name, range_) is not None

    def find_package_dependency(
        self, base_package: Package, name: str, range_: str | None = None
    ) -> Package | None:
        if not range_:
            range_ = base_package.dependencies.get(name) or base_package.dev_dependencies.get(name)
        if range_ and not versions.is_valid_range(range_):
            logger.debug(f"[registry:lookup] {base_package.name} declares non-semver {name}@{range_}, using latest")
            range_ = None
        return self.lookup(name, range_)

    def find_package_with_url(self, url: str) -> Package | None:
        url = urls.normalize(url).rstrip("/")
        for package in self.all_packages():
            if package.url == url:
                return package
        return None

    def find_package_having_url(self, url: str) -> Package | None:
        """Registered package whose directory contains ``url``, innermost first."""
        url = urls.normalize(url)
        best: Package | None = None
        for package in self.all_packages():
            if urls.is_within(url, package.url) and (best is None or len(package.url) > len(best.url)):
                best = package
        return best

    def find_package_for_path(self, spec: str, parent_package: Package | None = None) -> Package | None:
        name, version, _ = split_specifier(spec)
        if parent_package is not None and version is None:
            return self.find_package_dependency(parent_package, name)
        return self.lookup(name, version)

    def resolve_path(self, spec: str, parent: str | Package | None = None) -> str | None:
        """Resolve a specifier to a url.

        Args:
            spec: Absolute url/path, relative path ("./x", "../y") or bare "name[@range]/rest"
            parent: Id of the importing module, or a package

        Returns:
            The resolved url, or None if no package matches a bare specifier
        """
        if urls.is_absolute(spec):
            return spec if urls.is_url(spec) else urls.from_path(spec)

        parent_package = parent if isinstance(parent, Package) else None
        if spec.startswith("."):
            if parent_package is not None:
                return urls.join(parent_package.url, spec)
            base = urls.dirname(parent) if parent else self.system.base_url
            return urls.join(base, spec)

        if parent_package is None and parent:
            parent_package = self.find_package_having_url(parent)

        name, version, remainder = split_specifier(spec)
        if parent_package is not None and version is None and name in parent_package.map:
            return urls.join(parent_package.normalize_inside(parent_package.map[name]), remainder)

        package = self.find_package_for_path(spec, parent_package)
        if package is None:
            return None
        return urls.join(package.url, remainder) if remainder else package.url

    # ========================================================================
    # Scanning
    # ========================================================================

    async def update(self) -> PackageRegistry:
        """Rescan every configured root directory.

        A call made while a scan is in flight waits for it, then scans again.
        """
        if self._updating is not None:
            await self._updating.wait()
            return await self.update()

        self._updating = asyncio.Event()
        try:
            resources = self.system.resources
            for base_dir in self.package_base_dirs:
                for name_dir in await resources.list_children(base_dir):
                    if not name_dir.is_directory:
                        continue
                    for version_dir in await resources.list_children(name_dir.url):
                        if version_dir.is_directory:
                            await self._internal_add_package_dir(version_dir.url)
            for package_dir in [*self.individual_package_dirs, *self.dev_package_dirs]:
                await self._internal_add_package_dir(package_dir)
            self._update_latest_packages()
        finally:
            updating, self._updating = self._updating, None
            updating.set()

        logger.info(f"[registry:update] {len(self.package_map)} packages, {len(self.all_packages())} versions")
        return self

    async def _internal_add_package_dir(self, directory: str, update_latest: bool = False) -> Package | None:
        descriptor_url = urls.join(directory, DESCRIPTOR_FILE)
        if not await self.system.resources.exists(descriptor_url):
            logger.debug(f"[registry:scan] no {DESCRIPTOR_FILE} in {directory}")
            return None
        try:
            config = PackageDescriptor.model_validate(json.loads(await self.system.resources.read(descriptor_url)))
        except (OSError, ValueError, ValidationError) as e:
            logger.warning(f"[registry:scan] skipping {directory}: {e}")
            return None

        package = self.system.get_package(directory)
        self.update_package_from_config(package, config, update_latest)
        return package

    # ========================================================================
    # Incremental mutation
    # ========================================================================

    def update_package_from_config(self, package: Package, config: PackageDescriptor, update_latest: bool = True) -> None:
        old_name, old_version = package._name, package.version
        package.apply_config(config)
        self.system.add_package(package)
        self.update_package(package, old_name, old_version, update_latest)

    def update_package(
        self,
        package: Package,
        old_name: str | None = None,
        old_version: str | None = None,
        update_latest: bool = True,
    ) -> None:
        """Index ``package`` under its current name and version.

        Drops a stale entry left by a previous name/version of the same package.
        """
        if old_name and (old_name != package.name or old_version != package.version):
            old_entry = self.package_map.get(old_name)
            if old_entry and old_entry.versions.get(old_version) is package:
                del old_entry.versions[old_version]
                if not old_entry.versions:
                    del self.package_map[old_name]
                elif update_latest:
                    self._update_latest_packages(old_name)

        if not self.covers_directory(package.url):
            self.individual_package_dirs.append(package.url)

        entry = self.package_map.setdefault(package.name, PackageVersions())
        entry.versions[package.version] = package
        if update_latest:
            self._update_latest_packages(package.name)
        self.system.mapping.clear_cache()

    async def add_package_dir(self, directory: str, is_dev: bool = False) -> Package | None:
        """Register the package in ``directory``.

        Returns:
            The package, or None if the directory has no descriptor
        """
        directory = self._dir_url(directory)
        known = self.covers_directory(directory)
        if known and known != "maybe collection":
            existing = self.find_package_with_url(directory)
            if existing is not None:
                return existing

        target = self.dev_package_dirs if is_dev else self.individual_package_dirs
        if directory not in target:
            target.append(directory)
        return await self._internal_add_package_dir(directory, update_latest=True)

    def remove_package(self, package: Package, update_latest: bool = True) -> None:
        """Drop ``package`` from the root sets and the version index."""
        self.individual_package_dirs = [d for d in self.individual_package_dirs if d != package.url]
        self.dev_package_dirs = [d for d in self.dev_package_dirs if d != package.url]
        self.system.mapping.clear_cache()

        entry = self.package_map.get(package.name)
        if entry is None:
            return
        if entry.versions.get(package.version) is package:
            del entry.versions[package.version]
        if not entry.versions:
            del self.package_map[package.name]
        elif update_latest:
            self._update_latest_packages(package.name)

    def covers_directory(self, directory: str) -> str | None:
        """Classify which root set, if any, ``directory`` belongs to."""
        directory = directory.rstrip("/")
        if directory in self.dev_package_dirs:
            return "dev"
        if directory in self.individual_package_dirs:
            return "individual"
        if urls.dirname(urls.dirname(directory)) in self.package_base_dirs:
            if self.find_package_with_url(directory) is not None:
                return "collection"
            return "maybe collection"
        return None

    def _update_latest_packages(self, name: str | None = None) -> None:
        names = [name] if name else list(self.package_map)
        for package_name in names:
            entry = self.package_map.get(package_name)
            if entry is None:
                continue
            ordered = versions.sort_versions(entry.versions)
            if ordered:
                entry.latest = ordered[-1]
            else:
                entry.latest = next(reversed(entry.versions), None)

    def to_dict(self) -> dict:
        return {
            "package_base_dirs": list(self.package_base_dirs),
            "individual_package_dirs": list(self.individual_package_dirs),
            "dev_package_dirs": list(self.dev_package_dirs),
            "packages": {
                name: {"latest": entry.latest, "versions": {str(v): p.url for v, p in entry.versions.items()}}
                for name, entry in self.package_map.items()
            },
        }


def split_specifier(spec: str) -> tuple[str, str | None, str]:
    """Split ``name[@range]/remainder``.

    >>> split_specifier("lib@^1.2/sub/mod")
    ('lib', '^1.2', 'sub/mod')
    """
    first, _, remainder = spec.partition("/")
    name, at, version = first.partition("@")
    if not name:
        # "@scope/name" style
        scope_name, _, remainder = remainder.partition("/")
        return f"@{version}/{scope_name}", None, remainder
    return name, version if at and version else None, remainder
