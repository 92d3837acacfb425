"""The module system: one self-contained environment of packages and modules.

Everything the engine keeps at runtime lives on a :class:`ModuleSystem`:
the package store and registry, the live module records, the memoized
module interfaces, hooks and the event bus. Separate systems share
nothing, so tests can create one per case::

    system = ModuleSystem(resources=MemoryResources(files), base_url="mem://pkgs")
    await system.registry.update()
    exports = await system.load("app")
"""

import asyncio
import logging
import time
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from livemodules import graph
from livemodules import urls
from livemodules.errors import LoadTimeoutError
from livemodules.errors import ResolutionError
from livemodules.events import EventBus
from livemodules.exports import ExportTable
from livemodules.hooks import HookChain
from livemodules.hot_reload import ExportPropagator
from livemodules.mapping import ModulePackageMapping
from livemodules.module import Module
from livemodules.module import ModuleRecord
from livemodules.package import MODULE_EXTENSION
from livemodules.package import Package
from livemodules.package import PackageDescriptor
from livemodules.registry import PackageRegistry
from livemodules.resources import FileResources
from livemodules.resources import Resources
from livemodules.settings import LiveModulesSettings
from livemodules.transform import PythonSourceTransformer
from livemodules.transform import SourceTransformer
from livemodules.transform import Translation

logger = logging.getLogger(__name__)

CONFIRM_POLL_INTERVAL = 0.01


class ModuleSystem:
    """Environment holding packages, live modules and their collaborators."""

    def __init__(
        self,
        resources: Resources | None = None,
        transformer: SourceTransformer | None = None,
        settings: LiveModulesSettings | None = None,
        base_url: str | None = None,
        events: EventBus | None = None,
    ):
        self.settings = settings or LiveModulesSettings()
        self.resources = resources or FileResources()
        self.transformer = transformer or PythonSourceTransformer()
        self.base_url = urls.from_path(base_url or self.settings.base_url or Path.cwd()).rstrip("/")
        self.events = events or EventBus()
        self.hooks = HookChain()

        self._packages: dict[str, Package] = {}
        self._package_interfaces: dict[str, Package] = {}
        self._records: dict[str, ModuleRecord] = {}
        self._modules: dict[str, Module] = {}

        self.registry = PackageRegistry(
            self,
            package_base_dirs=self.settings.package_base_dirs,
            individual_package_dirs=self.settings.individual_package_dirs,
            dev_package_dirs=self.settings.dev_package_dirs,
        )
        self.mapping = ModulePackageMapping(self)
        self.propagator = ExportPropagator(self)

    def __repr__(self) -> str:
        return f"ModuleSystem({self.base_url}, {len(self._records)} loaded, {len(self._packages)} packages)"

    # ========================================================================
    # Ids and resolution
    # ========================================================================

    def normalize_id(self, id_or_path: str) -> str:
        if urls.is_url(id_or_path):
            return urls.normalize(id_or_path)
        if id_or_path.startswith("/"):
            return urls.from_path(id_or_path)
        return urls.join(self.base_url, id_or_path)

    def resolve(self, specifier: str, parent_id: str | None = None) -> str:
        """Resolve an import specifier to a module id.

        Package urls resolve to the package's main module and ids without
        an extension get ``.py`` appended.

        Raises:
            ResolutionError: If no package or version satisfies ``specifier``
        """
        url = self.registry.resolve_path(specifier, parent_id)
        if url is None:
            raise ResolutionError(
                f"Cannot resolve {specifier!r}" + (f" from {parent_id}" if parent_id else ""),
                specifier=specifier,
                parent=parent_id,
            )
        url = self.normalize_id(url)
        package = self._packages.get(url.rstrip("/"))
        if package is not None:
            return package.main_module_id()
        if not urls.has_extension(url):
            url += MODULE_EXTENSION
        return url

    def get_module(self, module_id: str) -> Module:
        """Memoized module interface for an id (no resolution)."""
        module_id = self.normalize_id(module_id)
        module = self._modules.get(module_id)
        if module is None:
            module = self._modules[module_id] = Module(self, module_id)
        return module

    def module(self, specifier: str, parent_id: str | None = None) -> Module:
        return self.get_module(self.resolve(specifier, parent_id))

    async def fetch(self, module_id: str) -> str:
        return await self.hooks.run("fetch", self.resources.read, module_id)

    async def translate(self, source: str, module_id: str, options: Mapping[str, Any]) -> Translation:
        return await self.hooks.run("translate", self.transformer.translate, source, module_id, options)

    # ========================================================================
    # Live records
    # ========================================================================

    def get_record(self, module_id: str) -> ModuleRecord | None:
        return self._records.get(module_id)

    def add_record(self, record: ModuleRecord) -> None:
        self._records[record.id] = record

    def remove_record(self, module_id: str) -> ModuleRecord | None:
        return self._records.pop(module_id, None)

    def loaded_module_ids(self) -> list[str]:
        return list(self._records)

    def loaded_modules(self) -> list[Module]:
        return [self.get_module(module_id) for module_id in self._records]

    # ========================================================================
    # Package store
    # ========================================================================

    def get_package(self, url: str) -> Package:
        """Memoized package for ``url``; registering it adds it to the store."""
        url = self.normalize_id(url).rstrip("/")
        package = self._package_interfaces.get(url)
        if package is None:
            package = self._package_interfaces[url] = Package(self, url)
        return package

    def add_package(self, package: Package) -> None:
        self._packages[package.url] = package

    def remove_package_from_store(self, package: Package) -> None:
        self._packages.pop(package.url, None)
        self._package_interfaces.pop(package.url, None)

    def package_urls(self) -> list[str]:
        return list(self._packages)

    def packages(self) -> list[Package]:
        return list(self._packages.values())

    async def register_package(
        self, url: str, config: PackageDescriptor | dict[str, Any] | None = None
    ) -> Package:
        package = self.get_package(url)
        await package.register(config)
        return package

    async def import_package(self, url: str) -> ExportTable:
        return await self.get_package(url).import_()

    def remove_package(self, url: str) -> None:
        package = self._packages.get(self.normalize_id(url).rstrip("/"))
        if package is not None:
            package.remove()

    # ========================================================================
    # Module operations
    # ========================================================================

    async def load(self, specifier: str, parent_id: str | None = None) -> ExportTable:
        """Load a module and confirm it is live.

        Raises:
            ResolutionError: If ``specifier`` does not resolve
            LoadTimeoutError: If the module is not live within ``settings.load_timeout``
        """
        module = self.module(specifier, parent_id)
        exports = await module.load()
        await self.confirm_loaded(module)
        return exports

    def unload(self, specifier: str, forget_dependents: bool = True, forget_environment: bool = True) -> None:
        self.module(specifier).unload(forget_dependents=forget_dependents, forget_environment=forget_environment)

    async def reload(self, specifier: str, reload_dependents: bool = True) -> ExportTable:
        return await self.module(specifier).reload(reload_dependents=reload_dependents)

    async def change_source(
        self, specifier: str, new_source: str, do_save: bool = True, do_eval: bool = True
    ) -> ExportTable | None:
        return await self.module(specifier).change_source(new_source, do_save=do_save, do_eval=do_eval)

    async def confirm_loaded(self, module: Module) -> None:
        """Wait until ``module`` is live, bounded by ``settings.load_timeout``."""
        timeout = self.settings.load_timeout
        deadline = time.monotonic() + timeout
        while not module.is_loaded():
            if time.monotonic() >= deadline:
                raise LoadTimeoutError(module.id, timeout)
            await asyncio.sleep(CONFIRM_POLL_INTERVAL)

    # ========================================================================
    # Queries
    # ========================================================================

    def require_map(self) -> dict[str, list[str]]:
        """Module id to the ids of its dependencies, for every live module."""
        return {record.id: [d.id for d in record.dependencies] for record in self._records.values()}

    def dependents_of(self, specifier: str) -> list[str]:
        module_id = self.resolve(specifier)
        return [m for m in graph.hull(graph.invert(self.require_map()), module_id) if m != module_id]

    def requirements_of(self, specifier: str) -> list[str]:
        module_id = self.resolve(specifier)
        return [m for m in graph.hull(self.require_map(), module_id) if m != module_id]

    def list_packages(self) -> list[dict[str, Any]]:
        """Registered packages with their live modules and module dependencies."""
        require_map = self.require_map()
        result = []
        for package in sorted(self.packages(), key=lambda p: (p.name, p.version or "")):
            module_ids = self.mapping.get_module_ids_for_package_url(package.url)
            result.append(
                {
                    "name": package.name,
                    "version": package.version,
                    "url": package.url,
                    "modules": [{"id": m, "deps": list(require_map.get(m, []))} for m in sorted(module_ids)],
                }
            )
        return result
