"""Packages: versioned, named collections of modules rooted at a url.

A package directory carries a ``package.json`` descriptor::

    {
      "name": "app", "version": "1.0.0", "main": "index",
      "dependencies": {"lib": "^1.0.0"},
      "livemodules": {
        "packageMap": {"helpers": "./vendor/helpers"},
        "hooks": [{"target": "fetch", "handler": "app_hooks:strip_bom"}],
        "meta": {"legacy.py": {"format": "script"}}
      }
    }
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import TYPE_CHECKING
from typing import Any

from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field
from pydantic import ValidationError

from livemodules import urls
from livemodules.errors import CycleNotice
from livemodules.events import PackageRegistered
from livemodules.events import PackageRemoved
from livemodules.exports import ExportTable
from livemodules.hooks import load_hook
from livemodules.settings import deep_merge
from livemodules.transform import ModuleFormat

if TYPE_CHECKING:
    from livemodules.module import Module
    from livemodules.system import ModuleSystem

logger = logging.getLogger(__name__)

DESCRIPTOR_FILE = "package.json"
DEFAULT_MAIN = "index.py"
MODULE_EXTENSION = ".py"


class HookDeclaration(BaseModel):
    target: str = Field(description="Hook target: fetch or translate")
    handler: str = Field(description="Import reference 'module:callable'")


class LiveModulesBlock(BaseModel):
    """Engine-specific part of a package descriptor."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    main: str | None = None
    package_map: dict[str, str] = Field(default_factory=dict, alias="packageMap")
    prefer_loaded_packages: bool = Field(default=True, alias="preferLoadedPackages")
    hooks: list[HookDeclaration] = Field(default_factory=list)
    bundles: dict[str, list[str]] = Field(default_factory=dict)
    meta: dict[str, dict[str, Any]] = Field(default_factory=dict)


class PackageDescriptor(BaseModel):
    """Parsed ``package.json``."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    name: str | None = None
    version: str | None = None
    main: str | None = None
    dependencies: dict[str, str] = Field(default_factory=dict)
    dev_dependencies: dict[str, str] = Field(default_factory=dict, alias="devDependencies")
    livemodules: LiveModulesBlock | None = None

    def to_json_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, exclude_defaults=True)

    def merged_with(self, other: PackageDescriptor | dict[str, Any]) -> PackageDescriptor:
        overlay = other.to_json_dict() if isinstance(other, PackageDescriptor) else other
        return PackageDescriptor.model_validate(deep_merge(self.to_json_dict(), overlay))


class Package:
    """One versioned package in a module system."""

    def __init__(self, system: ModuleSystem, url: str):
        self.system = system
        self.url = urls.normalize(url).rstrip("/")
        self._name: str | None = None
        self.version: str | None = None
        self.main: str = DEFAULT_MAIN
        self.dependencies: dict[str, str] = {}
        self.dev_dependencies: dict[str, str] = {}
        self.map: dict[str, str] = {}
        self.bundles: dict[str, list[str]] = {}
        self.meta: dict[str, dict[str, Any]] = {}
        self.config = PackageDescriptor()
        self._registering: asyncio.Event | None = None

    @property
    def name(self) -> str:
        return self._name or urls.basename(self.url)

    @property
    def is_registering(self) -> bool:
        return self._registering is not None

    def main_module_id(self) -> str:
        return urls.join(self.url, self.main)

    def modules(self) -> list[Module]:
        ids = self.system.mapping.get_module_ids_for_package_url(self.url)
        return [self.system.get_module(module_id) for module_id in ids]

    def normalize_inside(self, url_or_name: str) -> str:
        if urls.is_url(url_or_name) or url_or_name.startswith("/"):
            return urls.normalize(url_or_name)
        if url_or_name.startswith("."):
            return urls.join(self.url, url_or_name)
        return urls.join(self.system.base_url, url_or_name)

    def add_mapping(self, name: str, url: str) -> None:
        self.map[name] = url

    # -- configuration

    async def try_load_config(self) -> PackageDescriptor:
        """Read the package descriptor, falling back to ``{"name": <dir name>}``."""
        descriptor_url = urls.join(self.url, DESCRIPTOR_FILE)
        try:
            text = await self.system.resources.read(descriptor_url)
        except FileNotFoundError:
            logger.debug(f"[package:config] no {DESCRIPTOR_FILE} in {self.url}")
            return PackageDescriptor(name=urls.basename(self.url))
        try:
            return PackageDescriptor.model_validate(json.loads(text))
        except (ValueError, ValidationError) as e:
            logger.warning(f"[package:config] invalid {descriptor_url}: {e}")
            return PackageDescriptor(name=urls.basename(self.url))

    def apply_config(self, config: PackageDescriptor) -> list[str]:
        """Merge ``config`` into the effective metadata.

        Returns:
            Urls of the alias sub-packages the config declares
        """
        self.config = self.config.merged_with(config)
        effective = self.config
        block = effective.livemodules or LiveModulesBlock()

        self._name = effective.name or urls.basename(self.url)
        self.version = effective.version
        self.dependencies = dict(effective.dependencies)
        self.dev_dependencies = dict(effective.dev_dependencies)
        main = block.main or effective.main or DEFAULT_MAIN
        if not urls.has_extension(main):
            main += MODULE_EXTENSION
        self.main = main.removeprefix("./")
        self.bundles = dict(block.bundles)

        self._apply_hooks(block)
        self._apply_meta(block)
        return [self._subpackage_url(block, name) for name in block.package_map]

    def _apply_hooks(self, block: LiveModulesBlock) -> None:
        for declaration in block.hooks:
            if self.system.hooks.is_installed(declaration.target, declaration.handler.partition(":")[2]):
                continue
            try:
                hook = load_hook(declaration.handler)
                self.system.hooks.install(declaration.target, hook)
            except (ImportError, ValueError) as e:
                logger.warning(f"[package:hooks] {self.name}: cannot install {declaration.handler}: {e}")

    def _apply_meta(self, block: LiveModulesBlock) -> None:
        self.meta = dict(block.meta)
        for local_name, meta in block.meta.items():
            module = self.system.get_module(urls.join(self.url, local_name))
            if "format" in meta:
                module.set_format(ModuleFormat(meta["format"]))

    def _subpackage_url(self, block: LiveModulesBlock, name: str) -> str:
        target = block.package_map[name]
        if block.prefer_loaded_packages:
            existing = self.system.registry.lookup(name)
            if existing is not None and existing.url != self.url:
                self.add_mapping(name, existing.url)
                return existing.url
        url = self.normalize_inside(target)
        self.add_mapping(name, url)
        return url

    # -- lifecycle

    async def register(
        self, config: PackageDescriptor | dict[str, Any] | None = None, load_stack: list[str] | None = None
    ) -> PackageDescriptor:
        """Register this package and its alias sub-packages.

        Args:
            config: Explicit descriptor; read from ``package.json`` when None
            load_stack: Urls registered earlier in this call chain

        Returns:
            The effective descriptor
        """
        if self._registering is not None:
            if config is not None:
                logger.warning(
                    f"[package:register] {self.url} is already registering, ignoring the explicit config"
                )
            await self._registering.wait()
            return self.config

        if load_stack is None:
            load_stack = [self.url]
        self._registering = asyncio.Event()
        try:
            if config is None:
                config = await self.try_load_config()
            elif isinstance(config, dict):
                config = PackageDescriptor.model_validate(config)

            old_name, old_version = self._name, self.version
            sub_urls = self.apply_config(config)
            self.system.add_package(self)
            self.system.registry.update_package(self, old_name, old_version)
            logger.info(f"[package:register] {self.name}@{self.version or '-'} at {self.url}")

            for sub_url in sub_urls:
                sub_package = self.system.get_package(sub_url)
                if sub_package.url in load_stack:
                    notice = CycleNotice(sub_package.url, list(load_stack))
                    logger.info(str(notice), extra={"event": "cycle_notice"})
                    continue
                load_stack.append(sub_package.url)
                await sub_package.register(None, load_stack)
        finally:
            registering, self._registering = self._registering, None
            registering.set()

        self.system.events.publish(PackageRegistered(url=self.url))
        return self.config

    def remove(self, forget_environment: bool = True, forget_dependents: bool = False) -> None:
        """Unload this package's modules and drop it from its system."""
        for module in self.modules():
            module.unload(forget_dependents=forget_dependents, forget_environment=forget_environment)
        self.system.remove_package_from_store(self)
        self.system.registry.remove_package(self)
        self.config = PackageDescriptor()
        logger.info(f"[package:remove] {self.name} at {self.url}")
        self.system.events.publish(PackageRemoved(url=self.url))

    async def reload(self) -> PackageDescriptor:
        self.remove(forget_dependents=True)
        return await self.system.get_package(self.url).register()

    async def import_(self) -> ExportTable:
        """Register, load the main module and confirm it is loaded.

        Raises:
            LoadTimeoutError: If the main module is not reported as loaded
                within ``settings.load_timeout``
        """
        await self.register()
        main = self.system.get_module(self.main_module_id())
        exports = await main.load()
        await self.system.confirm_loaded(main)
        return exports

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "version": self.version,
            "url": self.url,
            "main": self.main,
            "dependencies": dict(self.dependencies),
            "devDependencies": dict(self.dev_dependencies),
            "map": dict(self.map),
        }

    def __repr__(self) -> str:
        return f"Package({self.name}@{self.version or '-'} {self.url})"

