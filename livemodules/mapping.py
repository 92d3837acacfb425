"""Cache from module id to the url of the package that owns it."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import TYPE_CHECKING

from livemodules import urls
from livemodules.events import ModuleEvent

if TYPE_CHECKING:
    from livemodules.system import ModuleSystem

logger = logging.getLogger(__name__)

UNGROUPED = "ungrouped"


def owning_package_url(module_id: str, package_urls: Iterable[str]) -> str:
    """Longest package url containing ``module_id``, or :data:`UNGROUPED`."""
    best = None
    for url in package_urls:
        if urls.is_within(module_id, url) and (best is None or len(url) > len(best)):
            best = url
    return best or UNGROUPED


class ModulePackageMapping:
    """Module id to package url index, kept current through the system's events.

    Package registration or removal clears the whole cache; module loads
    and unloads touch a single entry.
    """

    def __init__(self, system: ModuleSystem):
        self.system = system
        self._module_to_package: dict[str, str] | None = None
        self._package_to_modules: dict[str, list[str]] | None = None
        system.events.subscribe(self._on_module_loaded, "module-loaded")
        system.events.subscribe(self._on_module_unloaded, "module-unloaded")
        system.events.subscribe(self._on_packages_changed, "package-registered")
        system.events.subscribe(self._on_packages_changed, "package-removed")

    def _on_module_loaded(self, event: ModuleEvent) -> None:
        if self._module_to_package is not None:
            self.add_module_id_to_cache(event.id)

    def _on_module_unloaded(self, event: ModuleEvent) -> None:
        if self._module_to_package is not None:
            self.remove_module_from_cache(event.id)

    def _on_packages_changed(self, event: ModuleEvent) -> None:
        self.clear_cache()

    def clear_cache(self) -> None:
        self._module_to_package = None
        self._package_to_modules = None

    def _ensure_cache(self) -> tuple[dict[str, str], dict[str, list[str]]]:
        if self._module_to_package is None or self._package_to_modules is None:
            package_urls = self.system.package_urls()
            module_to_package: dict[str, str] = {}
            package_to_modules: dict[str, list[str]] = {url: [] for url in package_urls}
            package_to_modules[UNGROUPED] = []
            for module_id in self.system.loaded_module_ids():
                url = owning_package_url(module_id, package_urls)
                module_to_package[module_id] = url
                package_to_modules[url].append(module_id)
            self._module_to_package = module_to_package
            self._package_to_modules = package_to_modules
            logger.debug(f"[mapping:rebuild] {len(module_to_package)} modules in {len(package_urls)} packages")
        return self._module_to_package, self._package_to_modules

    def add_module_id_to_cache(self, module_id: str) -> str:
        module_to_package, package_to_modules = self._ensure_cache()
        if module_id in module_to_package:
            return module_to_package[module_id]
        url = owning_package_url(module_id, self.system.package_urls())
        module_to_package[module_id] = url
        package_to_modules.setdefault(url, []).append(module_id)
        return url

    def remove_module_from_cache(self, module_id: str) -> None:
        module_to_package, package_to_modules = self._ensure_cache()
        url = module_to_package.pop(module_id, None)
        if url is None:
            return
        ids = package_to_modules.get(url, [])
        if module_id in ids:
            ids.remove(module_id)

    def get_package_url_for_module_id(self, module_id: str) -> str:
        module_to_package, _ = self._ensure_cache()
        url = module_to_package.get(module_id)
        if url is None:
            # Modules that are not loaded are classified without caching
            url = owning_package_url(module_id, self.system.package_urls())
        return url

    def get_module_ids_for_package_url(self, package_url: str) -> list[str]:
        _, package_to_modules = self._ensure_cache()
        return list(package_to_modules.get(package_url.rstrip("/"), []))
