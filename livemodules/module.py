"""Modules: live records and the per-id interface over them.

A :class:`ModuleRecord` is the live state of a loaded module: its export
table and its edges in the dependency graph. A :class:`Module` is the
memoized per-id interface used by tools; it exists before the module is
loaded and survives unloading.
"""

from __future__ import annotations

import ast
import logging
from collections.abc import Callable
from dataclasses import dataclass
from dataclasses import field
from typing import TYPE_CHECKING
from typing import Any

from livemodules import graph
from livemodules import urls
from livemodules.events import ModuleUnloaded
from livemodules.exports import ExportTable
from livemodules.mapping import UNGROUPED
from livemodules.transform import DEFINE_NAME
from livemodules.transform import ImportDeclaration
from livemodules.transform import ModuleFormat
from livemodules.transform import ModuleScope
from livemodules.transform import Setter
from livemodules.transform import analyze_scope
from livemodules.transform import detect_format
from livemodules.transform import parse_source

if TYPE_CHECKING:
    from livemodules.package import Package
    from livemodules.system import ModuleSystem

logger = logging.getLogger(__name__)

ToplevelObserver = Callable[[str, Any], None]


@dataclass(eq=False)
class ModuleRecord:
    """Live state of one loaded module.

    ``dependencies[i]`` is bound by ``setters[i]``; the two lists are only
    ever replaced together.
    """

    id: str
    exports: ExportTable
    format: ModuleFormat = ModuleFormat.DECLARATIVE
    dependencies: list[ModuleRecord] = field(default_factory=list)
    setters: list[Setter | None] = field(default_factory=list)
    importers: list[ModuleRecord] = field(default_factory=list)
    execute: Callable[[], None] | None = None
    locked: bool = False

    @property
    def is_instantiated(self) -> bool:
        return self.execute is not None

    def dependency_index(self, dependency_id: str) -> int:
        for index, dependency in enumerate(self.dependencies):
            if dependency.id == dependency_id:
                return index
        return -1

    def rewire(self, edges: list[tuple[ModuleRecord, Setter]]) -> None:
        """Install ``edges`` as dependency/setter slots.

        Slots are matched by dependency id; a matched slot gets the new
        record and setter, unmatched edges are appended, other slots stay.
        """
        dependencies = list(self.dependencies)
        setters = list(self.setters)
        for dependency, setter in edges:
            index = next((i for i, d in enumerate(dependencies) if d.id == dependency.id), -1)
            if index < 0:
                dependencies.append(dependency)
                setters.append(setter)
            else:
                dependencies[index] = dependency
                setters[index] = setter
        self.dependencies, self.setters = dependencies, setters

    def add_importer(self, importer: ModuleRecord) -> None:
        self.importers = [r for r in self.importers if r.id != importer.id]
        self.importers.append(importer)

    def __repr__(self) -> str:
        deps = ", ".join(d.id for d in self.dependencies)
        return f"ModuleRecord({self.id} -> [{deps}])"


class Module:
    """Interface to one module id in a :class:`ModuleSystem`."""

    def __init__(self, system: ModuleSystem, module_id: str):
        self.system = system
        self.id = module_id
        self.evaluation_depth = 0
        self.pending_export_changes: dict[str, Any] = {}
        self.definition_meta: dict[str, dict[str, Any]] = {}
        self._source: str | None = None
        self._ast: ast.Module | None = None
        self._scope: ModuleScope | None = None
        self._format: ModuleFormat | None = None
        self._recorder: dict[str, Any] | None = None
        self._observers: list[ToplevelObserver] = []
        self._defined_names: set[str] | None = None

    def __repr__(self) -> str:
        return f"Module({self.id})"

    # ------------------------------------------------------------------
    # Live state

    def record(self) -> ModuleRecord | None:
        return self.system.get_record(self.id)

    def is_loaded(self) -> bool:
        return self.record() is not None

    @property
    def evaluation_recorder(self) -> dict[str, Any]:
        """Top-level binding environment the body runs in."""
        if self._recorder is None:
            self._recorder = self.new_recorder()
        return self._recorder

    @evaluation_recorder.setter
    def evaluation_recorder(self, recorder: dict[str, Any]) -> None:
        self._recorder = recorder

    def new_recorder(self) -> dict[str, Any]:
        return {"__name__": self.short_name(), "__file__": self.id, "__livemodule__": self}

    def format(self) -> ModuleFormat:
        record = self.record()
        if record is not None:
            return record.format
        if self._format is not None:
            return self._format
        if self._source is not None:
            return detect_format(self._source)
        return ModuleFormat.DECLARATIVE

    def set_format(self, module_format: ModuleFormat) -> None:
        self._format = module_format

    @property
    def explicit_format(self) -> ModuleFormat | None:
        return self._format

    # ------------------------------------------------------------------
    # Cached source views

    async def source(self) -> str:
        if self._source is None:
            self._source = await self.system.fetch(self.id)
        return self._source

    def set_source(self, source: str) -> None:
        if self._source == source:
            return
        self.reset()
        self._source = source

    async def ast(self) -> ast.Module:
        if self._ast is None:
            self._ast = parse_source(await self.source(), self.id)
        return self._ast

    async def scope(self) -> ModuleScope:
        if self._scope is None:
            self._scope = analyze_scope(await self.ast(), self.id, self.system.registry.package_names())
        return self._scope

    async def imports(self) -> list[ImportDeclaration]:
        return (await self.scope()).imports

    async def exports(self) -> list[str]:
        """Names the source declares for export, without running it."""
        return (await self.scope()).public_names

    def reset(self) -> None:
        self._source = None
        self._ast = None
        self._scope = None

    # ------------------------------------------------------------------
    # Package

    def package(self) -> Package | None:
        url = self.system.mapping.get_package_url_for_module_id(self.id)
        if url == UNGROUPED:
            return None
        return self.system.get_package(url)

    def path_in_package(self) -> str:
        package = self.package()
        if package is None:
            return self.id
        return "./" + urls.relative_to(self.id, package.url)

    def short_name(self) -> str:
        package = self.package()
        if package is None:
            return urls.basename(self.id)
        return f"{package.name}/{urls.relative_to(self.id, package.url)}"

    # ------------------------------------------------------------------
    # Loading

    async def load(self) -> ExportTable:
        """Load the module once and return its export table."""
        return await self.system.propagator.load(self)

    def unload(self, forget_dependents: bool = True, forget_environment: bool = True, reset: bool = True) -> None:
        """Remove the module, and optionally everything importing it, from the live set."""
        if reset:
            self.reset()
        if forget_dependents:
            for module_id in self.dependents():
                if module_id != self.id:
                    self.system.get_module(module_id)._forget(forget_environment)
        self._forget(forget_environment)

    def _forget(self, forget_environment: bool) -> None:
        record = self.system.remove_record(self.id)
        self.pending_export_changes = {}
        self.evaluation_depth = 0
        if forget_environment:
            self._recorder = None
            self._observers = []
        if record is not None:
            for dependency in record.dependencies:
                dependency.importers = [r for r in dependency.importers if r.id != self.id]
            logger.debug(f"[module:unload] {self.id}")
            self.system.events.publish(ModuleUnloaded(id=self.id))

    async def reload(self, reload_dependents: bool = True, reset_environment: bool = True) -> ExportTable:
        dependents = [m for m in self.dependents() if m != self.id] if reload_dependents else []
        self.unload(forget_dependents=reload_dependents, forget_environment=reset_environment)
        exports = await self.load()
        for module_id in dependents:
            await self.system.get_module(module_id).load()
        return exports

    async def change_source(self, new_source: str, do_save: bool = True, do_eval: bool = True) -> ExportTable | None:
        return await self.system.propagator.change_source(self, new_source, do_save=do_save, do_eval=do_eval)

    # ------------------------------------------------------------------
    # Graph

    def dependents(self) -> list[str]:
        """Ids of every module importing this one, transitively, this one included."""
        return graph.hull(graph.invert(self.system.require_map()), self.id)

    def requirements(self) -> list[str]:
        """Ids of every module this one imports, transitively, this one included."""
        return graph.hull(self.system.require_map(), self.id)

    def direct_requirements(self) -> list[str]:
        record = self.record()
        return [dependency.id for dependency in record.dependencies] if record else []

    # ------------------------------------------------------------------
    # Bindings

    def define(self, name: str, value: Any, export_immediately: bool = True, meta: dict[str, Any] | None = None) -> Any:
        """Write barrier for top-level bindings.

        Records the value, schedules it as an export change and flushes
        unless the body of this module is still executing.
        """
        self.evaluation_recorder[name] = value
        if meta is not None:
            self.definition_meta[name] = meta
        if self._defined_names is not None:
            self._defined_names.add(name)
        self.system.propagator.schedule_export_change(self, name, value)
        self._notify_toplevel_observers(name, value)
        if export_immediately or self.evaluation_depth == 0:
            self.system.propagator.run_scheduled_export_changes(self)
        return value

    def undefine(self, name: str) -> None:
        self.evaluation_recorder.pop(name, None)
        self.definition_meta.pop(name, None)

    def evaluation_start(self) -> None:
        self.evaluation_depth += 1

    def evaluation_end(self) -> None:
        self.evaluation_depth = max(0, self.evaluation_depth - 1)
        self.system.propagator.run_scheduled_export_changes(self)

    def start_tracking_definitions(self) -> None:
        self._defined_names = set()

    def stop_tracking_definitions(self) -> set[str]:
        names, self._defined_names = self._defined_names or set(), None
        return names

    def subscribe_to_toplevel_changes(self, observer: ToplevelObserver) -> None:
        """Call ``observer(name, value)`` on every top-level definition."""
        if observer not in self._observers:
            self._observers.append(observer)

    def unsubscribe_from_toplevel_changes(self, observer: ToplevelObserver) -> bool:
        if observer in self._observers:
            self._observers.remove(observer)
            return True
        return False

    def _notify_toplevel_observers(self, name: str, value: Any) -> None:
        if name == DEFINE_NAME:
            return
        for observer in list(self._observers):
            try:
                observer(name, value)
            except Exception:
                logger.exception(f"Error in top-level observer of {self.id}")
