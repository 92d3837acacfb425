"""Loading and hot-reloading of modules.

Every load and every source change runs the same phases::

    translate -> declare -> resolve dependencies -> wire -> execute -> propagate

Nothing in the live graph changes before wiring, so a translation,
declaration or resolution failure leaves the previous state intact. From
wiring on, the new edges stay even if executing the body fails.

Propagation is synchronous and depth-first. When an export of a module
changes, every importer that is not locked and not executing gets its
setter for that module called with the full export table. An importer
reached along two paths (a diamond) is updated twice.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable
from collections.abc import Collection
from collections.abc import Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING
from typing import Any

from livemodules.errors import ExecutionError
from livemodules.errors import LiveModulesError
from livemodules.errors import ResolutionError
from livemodules.events import ModuleChanged
from livemodules.events import ModuleLoaded
from livemodules.exports import ExportTable
from livemodules.module import ModuleRecord
from livemodules.transform import DEFINE_NAME
from livemodules.transform import DeclaredModule
from livemodules.transform import ModuleFormat
from livemodules.transform import Translation

if TYPE_CHECKING:
    from livemodules.module import Module
    from livemodules.system import ModuleSystem

logger = logging.getLogger(__name__)


@dataclass
class PreparedModule:
    """Result of the phases that run before wiring."""

    translation: Translation
    declared: DeclaredModule
    dependencies: list[tuple[Module, ExportTable]]
    recorder: dict[str, Any]


class _PendingLoad:
    def __init__(self) -> None:
        self.done = asyncio.Event()
        self.exports: ExportTable | None = None
        self.error: BaseException | None = None


class ExportPropagator:
    """Runs the load/change protocol for the modules of one system."""

    def __init__(self, system: ModuleSystem):
        self.system = system
        self._loading: dict[str, _PendingLoad] = {}
        self._detached: dict[str, ModuleRecord] = {}

    # ========================================================================
    # Loading
    # ========================================================================

    async def load(self, module: Module, load_stack: tuple[str, ...] = ()) -> ExportTable:
        """Load ``module`` unless it is already live; return its export table.

        Concurrent loads of the same module share one run.
        """
        record = module.record()
        if record is not None and record.is_instantiated:
            return record.exports

        pending = self._loading.get(module.id)
        if pending is not None:
            await pending.done.wait()
            if pending.error is not None:
                raise pending.error
            return pending.exports

        return await self._run_pending(module, self._instantiate(module, (*load_stack, module.id)))

    async def _run_pending(self, module: Module, run: Awaitable[ExportTable]) -> ExportTable:
        """Await ``run`` as the in-flight load of ``module``."""
        pending = _PendingLoad()
        self._loading[module.id] = pending
        try:
            pending.exports = await run
            return pending.exports
        except BaseException as e:
            pending.error = e
            raise
        finally:
            del self._loading[module.id]
            pending.done.set()

    async def _instantiate(self, module: Module, load_stack: tuple[str, ...]) -> ExportTable:
        logger.debug(f"[module:load] {module.id}")
        try:
            source = await module.source()
        except FileNotFoundError as e:
            raise ResolutionError(f"Module {module.id} not found", specifier=module.id) from e

        try:
            prepared = await self._prepare(module, source, load_stack)
        except BaseException:
            self._discard_placeholder(module)
            raise
        record = self._wire(module, prepared)
        self._execute_first(module, record, prepared)
        self.system.events.publish(ModuleLoaded(id=module.id))
        return record.exports

    def _discard_placeholder(self, module: Module) -> None:
        """Take a cycle placeholder out of the live graph after a failed load.

        Importers already wired to it keep the record object; the next load
        of ``module`` reuses it so they stay connected.
        """
        record = module.record()
        if record is not None and not record.is_instantiated:
            self.system.remove_record(module.id)
            self._detached[module.id] = record

    async def _load_dependency(self, dependency: Module, load_stack: tuple[str, ...]) -> ExportTable:
        if dependency.id in load_stack:
            # Module cycle: bind to the table that fills in once it executes
            logger.debug(f"[module:load] cycle {' -> '.join(load_stack)} -> {dependency.id}")
            return self._ensure_record(dependency).exports
        return await self.load(dependency, load_stack)

    def _ensure_record(self, module: Module) -> ModuleRecord:
        record = module.record()
        if record is None:
            record = self._detached.pop(module.id, None)
            if record is None:
                record = ModuleRecord(module.id, ExportTable(module.id), module.format())
            self.system.add_record(record)
        return record

    # ========================================================================
    # Source changes
    # ========================================================================

    async def change_source(
        self, module: Module, new_source: str, do_save: bool = True, do_eval: bool = True
    ) -> ExportTable | None:
        """Replace the source of ``module`` and propagate its new exports.

        Args:
            module: Module to change
            new_source: New source text
            do_save: Persist the source through the system's resources
            do_eval: Run the new source; when False only cache and persist it

        Returns:
            The module's export table, or None when ``do_eval`` is False

        Raises:
            ResolutionError, TranslationError, DeclarationError: Nothing was changed
            ExecutionError: The new wiring stays, exports may be partial
        """
        logger.debug(f"[module:change] {module.id} ({len(new_source)} chars, save={do_save}, eval={do_eval})")
        try:
            if not do_eval:
                if do_save:
                    await self.system.resources.write(module.id, new_source)
                module.set_source(new_source)
                exports = None
            else:
                exports = await self._change_and_run(module, new_source, do_save)
        except Exception as e:
            self.system.events.publish(ModuleChanged(id=module.id, new_source=new_source, error=str(e)))
            raise
        self.system.events.publish(ModuleChanged(id=module.id, new_source=new_source))
        return exports

    async def _change_and_run(self, module: Module, new_source: str, do_save: bool) -> ExportTable:
        pending = self._loading.get(module.id)
        if pending is not None:
            # The change applies on top of the in-flight load, whatever its outcome
            await pending.done.wait()

        record = module.record()
        if record is not None and record.is_instantiated:
            return await self._apply_change(module, new_source, do_save, first_load=False)
        return await self._run_pending(module, self._apply_change(module, new_source, do_save, first_load=True))

    async def _apply_change(self, module: Module, new_source: str, do_save: bool, first_load: bool) -> ExportTable:
        try:
            prepared = await self._prepare(module, new_source, (module.id,))
        except BaseException:
            if first_load:
                self._discard_placeholder(module)
            raise
        if do_save:
            await self.system.resources.write(module.id, new_source)
        record = self._wire(module, prepared)
        module.set_source(new_source)
        if first_load:
            self._execute_first(module, record, prepared)
            self.system.events.publish(ModuleLoaded(id=module.id))
        else:
            self._execute(module, record, prepared)
        return record.exports

    # ========================================================================
    # Phases
    # ========================================================================

    async def _prepare(self, module: Module, source: str, load_stack: tuple[str, ...]) -> PreparedModule:
        """Translate, declare and resolve dependencies without touching the live graph."""
        options: dict[str, Any] = {"package_names": self.system.registry.package_names()}
        if module.explicit_format is not None:
            options["format"] = module.explicit_format
        translation = await self.system.translate(source, module.id, options)

        if translation.format is ModuleFormat.SCRIPT:
            recorder = module.new_recorder()
        else:
            recorder = module.evaluation_recorder
        declared = self.system.transformer.declare(translation, recorder, module.define)

        dependencies: list[tuple[Module, ExportTable]] = []
        for specifier in translation.specifiers:
            dependency_id = self.system.resolve(specifier, module.id)
            dependency = self.system.get_module(dependency_id)
            dependencies.append((dependency, await self._load_dependency(dependency, load_stack)))
        return PreparedModule(translation, declared, dependencies, recorder)

    def _wire(self, module: Module, prepared: PreparedModule) -> ModuleRecord:
        record = self._ensure_record(module)
        record.format = prepared.translation.format
        edges = []
        for (dependency, _), setter in zip(prepared.dependencies, prepared.declared.setters, strict=True):
            dependency_record = dependency.record()
            if dependency_record is None:
                # Unloaded while this module was resolving
                dependency_record = self._ensure_record(dependency)
            edges.append((dependency_record, setter))
            dependency_record.add_importer(record)
        record.rewire(edges)
        record.execute = prepared.declared.execute
        logger.debug(f"[module:wire] {module.id} -> [{', '.join(d.id for d in record.dependencies)}]")
        return record

    def _execute(self, module: Module, record: ModuleRecord, prepared: PreparedModule) -> None:
        if prepared.translation.format is ModuleFormat.SCRIPT:
            self._execute_script(module, record, prepared.recorder)
            return

        module.start_tracking_definitions()
        module.evaluation_start()
        try:
            for (_, exports), setter in zip(prepared.dependencies, prepared.declared.setters, strict=True):
                setter(exports)
            record.execute()
        except LiveModulesError:
            raise
        except Exception as e:
            raise ExecutionError(module.id, e) from e
        finally:
            defined = module.stop_tracking_definitions()
            module.evaluation_end()

        stale = [name for name in record.exports if name not in defined]
        if stale:
            self.update_module_exports(module, {}, removed=stale)

    def _execute_first(self, module: Module, record: ModuleRecord, prepared: PreparedModule) -> None:
        self._execute(module, record, prepared)
        if record.importers and record.exports:
            # Importers of a cycle placeholder were bound before these names existed
            self._notify_importers(record, list(record.exports))

    def _execute_script(self, module: Module, record: ModuleRecord, namespace: dict[str, Any]) -> None:
        module.evaluation_recorder = namespace
        module.evaluation_start()
        try:
            record.execute()
        except LiveModulesError:
            raise
        except Exception as e:
            raise ExecutionError(module.id, e) from e
        finally:
            module.evaluation_end()
        exports = ExportTable(
            module.id,
            {k: v for k, v in namespace.items() if not k.startswith("_") and k != DEFINE_NAME},
        )
        exports.seal()
        record.exports = exports

    # ========================================================================
    # Export changes
    # ========================================================================

    def schedule_export_change(self, module: Module, name: str, value: Any) -> None:
        module.pending_export_changes[name] = value

    def run_scheduled_export_changes(self, module: Module) -> None:
        """Flush pending export changes unless the module's record is locked."""
        record = module.record()
        if record is None or record.locked or not module.pending_export_changes:
            return
        if record.format is ModuleFormat.SCRIPT:
            module.pending_export_changes = {}
            return
        changes, module.pending_export_changes = module.pending_export_changes, {}
        self.update_module_exports(module, changes)

    def update_module_exports(
        self, module: Module, changes: Mapping[str, Any], removed: Collection[str] = ()
    ) -> None:
        """Apply ``changes`` and ``removed`` to the export table and notify importers."""
        record = module.record()
        if record is None:
            return

        record.locked = True
        try:
            changed: list[str] = []
            added: dict[str, Any] = {}
            for name, value in changes.items():
                if name in record.exports:
                    if record.exports[name] is value:
                        continue
                    record.exports.set_if_exists(name, value)
                    changed.append(name)
                else:
                    added[name] = value
            for name in removed:
                if record.exports.remove(name):
                    changed.append(name)
            if added:
                self._add_exports(record, added)
            if changed:
                self._notify_importers(record, changed)
        finally:
            record.locked = False

        if module.pending_export_changes:
            self.run_scheduled_export_changes(module)

    def _add_exports(self, record: ModuleRecord, added: Mapping[str, Any]) -> None:
        if record.exports.sealed:
            logger.warning(
                f"[module:propagate] exports of {record.id} are sealed, installing a new table for "
                f"{', '.join(added)}; importers see the new names after reloading"
            )
            replacement = ExportTable(record.id, {**record.exports, **added})
            replacement.seal()
            record.exports = replacement
            return
        for name, value in added.items():
            record.exports.define_new(name, value)

    def _notify_importers(self, record: ModuleRecord, names: list[str]) -> None:
        for importer in list(record.importers):
            if importer.locked:
                continue
            importer_module = self.system.get_module(importer.id)
            if importer_module.record() is not importer or importer_module.evaluation_depth > 0:
                continue
            index = importer.dependency_index(record.id)
            if index < 0 or importer.setters[index] is None:
                continue
            logger.debug(f"[module:propagate] {record.id} -> {importer.id}: {', '.join(names)}")
            importer_module.evaluation_start()
            try:
                importer.setters[index](record.exports)
            finally:
                importer_module.evaluation_end()
