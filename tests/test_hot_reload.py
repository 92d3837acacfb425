"""Tests for loading and hot-reloading modules."""

import asyncio
import logging

import pytest

from livemodules.errors import ExecutionError
from livemodules.errors import ExportError
from livemodules.errors import ResolutionError
from livemodules.errors import TranslationError
from livemodules.events import ModuleChanged
from livemodules.events import ModuleLoaded
from livemodules.resources import MemoryResources
from livemodules.settings import LiveModulesSettings
from livemodules.system import ModuleSystem

BASE_URL = "mem://pkgs"


def mid(name):
    return f"{BASE_URL}/{name}.py"


@pytest.fixture
def system(make_system):
    return make_system()


class TestLoad:
    """Test first loads."""

    @pytest.mark.asyncio
    async def test_load_binds_imports(self, system, write_modules):
        """Test a module sees the exports of its dependencies."""
        write_modules(
            c="x = 1\n",
            b="from .c import x\ndef current():\n    return x\n",
        )

        exports = await system.load(mid("b"))

        assert exports["x"] == 1
        assert exports.current() == 1
        assert system.require_map() == {mid("c"): [], mid("b"): [mid("c")]}

    @pytest.mark.asyncio
    async def test_load_is_idempotent(self, system, write_modules, runs):
        """Test a loaded module is not executed again."""
        write_modules(a="ran = True\n")
        runs_a = runs(system.get_module(mid("a")))

        first = await system.load(mid("a"))
        second = await system.load(mid("a"))

        assert first is second
        assert len(runs_a) == 1

    @pytest.mark.asyncio
    async def test_missing_module(self, system, write_modules):
        """Test a missing dependency fails resolution and leaves nothing behind."""
        write_modules(a="from .missing import z\n")

        with pytest.raises(ResolutionError, match="not found"):
            await system.load(mid("a"))

        assert system.loaded_module_ids() == []

    @pytest.mark.asyncio
    async def test_module_cycle(self, system, write_modules):
        """Test cyclic modules load, and later changes reach both sides."""
        write_modules(
            a="from .b import bval\naval = 1\ndef read_b():\n    return bval\n",
            b="from .a import aval\nbval = 2\ndef read_a():\n    return aval\n",
        )

        exports = await system.load(mid("a"))
        b = system.get_module(mid("b"))
        assert b.evaluation_recorder["aval"] == 1
        assert exports.read_b() == 2
        assert system.get_record(mid("b")).exports.read_a() == 1

        await system.change_source(mid("a"), "from .b import bval\naval = 5\n", do_save=False)

        assert b.evaluation_recorder["aval"] == 5

    @pytest.mark.asyncio
    async def test_failed_change_of_unloaded_cycle_member(self, system, resources, write_modules):
        """Test a failed first change leaves no placeholder behind, and a later load reconnects."""
        write_modules(
            a="from .b import y\nx = 1\n",
            b="from .a import x\ny = 2\n",
        )
        a = system.get_module(mid("a"))

        with pytest.raises(ResolutionError):
            await system.change_source(
                mid("a"), "from .b import y\nfrom .nothere import z\nx = 3\n", do_save=False
            )

        assert not a.is_loaded()
        assert mid("a") not in system.require_map()
        assert system.get_module(mid("b")).is_loaded()
        assert resources.files[mid("a")] == "from .b import y\nx = 1\n"

        await system.load(mid("a"))

        assert system.get_module(mid("b")).evaluation_recorder["x"] == 1
        assert system.require_map()[mid("a")] == [mid("b")]

    @pytest.mark.asyncio
    async def test_change_during_first_load_shares_the_run(self):
        """Test a load started while a change loads the module waits for that run."""

        class SlowResources(MemoryResources):
            async def read(self, url):
                await asyncio.sleep(0)
                return await super().read(url)

        resources = SlowResources(
            {mid("lib"): "x = 1\n", mid("m"): "from .lib import x\nran = 1\n"}
        )
        system = ModuleSystem(resources=resources, settings=LiveModulesSettings(), base_url=BASE_URL)
        ran = []
        system.get_module(mid("m")).subscribe_to_toplevel_changes(
            lambda name, value: ran.append(value) if name == "ran" else None
        )

        changed, loaded = await asyncio.gather(
            system.change_source(mid("m"), "from .lib import x\nran = 2\n", do_save=False),
            system.load(mid("m")),
        )

        assert ran == [2]
        assert changed is loaded
        assert system.get_record(mid("lib")).importers == [system.get_record(mid("m"))]

    @pytest.mark.asyncio
    async def test_failed_first_execution_stays_loaded(self, system, write_modules):
        """Test a body that raises leaves the module loaded with partial exports."""
        write_modules(a="v = 1\nraise RuntimeError('boom')\n")

        with pytest.raises(ExecutionError) as exc_info:
            await system.load(mid("a"))

        assert isinstance(exc_info.value.cause, RuntimeError)
        assert system.get_module(mid("a")).is_loaded()
        assert system.get_record(mid("a")).exports.to_dict() == {"v": 1}

    @pytest.mark.asyncio
    async def test_loaded_event(self, system, write_modules):
        """Test one module-loaded event per module."""
        write_modules(c="x = 1\n", b="from .c import x\n")
        events = []
        system.events.subscribe(events.append, "module-loaded")

        await system.load(mid("b"))

        assert events == [ModuleLoaded(id=mid("c")), ModuleLoaded(id=mid("b"))]


class TestPropagation:
    """Test export changes flowing to importers."""

    @pytest.mark.asyncio
    async def test_chain(self, system, write_modules, runs):
        """Test a change travels through re-exporting modules without rerunning them."""
        write_modules(
            c="x = 1\n",
            b="from .c import x\nran = True\n",
            a="from .b import x\nran = True\n",
        )
        runs_a = runs(system.get_module(mid("a")))
        runs_b = runs(system.get_module(mid("b")))
        await system.load(mid("a"))

        await system.change_source(mid("c"), "x = 2\n")

        assert system.get_record(mid("a")).exports["x"] == 2
        assert system.get_module(mid("a")).evaluation_recorder["x"] == 2
        assert len(runs_a) == 1
        assert len(runs_b) == 1

    @pytest.mark.asyncio
    async def test_functions_see_live_values(self, system, write_modules):
        """Test functions of an importer read the updated binding."""
        write_modules(c="x = 1\n", b="from .c import x\ndef current():\n    return x\n")
        exports = await system.load(mid("b"))

        await system.change_source(mid("c"), "x = 3\n")

        assert exports.current() == 3

    @pytest.mark.asyncio
    async def test_diamond_updates_once_per_edge(self, system, write_modules):
        """Test an importer reached along two paths gets one update per path."""
        write_modules(
            d="x = 1\n",
            b="from .d import x\n",
            c="from .d import x\n",
            a="from .b import x as bx\nfrom .c import x as cx\n",
        )
        a = system.get_module(mid("a"))
        await system.load(mid("a"))
        updates = []
        a.subscribe_to_toplevel_changes(lambda name, value: updates.append((name, value)))

        await system.change_source(mid("d"), "x = 2\n")

        assert updates == [("bx", 2), ("cx", 2)]

    @pytest.mark.asyncio
    async def test_unchanged_values_do_not_propagate(self, system, write_modules):
        """Test identical values are not pushed to importers."""
        write_modules(c="x = 1\n", b="from .c import x\n")
        b = system.get_module(mid("b"))
        await system.load(mid("b"))
        updates = []
        b.subscribe_to_toplevel_changes(lambda name, value: updates.append(name))

        await system.change_source(mid("c"), "# same value\nx = 1\n")

        assert updates == []

    @pytest.mark.asyncio
    async def test_exports_match_new_source(self, system, write_modules, caplog):
        """Test names the new source no longer defines are removed."""
        write_modules(m="a = 1\nb = 2\n", user="from .m import b\n")
        await system.load(mid("user"))

        with caplog.at_level(logging.WARNING):
            exports = await system.change_source(mid("m"), "a = 1\nc = 3\n")

        assert sorted(exports) == ["a", "c"]
        assert "b" not in system.get_module(mid("user")).evaluation_recorder
        assert "has no export 'b'" in caplog.text

    @pytest.mark.asyncio
    async def test_new_dependency_is_wired(self, system, write_modules):
        """Test a change that adds an import loads and wires the dependency."""
        write_modules(a="x = 1\n", extra="y = 7\n")
        await system.load(mid("a"))

        exports = await system.change_source(mid("a"), "from .extra import y\nx = y\n")

        assert exports["x"] == 7
        assert system.require_map()[mid("a")] == [mid("extra")]
        assert system.get_module(mid("extra")).dependents() == [mid("extra"), mid("a")]

    @pytest.mark.asyncio
    async def test_change_unloaded_module_loads_it(self, system, write_modules):
        """Test changing a module that is not loaded runs it."""
        write_modules(a="x = 1\n")
        events = []
        system.events.subscribe(events.append, "module-loaded")

        exports = await system.change_source(mid("a"), "x = 2\n")

        assert exports["x"] == 2
        assert events == [ModuleLoaded(id=mid("a"))]


class TestFailures:
    """Test failed changes."""

    @pytest.mark.asyncio
    async def test_translation_failure_changes_nothing(self, system, resources, write_modules):
        """Test a syntax error leaves exports, wiring and stored source untouched."""
        write_modules(c="x = 1\n", b="from .c import x\n")
        await system.load(mid("b"))
        before = system.require_map()

        with pytest.raises(TranslationError):
            await system.change_source(mid("c"), "x = (\n")

        assert system.get_record(mid("c")).exports["x"] == 1
        assert system.require_map() == before
        assert resources.files[mid("c")] == "x = 1\n"
        assert await system.get_module(mid("c")).source() == "x = 1\n"

    @pytest.mark.asyncio
    async def test_resolution_failure_changes_nothing(self, system, resources, write_modules):
        """Test an unresolvable import leaves the module as it was."""
        write_modules(a="x = 1\n")
        await system.load(mid("a"))

        with pytest.raises(ResolutionError):
            await system.change_source(mid("a"), "from .missing import z\nx = 2\n")

        assert system.get_record(mid("a")).exports["x"] == 1
        assert system.loaded_module_ids() == [mid("a")]
        assert resources.files[mid("a")] == "x = 1\n"

    @pytest.mark.asyncio
    async def test_execution_failure_keeps_partial_exports(self, system, write_modules):
        """Test values defined before the error are exported and propagated."""
        write_modules(m="v = 1\n", user="from .m import v\n")
        await system.load(mid("user"))

        with pytest.raises(ExecutionError, match="RuntimeError: boom"):
            await system.change_source(mid("m"), "v = 5\nraise RuntimeError('boom')\n")

        assert system.get_record(mid("m")).exports["v"] == 5
        assert system.get_module(mid("user")).evaluation_recorder["v"] == 5

    @pytest.mark.asyncio
    async def test_changed_event_once(self, system, write_modules):
        """Test each change publishes exactly one module-changed event."""
        write_modules(a="x = 1\n")
        await system.load(mid("a"))
        events = []
        system.events.subscribe(events.append, "module-changed")

        await system.change_source(mid("a"), "x = 2\n")
        with pytest.raises(TranslationError):
            await system.change_source(mid("a"), "x = (\n")

        assert events[0] == ModuleChanged(id=mid("a"), new_source="x = 2\n")
        assert events[1].error.startswith("Cannot translate")
        assert len(events) == 2


class TestChangeOptions:
    """Test save and eval flags."""

    @pytest.mark.asyncio
    async def test_save(self, system, resources, write_modules):
        """Test the new source is written through resources."""
        write_modules(a="x = 1\n")
        await system.load(mid("a"))

        await system.change_source(mid("a"), "x = 2\n")

        assert resources.files[mid("a")] == "x = 2\n"

    @pytest.mark.asyncio
    async def test_no_save(self, system, resources, write_modules):
        """Test do_save=False only changes the live module."""
        write_modules(a="x = 1\n")
        await system.load(mid("a"))

        await system.change_source(mid("a"), "x = 2\n", do_save=False)

        assert resources.files[mid("a")] == "x = 1\n"
        assert system.get_record(mid("a")).exports["x"] == 2

    @pytest.mark.asyncio
    async def test_no_eval(self, system, resources, write_modules):
        """Test do_eval=False stores the source without running it."""
        write_modules(a="x = 1\n")
        await system.load(mid("a"))
        events = []
        system.events.subscribe(events.append, "module-changed")

        result = await system.change_source(mid("a"), "x = 2\n", do_eval=False)

        assert result is None
        assert system.get_record(mid("a")).exports["x"] == 1
        assert resources.files[mid("a")] == "x = 2\n"
        assert await system.get_module(mid("a")).source() == "x = 2\n"
        assert len(events) == 1


class TestScriptModules:
    """Test modules in script format."""

    @pytest.mark.asyncio
    async def test_script_exports_are_sealed(self, system, write_modules):
        """Test public names become a sealed, read-only table."""
        write_modules(s="# format: script\nx = 1\n_hidden = 2\n")

        exports = await system.load(mid("s"))

        assert exports.to_dict() == {"x": 1}
        assert exports.sealed
        with pytest.raises(ExportError):
            exports["x"] = 2

    @pytest.mark.asyncio
    async def test_script_changes_are_not_propagated(self, system, write_modules):
        """Test importers keep the old value after a script changes."""
        write_modules(s="# format: script\nx = 1\n", user="from .s import x\n")
        await system.load(mid("user"))

        exports = await system.change_source(mid("s"), "# format: script\nx = 5\n")

        assert exports["x"] == 5
        assert system.get_module(mid("user")).evaluation_recorder["x"] == 1


class TestReadOnlyExports:
    """Test export tables seen by importers."""

    @pytest.mark.asyncio
    async def test_outside_write(self, system, write_modules):
        """Test importers cannot assign into an export table."""
        write_modules(a="x = 1\n")
        exports = await system.load(mid("a"))

        with pytest.raises(ExportError, match="cannot be changed from the outside"):
            exports["x"] = 2


class TestLocking:
    """Test export changes against locked records."""

    @pytest.mark.asyncio
    async def test_changes_to_locked_module_are_queued(self, system, write_modules):
        """Test a locked module keeps its table and flushes the queued change once unlocked."""
        write_modules(a="x = 1\n", user="from .a import x\n")
        await system.load(mid("user"))
        a = system.get_module(mid("a"))
        record = system.get_record(mid("a"))

        record.locked = True
        a.define("x", 2)

        assert record.exports["x"] == 1
        assert a.pending_export_changes == {"x": 2}
        assert system.get_module(mid("user")).evaluation_recorder["x"] == 1

        record.locked = False
        system.propagator.run_scheduled_export_changes(a)

        assert record.exports["x"] == 2
        assert a.pending_export_changes == {}
        assert system.get_module(mid("user")).evaluation_recorder["x"] == 2

    @pytest.mark.asyncio
    async def test_locked_importer_is_skipped(self, system, write_modules):
        """Test importers with a locked record are not rebound."""
        write_modules(a="x = 1\n", user="from .a import x\n")
        await system.load(mid("user"))
        system.get_record(mid("user")).locked = True

        exports = await system.change_source(mid("a"), "x = 2\n", do_save=False)

        assert exports["x"] == 2
        assert system.get_module(mid("user")).evaluation_recorder["x"] == 1
