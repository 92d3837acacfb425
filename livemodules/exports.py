"""Export tables: the public namespace a module exposes to its importers."""

from collections.abc import Iterator
from collections.abc import Mapping
from typing import Any

from livemodules.errors import ExportError


class ExportTable(Mapping[str, Any]):
    """Name to value map of one module's exports.

    Read-only from the outside: item and attribute assignment raise
    :class:`ExportError`. The owning module changes values only through
    :meth:`set_if_exists`, :meth:`define_new` and :meth:`remove`. A sealed
    table accepts updates of existing names but no new names.

    Attribute access works as on a module namespace::

        table = await system.load("lib")
        table.x == table["x"]
    """

    __slots__ = ("_module_id", "_values", "_sealed")

    def __init__(self, module_id: str, values: Mapping[str, Any] | None = None):
        object.__setattr__(self, "_module_id", module_id)
        object.__setattr__(self, "_values", dict(values or {}))
        object.__setattr__(self, "_sealed", False)

    @property
    def module_id(self) -> str:
        return self._module_id

    @property
    def sealed(self) -> bool:
        return self._sealed

    def seal(self) -> None:
        object.__setattr__(self, "_sealed", True)

    def __getitem__(self, name: str) -> Any:
        return self._values[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            raise AttributeError(name)
        try:
            return self._values[name]
        except KeyError:
            raise AttributeError(f"{self._module_id} has no export {name!r}") from None

    def __setattr__(self, name: str, value: Any) -> None:
        raise ExportError(f"exports of {self._module_id} cannot be changed from the outside")

    def __delattr__(self, name: str) -> None:
        raise ExportError(f"exports of {self._module_id} cannot be changed from the outside")

    def __setitem__(self, name: str, value: Any) -> None:
        raise ExportError(f"exports of {self._module_id} cannot be changed from the outside")

    def __delitem__(self, name: str) -> None:
        raise ExportError(f"exports of {self._module_id} cannot be changed from the outside")

    def set_if_exists(self, name: str, value: Any) -> bool:
        """Overwrite an existing export in place.

        Returns:
            True if ``name`` was already exported
        """
        if name not in self._values:
            return False
        self._values[name] = value
        return True

    def define_new(self, name: str, value: Any) -> None:
        """Add a new export.

        Raises:
            ExportError: If the table is sealed
            KeyError: If ``name`` is already exported
        """
        if self._sealed:
            raise ExportError(f"exports of {self._module_id} are sealed, cannot add {name!r}")
        if name in self._values:
            raise KeyError(name)
        self._values[name] = value

    def remove(self, name: str) -> bool:
        return self._values.pop(name, _MISSING) is not _MISSING

    def to_dict(self) -> dict[str, Any]:
        return dict(self._values)

    def __repr__(self) -> str:
        names = ", ".join(self._values)
        return f"ExportTable({self._module_id}: {names})"


_MISSING = object()
