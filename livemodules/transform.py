"""Source transformers.

A transformer turns module source into a :class:`Translation` (executable
text plus the static list of imports) and declares a translation into a
:class:`DeclaredModule`: one setter per import, in import order, and an
``execute`` function that runs the body.

:class:`PythonSourceTransformer` is the reference implementation for Python
source. Relative imports and imports of registered packages become graph
imports whose names are bound by setters; every other import stays plain
Python. Each top-level binding is followed by a call to the module's
``define`` write barrier so that export changes reach importers.

A module whose first lines contain ``# format: script`` is a script module:
it runs as plain Python and is never re-bound.
"""

import ast
import logging
import re
from abc import ABC
from abc import abstractmethod
from collections.abc import Callable
from collections.abc import Collection
from collections.abc import Mapping
from dataclasses import dataclass
from dataclasses import field
from enum import Enum
from typing import Any

from livemodules.errors import DeclarationError
from livemodules.errors import TranslationError

logger = logging.getLogger(__name__)

DEFINE_NAME = "__lm_define__"
FORMAT_HEADER_LINES = 5
_FORMAT_RE = re.compile(r"^#\s*format:\s*(\w+)\s*$")

Setter = Callable[[Mapping[str, Any]], None]
DefineFunction = Callable[..., Any]


class ModuleFormat(str, Enum):
    DECLARATIVE = "declarative"
    SCRIPT = "script"


def detect_format(source: str) -> ModuleFormat:
    """Read the ``# format: ...`` header, defaulting to declarative."""
    for line in source.splitlines()[:FORMAT_HEADER_LINES]:
        match = _FORMAT_RE.match(line.strip())
        if match and match.group(1) == ModuleFormat.SCRIPT.value:
            return ModuleFormat.SCRIPT
    return ModuleFormat.DECLARATIVE


@dataclass
class ImportBinding:
    """One local name bound by an import.

    ``exported`` is the name looked up in the dependency's export table,
    or None to bind the whole table (``import lib``, ``from . import sub``).
    """

    local: str
    exported: str | None = None


@dataclass
class ImportDeclaration:
    specifier: str
    bindings: list[ImportBinding] = field(default_factory=list)
    star: bool = False


@dataclass
class Translation:
    module_id: str
    text: str
    format: ModuleFormat
    imports: list[ImportDeclaration] = field(default_factory=list)

    @property
    def specifiers(self) -> list[str]:
        return [declaration.specifier for declaration in self.imports]


@dataclass
class DeclaredModule:
    setters: list[Setter]
    execute: Callable[[], None]


@dataclass
class ModuleScope:
    """Static view of a module's top level."""

    declared: list[str]
    imports: list[ImportDeclaration]

    @property
    def public_names(self) -> list[str]:
        names = [name for name in self.declared if not name.startswith("_")]
        for declaration in self.imports:
            for binding in declaration.bindings:
                if not binding.local.startswith("_") and binding.local not in names:
                    names.append(binding.local)
        return names


class SourceTransformer(ABC):
    """Contract between the loading protocol and a source language."""

    @abstractmethod
    async def translate(
        self, source: str, module_id: str, options: Mapping[str, Any] | None = None
    ) -> Translation:
        """Translate raw ``source`` into executable text and its imports.

        Raises:
            TranslationError: If the source cannot be translated
        """

    @abstractmethod
    def declare(
        self, translation: Translation, recorder: dict[str, Any], define: DefineFunction
    ) -> DeclaredModule:
        """Prepare setters and the body function of a translation.

        Args:
            translation: Result of :meth:`translate`
            recorder: Top-level binding environment the body runs in
            define: Write barrier ``define(name, value, export_immediately)``

        Raises:
            DeclarationError: If the translation cannot be declared
        """


# ============================================================================
# Python reference transformer
# ============================================================================


class _TopLevelBindings(ast.NodeVisitor):
    """Collect names a statement binds at module level."""

    def __init__(self) -> None:
        self.names: list[str] = []

    def _add(self, name: str) -> None:
        if name not in self.names:
            self.names.append(name)

    def visit_Name(self, node: ast.Name) -> None:
        if isinstance(node.ctx, ast.Store):
            self._add(node.id)

    def visit_FunctionDef(self, node: ast.FunctionDef) -> None:
        self._add(node.name)

    visit_AsyncFunctionDef = visit_FunctionDef

    def visit_ClassDef(self, node: ast.ClassDef) -> None:
        self._add(node.name)

    def _skip(self, node: ast.AST) -> None:
        pass

    # Plain imports are not exports; nested scopes bind nothing at top level
    visit_Import = _skip
    visit_ImportFrom = _skip
    visit_Lambda = _skip
    visit_ListComp = _skip
    visit_SetComp = _skip
    visit_DictComp = _skip
    visit_GeneratorExp = _skip


def top_level_bindings(stmt: ast.stmt) -> list[str]:
    visitor = _TopLevelBindings()
    visitor.visit(stmt)
    return visitor.names


def _always_binds(stmt: ast.stmt) -> bool:
    if isinstance(stmt, ast.AnnAssign):
        return stmt.value is not None
    return isinstance(stmt, ast.FunctionDef | ast.AsyncFunctionDef | ast.ClassDef | ast.Assign | ast.AugAssign)


def _relative_prefix(level: int) -> str:
    return "./" if level == 1 else "../" * (level - 1)


def _is_graph_module(name: str | None, package_names: Collection[str]) -> bool:
    return bool(name) and name.split(".")[0] in package_names


def split_graph_imports(
    stmt: ast.stmt, module_id: str, package_names: Collection[str]
) -> tuple[list[ImportDeclaration], ast.stmt | None]:
    """Separate graph imports from a top-level statement.

    Returns:
        The graph import declarations and the statement that remains to
        run as plain Python (None when nothing remains)
    """
    if isinstance(stmt, ast.ImportFrom):
        if stmt.level == 0 and not _is_graph_module(stmt.module, package_names):
            return [], stmt
        prefix = _relative_prefix(stmt.level) if stmt.level else ""
        if stmt.module is None:
            declarations = [
                ImportDeclaration(prefix + alias.name, [ImportBinding(alias.asname or alias.name)])
                for alias in stmt.names
            ]
            return declarations, None
        specifier = prefix + stmt.module.replace(".", "/")
        if any(alias.name == "*" for alias in stmt.names):
            return [ImportDeclaration(specifier, star=True)], None
        bindings = [ImportBinding(alias.asname or alias.name, alias.name) for alias in stmt.names]
        return [ImportDeclaration(specifier, bindings)], None

    if isinstance(stmt, ast.Import):
        graph = [alias for alias in stmt.names if _is_graph_module(alias.name, package_names)]
        if not graph:
            return [], stmt
        declarations = []
        for alias in graph:
            if "." in alias.name and not alias.asname:
                raise TranslationError(module_id, f"line {stmt.lineno}: use 'import {alias.name} as <name>'")
            declarations.append(
                ImportDeclaration(alias.name.replace(".", "/"), [ImportBinding(alias.asname or alias.name)])
            )
        rest = [alias for alias in stmt.names if alias not in graph]
        remainder = ast.copy_location(ast.Import(names=rest), stmt) if rest else None
        return declarations, remainder

    return [], stmt


def parse_source(source: str, module_id: str) -> ast.Module:
    try:
        return ast.parse(source, filename=module_id)
    except SyntaxError as e:
        raise TranslationError(module_id, f"line {e.lineno}: {e.msg}") from e


def analyze_scope(tree: ast.Module, module_id: str, package_names: Collection[str] = ()) -> ModuleScope:
    declared: list[str] = []
    imports: list[ImportDeclaration] = []
    for stmt in tree.body:
        declarations, remainder = split_graph_imports(stmt, module_id, package_names)
        imports.extend(declarations)
        if remainder is not None:
            declared.extend(name for name in top_level_bindings(remainder) if name not in declared)
    return ModuleScope(declared, imports)


class PythonSourceTransformer(SourceTransformer):
    """Reference transformer for Python module source.

    Options:
        package_names: Names of registered packages; absolute imports of
            these become graph imports
        format: Force a ModuleFormat instead of reading the header
    """

    async def translate(
        self, source: str, module_id: str, options: Mapping[str, Any] | None = None
    ) -> Translation:
        options = options or {}
        module_format = ModuleFormat(options.get("format") or detect_format(source))
        tree = parse_source(source, module_id)
        if module_format is ModuleFormat.SCRIPT:
            return Translation(module_id, source, module_format)

        package_names = frozenset(options.get("package_names", ()))
        imports: list[ImportDeclaration] = []
        body: list[ast.stmt] = []
        for stmt in tree.body:
            declarations, remainder = split_graph_imports(stmt, module_id, package_names)
            imports.extend(declarations)
            if remainder is None:
                continue
            body.append(remainder)
            body.extend(self._define_calls(remainder))
        tree.body = body
        text = ast.unparse(ast.fix_missing_locations(tree))
        logger.debug(f"[transform:translate] {module_id}: {len(imports)} graph imports")
        return Translation(module_id, text, module_format, imports)

    def declare(
        self, translation: Translation, recorder: dict[str, Any], define: DefineFunction
    ) -> DeclaredModule:
        try:
            code = compile(translation.text, translation.module_id, "exec")
        except (SyntaxError, ValueError) as e:
            raise DeclarationError(translation.module_id, str(e)) from e

        setters = [
            self._make_setter(translation.module_id, declaration, recorder, define)
            for declaration in translation.imports
        ]

        def execute() -> None:
            if translation.format is ModuleFormat.DECLARATIVE:
                recorder[DEFINE_NAME] = define
            exec(code, recorder)

        return DeclaredModule(setters, execute)

    @staticmethod
    def _define_calls(stmt: ast.stmt) -> list[ast.stmt]:
        names = [name for name in top_level_bindings(stmt) if not name.startswith("_")]
        if _always_binds(stmt):
            template = "{define}({name!r}, {name}, False)"
        else:
            template = "if {name!r} in globals(): {define}({name!r}, {name}, False)"
        return [ast.parse(template.format(define=DEFINE_NAME, name=name)).body[0] for name in names]

    @staticmethod
    def _make_setter(
        module_id: str, declaration: ImportDeclaration, recorder: dict[str, Any], define: DefineFunction
    ) -> Setter:
        def setter(exports: Mapping[str, Any]) -> None:
            if declaration.star:
                pairs = [(name, name) for name in exports if not name.startswith("_")]
            else:
                pairs = [(binding.local, binding.exported) for binding in declaration.bindings]
            for local, exported in pairs:
                if exported is None:
                    value = exports
                elif exported in exports:
                    value = exports[exported]
                else:
                    logger.warning(f"[module:bind] {module_id}: {declaration.specifier} has no export {exported!r}")
                    recorder.pop(local, None)
                    continue
                if local.startswith("_"):
                    recorder[local] = value
                else:
                    define(local, value, False)

        return setter
