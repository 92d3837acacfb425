"""Live module graph with hot reloading of Python modules."""

from livemodules.errors import CycleNotice
from livemodules.errors import DeclarationError
from livemodules.errors import ExecutionError
from livemodules.errors import ExportError
from livemodules.errors import LiveModulesError
from livemodules.errors import LoadTimeoutError
from livemodules.errors import ResolutionError
from livemodules.errors import TranslationError
from livemodules.exports import ExportTable
from livemodules.module import Module
from livemodules.module import ModuleRecord
from livemodules.package import Package
from livemodules.package import PackageDescriptor
from livemodules.registry import PackageRegistry
from livemodules.resources import FileResources
from livemodules.resources import MemoryResources
from livemodules.resources import Resources
from livemodules.settings import LiveModulesSettings
from livemodules.system import ModuleSystem
from livemodules.transform import ModuleFormat
from livemodules.transform import PythonSourceTransformer
from livemodules.transform import SourceTransformer

__all__ = [
    "ModuleSystem",
    "Module",
    "ModuleRecord",
    "ModuleFormat",
    "ExportTable",
    "Package",
    "PackageDescriptor",
    "PackageRegistry",
    "Resources",
    "FileResources",
    "MemoryResources",
    "SourceTransformer",
    "PythonSourceTransformer",
    "LiveModulesSettings",
    "LiveModulesError",
    "ResolutionError",
    "TranslationError",
    "DeclarationError",
    "ExecutionError",
    "LoadTimeoutError",
    "ExportError",
    "CycleNotice",
]
