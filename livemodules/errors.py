"""Error taxonomy for the module graph engine.

Resolution, translation and declaration failures abort a source change
before the live graph is touched, so the same call can be retried
unmodified. Execution failures keep the new wiring: the module stays
loaded with whatever exports the partial run produced.
"""

from dataclasses import dataclass
from dataclasses import field


class LiveModulesError(Exception):
    """Base class for all engine errors."""


class ResolutionError(LiveModulesError):
    """No package or module satisfies a request, or a version range is malformed."""

    def __init__(self, message: str, *, specifier: str | None = None, parent: str | None = None):
        super().__init__(message)
        self.specifier = specifier
        self.parent = parent


class TranslationError(LiveModulesError):
    """Source could not be translated into an executable form."""

    def __init__(self, module_id: str, message: str):
        super().__init__(f"Cannot translate {module_id}: {message}")
        self.module_id = module_id


class DeclarationError(LiveModulesError):
    """A translated module could not be declared."""

    def __init__(self, module_id: str, message: str):
        super().__init__(f"Cannot declare {module_id}: {message}")
        self.module_id = module_id


class ExecutionError(LiveModulesError):
    """The module body raised while executing."""

    def __init__(self, module_id: str, cause: BaseException):
        super().__init__(f"Error executing {module_id}: {type(cause).__name__}: {cause}")
        self.module_id = module_id
        self.cause = cause


class LoadTimeoutError(LiveModulesError, TimeoutError):
    """A module was not reported as loaded within the confirmation window."""

    def __init__(self, module_id: str, timeout: float):
        super().__init__(f"Module {module_id} was not loaded after {timeout}s")
        self.module_id = module_id
        self.timeout = timeout


class ExportError(LiveModulesError, TypeError):
    """Raised on writes to an export table from outside its module."""


@dataclass
class CycleNotice:
    """Informational record for a registration cycle that was cut short.

    Never raised. Logged when a package's alias graph leads back to a
    package already being registered in the same call chain.
    """

    package_url: str
    load_stack: list[str] = field(default_factory=list)

    def __str__(self) -> str:
        chain = " -> ".join([*self.load_stack, self.package_url])
        return f"Circular package dependency, skipping {self.package_url} ({chain})"
