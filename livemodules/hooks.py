"""Hook chains around fetching and translating module source.

A hook wraps the step it is installed on::

    async def strip_bom(proceed, url):
        text = await proceed(url)
        return text.lstrip("\\ufeff")

    system.hooks.install("fetch", strip_bom)

The most recently installed hook runs outermost.
"""

import importlib
import logging
from collections.abc import Awaitable
from collections.abc import Callable
from functools import partial
from typing import Any

logger = logging.getLogger(__name__)

HOOK_TARGETS = ("fetch", "translate")

Hook = Callable[..., Awaitable[Any]]


class HookChain:
    """Installed hooks per target."""

    def __init__(self) -> None:
        self._hooks: dict[str, list[Hook]] = {target: [] for target in HOOK_TARGETS}

    def _target(self, target: str) -> list[Hook]:
        if target not in self._hooks:
            raise ValueError(f"Unknown hook target {target!r}, expected one of {', '.join(HOOK_TARGETS)}")
        return self._hooks[target]

    def install(self, target: str, hook: Hook) -> None:
        hooks = self._target(target)
        # Reinstalling a hook with the same name replaces it
        hooks[:] = [h for h in hooks if _hook_name(h) != _hook_name(hook)]
        hooks.append(hook)
        logger.debug(f"[hooks:install] {_hook_name(hook)} on {target}")

    def remove(self, target: str, hook_or_name: Hook | str) -> bool:
        hooks = self._target(target)
        name = hook_or_name if isinstance(hook_or_name, str) else _hook_name(hook_or_name)
        kept = [h for h in hooks if _hook_name(h) != name]
        removed = len(kept) != len(hooks)
        hooks[:] = kept
        return removed

    def is_installed(self, target: str, hook_or_name: Hook | str) -> bool:
        name = hook_or_name if isinstance(hook_or_name, str) else _hook_name(hook_or_name)
        return any(_hook_name(h) == name for h in self._target(target))

    async def run(self, target: str, base: Callable[..., Awaitable[Any]], *args: Any) -> Any:
        """Call ``base(*args)`` through every hook installed on ``target``."""
        call = base
        for hook in self._target(target):
            call = partial(hook, call)
        return await call(*args)


def _hook_name(hook: Hook) -> str:
    return getattr(hook, "__qualname__", None) or getattr(hook, "__name__", None) or repr(hook)


def load_hook(reference: str) -> Hook:
    """Import a hook from a ``package.module:callable`` reference.

    Raises:
        ValueError: If the reference is malformed or does not name a callable
        ImportError: If the module cannot be imported
    """
    module_name, _, attribute = reference.partition(":")
    if not module_name or not attribute:
        raise ValueError(f"Hook reference must look like 'module:callable', got {reference!r}")
    target = importlib.import_module(module_name)
    for part in attribute.split("."):
        target = getattr(target, part, None)
        if target is None:
            raise ValueError(f"{reference!r} does not exist")
    if not callable(target):
        raise ValueError(f"{reference!r} is not callable")
    return target
