"""Module graph notifications: loaded, changed, unloaded, registered, removed."""

from livemodules.events.bus import EventBus
from livemodules.events.schemas import ModuleChanged
from livemodules.events.schemas import ModuleEvent
from livemodules.events.schemas import ModuleLoaded
from livemodules.events.schemas import ModuleUnloaded
from livemodules.events.schemas import PackageRegistered
from livemodules.events.schemas import PackageRemoved

__all__ = [
    "EventBus",
    "ModuleEvent",
    "ModuleLoaded",
    "ModuleChanged",
    "ModuleUnloaded",
    "PackageRegistered",
    "PackageRemoved",
]
