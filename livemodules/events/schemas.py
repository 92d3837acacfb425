"""Notification schemas for the module graph event system."""

from typing import Literal

from pydantic import BaseModel
from pydantic import Field


class ModuleLoaded(BaseModel):
    """A module entered the live set."""

    type: Literal["module-loaded"] = "module-loaded"
    id: str = Field(description="Module id")


class ModuleChanged(BaseModel):
    """A source change finished, successfully or not."""

    type: Literal["module-changed"] = "module-changed"
    id: str = Field(description="Module id")
    new_source: str = Field(description="Source passed to change_source")
    error: str | None = Field(default=None, description="Error message when the change failed")


class ModuleUnloaded(BaseModel):
    """A module left the live set."""

    type: Literal["module-unloaded"] = "module-unloaded"
    id: str = Field(description="Module id")


class PackageRegistered(BaseModel):
    """A package finished registering."""

    type: Literal["package-registered"] = "package-registered"
    url: str = Field(description="Package url")


class PackageRemoved(BaseModel):
    """A package was removed from its environment."""

    type: Literal["package-removed"] = "package-removed"
    url: str = Field(description="Package url")


ModuleEvent = ModuleLoaded | ModuleChanged | ModuleUnloaded | PackageRegistered | PackageRemoved
