"""CLI path policy and factories.

Libraries receive paths and settings via injection; this module makes the
CLI's choices.
"""

from pathlib import Path

from livemodules.settings import LiveModulesSettings
from livemodules.settings import SettingsManager
from livemodules.system import ModuleSystem

SETTINGS_DIR = Path(".livemodules")


def create_settings_manager() -> SettingsManager:
    return SettingsManager(SETTINGS_DIR)


def load_cli_settings(
    package_dirs: tuple[str, ...] = (),
    collection_dirs: tuple[str, ...] = (),
    base_url: str | None = None,
    log_level: str | None = None,
    log_path: str | None = None,
) -> LiveModulesSettings:
    """Settings from the scope files, with command-line values on top.

    Directories given on the command line are added to the configured ones.
    """
    settings = create_settings_manager().load(base_url=base_url, log_level=log_level, log_path=log_path)
    return settings.model_copy(
        update={
            "individual_package_dirs": [*settings.individual_package_dirs, *package_dirs],
            "package_base_dirs": [*settings.package_base_dirs, *collection_dirs],
        }
    )


def create_module_system(settings: LiveModulesSettings) -> ModuleSystem:
    return ModuleSystem(settings=settings)
