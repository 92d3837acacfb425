"""Shared fixtures for livemodules tests.

Most tests run against an in-memory package tree rooted at ``mem://pkgs``.
"""

import json
from textwrap import dedent

import pytest

from livemodules.resources import MemoryResources
from livemodules.settings import LiveModulesSettings
from livemodules.system import ModuleSystem

BASE_URL = "mem://pkgs"


@pytest.fixture
def resources():
    """Empty in-memory resource tree."""
    return MemoryResources()


@pytest.fixture
def write_package(resources):
    """Write a package descriptor and source files; returns the package url."""

    def write(name, version="1.0.0", files=None, url=None, **descriptor):
        url = url or f"{BASE_URL}/{name}"
        fields = {"name": name, **descriptor}
        if version is not None:
            fields["version"] = version
        resources.files[f"{url}/package.json"] = json.dumps(fields)
        for path, text in (files or {}).items():
            resources.files[f"{url}/{path}"] = dedent(text).lstrip("\n")
        return url

    return write


@pytest.fixture
def make_system(resources):
    """Build a ModuleSystem over the in-memory tree."""

    def make(*package_dirs, collections=(), **settings):
        settings = LiveModulesSettings(
            individual_package_dirs=list(package_dirs),
            package_base_dirs=list(collections),
            **settings,
        )
        return ModuleSystem(resources=resources, settings=settings, base_url=BASE_URL)

    return make


@pytest.fixture
def runs():
    """Count body executions through top-level definitions of ``ran``."""

    def track(module, name="ran"):
        calls = []
        module.subscribe_to_toplevel_changes(lambda n, v: calls.append(n) if n == name else None)
        return calls

    return track


@pytest.fixture
def write_modules(resources):
    """Write loose modules directly under the base url."""

    def write(**sources):
        for name, text in sources.items():
            resources.files[f"{BASE_URL}/{name}.py"] = dedent(text).lstrip("\n")

    return write
