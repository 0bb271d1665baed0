"""Checks that every project module imports cleanly."""

import importlib

import pytest


PROJECT_MODULES = [
    "adapters.interfaces",
    "adapters.interfaces.transport",
    "config.settings",
    "core.entities.board",
    "core.entities.firmware",
    "infrastructure",
    "infrastructure.serial_transport",
    "modules.espflash",
    "modules.espflash.chunked_writer",
    "modules.espflash.detector",
    "modules.espflash.errors",
    "modules.espflash.events",
    "modules.espflash.formatting",
    "modules.espflash.link",
    "modules.espflash.log_sink",
    "modules.espflash.progress",
    "modules.espflash.session",
    "modules.espflash.sync",
    "modules.espflash.validators",
    "services.flash_service",
    "ui.cli",
]


class TestImportHealth:
    """Import smoke tests."""

    @pytest.mark.parametrize("module_name", PROJECT_MODULES)
    def test_module_imports(self, module_name):
        assert importlib.import_module(module_name) is not None

    def test_public_api(self):
        import modules.espflash as espflash

        for name in espflash.__all__:
            assert hasattr(espflash, name), name
