"""Tests that every public module imports cleanly."""

import importlib

import pytest

import polystore

MODULES = [
    "polystore.config",
    "polystore.errors",
    "polystore.logging_config",
    "polystore.messaging",
    "polystore.messaging.backend",
    "polystore.messaging.large",
    "polystore.messaging.memory",
    "polystore.messaging.polling",
    "polystore.messaging.registry",
    "polystore.metrics",
    "polystore.models",
    "polystore.paths",
    "polystore.storage",
    "polystore.storage.backend",
    "polystore.storage.generic",
    "polystore.storage.listing",
    "polystore.storage.local",
    "polystore.storage.memory",
]


class TestImports:
    """The package and each of its modules import."""

    @pytest.mark.parametrize("name", MODULES)
    def test_module_imports(self, name):
        assert importlib.import_module(name) is not None

    def test_public_names(self):
        for name in polystore.__all__:
            assert hasattr(polystore, name)
        assert polystore.__version__
