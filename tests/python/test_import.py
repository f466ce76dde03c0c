"""
Basic import tests for order_engine package.
"""

import pytest


def test_import_package():
    """Test that the main package can be imported."""
    import order_engine

    assert order_engine is not None


def test_version():
    """Test that version is defined and valid."""
    import order_engine

    assert order_engine.__version__ == "1.0.0"


def test_import_submodules():
    """Test that all submodules can be imported."""
    from order_engine import database, events, execution, jobs, monitoring

    assert database is not None
    assert events is not None
    assert execution is not None
    assert jobs is not None
    assert monitoring is not None


def test_public_api():
    """Test that the top-level exports resolve."""
    from order_engine import (
        Config,
        OrderEngine,
        OrderService,
        OrderWorker,
        ValidationError,
        create_order_engine,
        load_config,
    )

    assert callable(create_order_engine)
    assert callable(load_config)
    assert issubclass(ValidationError, Exception)
    assert OrderEngine is not None
    assert OrderService is not None
    assert OrderWorker is not None
    assert Config is not None


@pytest.mark.parametrize("module", [
    "order_engine.api",
    "order_engine.cli",
    "order_engine.engine",
    "order_engine.worker",
])
def test_import_entry_modules(module):
    """Test that application entry modules import."""
    import importlib

    assert importlib.import_module(module) is not None
