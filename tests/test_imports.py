"""
Test that all modules can be imported correctly
Run this after installing dependencies to validate the setup
"""


def test_engine_imports():
    """Test engine module imports"""
    from rbus_dissector.engine.classifier import classify
    from rbus_dissector.engine.dissector import RBusDissector
    from rbus_dissector.engine.event_fallback import EventFallback
    from rbus_dissector.engine.framer import MessageFramer
    from rbus_dissector.engine.generic_decoder import GenericDecoder
    from rbus_dissector.engine.method_dispatcher import VERB_LAYOUTS, MethodDispatcher
    from rbus_dissector.engine.value_decoder import ValueDecoder

    assert "METHOD_SETPARAMETERVALUES" in VERB_LAYOUTS


def test_surface_imports():
    """Test API and CLI imports"""
    from rbus_dissector.api.routes import ROUTERS
    from rbus_dissector.api.server import app
    from rbus_dissector.cli import main

    assert ROUTERS


def test_registries_are_read_only():
    """Process-wide tables cannot be mutated after import"""
    import pytest

    from rbus_dissector.engine.fields import FIELD_REGISTRY
    from rbus_dissector.engine.method_dispatcher import VERB_LAYOUTS
    from rbus_dissector.engine.protocol import VALUE_TYPE_NAMES

    for table in (FIELD_REGISTRY, VERB_LAYOUTS, VALUE_TYPE_NAMES):
        with pytest.raises(TypeError):
            table["x"] = None
