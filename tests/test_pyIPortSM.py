"""Basic tests for pyIPortSM."""

from importlib.metadata import version

import pyIPortSM


def test_version():
    """Test that the package version matches the installed metadata."""
    assert isinstance(pyIPortSM.__version__, str)
    assert pyIPortSM.__version__ == version("pyIPortSM")


def test_public_api():
    for name in (
        "PanelBridge",
        "PanelSession",
        "PanelConfig",
        "ActionDispatcher",
        "ButtonBank",
        "EventQueue",
        "DeviceColor",
        "decode",
        "load_config",
    ):
        assert hasattr(pyIPortSM, name), name
