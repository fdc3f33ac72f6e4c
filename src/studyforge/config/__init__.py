"""Configuration and dependency wiring."""

from .container import Container, get_container, setup_container
from .settings import Settings, get_settings

__all__ = ["Container", "Settings", "get_container", "get_settings", "setup_container"]
