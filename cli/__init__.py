"""Command line tools for the station telemetry service."""

from importlib import import_module
from types import ModuleType

__all__ = []


# Resolve ``cli.app`` to the module rather than the Typer instance so names on
# it stay patchable.
def __getattr__(name: str) -> ModuleType:
    if name == "app":
        return import_module("cli.app")
    raise AttributeError(name)
