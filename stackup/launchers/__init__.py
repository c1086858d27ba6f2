"""Launcher layer — runtime collaborators that start units and report signals."""

from stackup.launchers.base import Launcher
from stackup.launchers.process import SubprocessLauncher
from stackup.launchers.scripted import ScriptedLauncher, ScriptStep, UnitScript

__all__ = [
    "Launcher",
    "ScriptedLauncher",
    "ScriptStep",
    "UnitScript",
    "SubprocessLauncher",
]
