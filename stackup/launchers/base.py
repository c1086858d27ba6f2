"""Launcher layer — Launcher interface.

A launcher is the runtime collaborator that actually starts units.  The
scheduler calls :meth:`Launcher.launch` exactly once per unit per run and
never waits on anything but the returned coroutine's acceptance; progress
must be reported asynchronously through the :class:`SignalSink`:

    Started  ->  HealthUpdate*  ->  Exited?

Rules for implementers:
  - Return from ``launch`` once the unit is accepted; keep monitoring in
    your own tasks.
  - Raise ``LaunchRejectedError`` to refuse a unit.  Any other exception is
    treated as a rejection with the exception text as reason.
  - Emit signals for one unit in the order you observed them.
  - ``stop`` is best effort and only used for forced teardown.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from stackup.orchestration.signals import SignalSink
from stackup.protocol.models import UnitSpec


class Launcher(ABC):
    """Abstract base class for all launchers."""

    @abstractmethod
    async def launch(self, unit: UnitSpec, signals: SignalSink) -> None:
        """Start *unit* and report its lifecycle through *signals*."""

    async def stop(self, unit: str) -> None:
        """Stop *unit* if it is running.  The default does nothing."""

    async def aclose(self) -> None:
        """Release any resources held across runs.  The default does nothing."""
