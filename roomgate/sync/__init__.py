from __future__ import annotations

from .coordinator import PassResult, SyncCoordinator, Trigger
from .timer import PollTimer

__all__ = ["PassResult", "PollTimer", "SyncCoordinator", "Trigger"]
