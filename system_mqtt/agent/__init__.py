"""Agent module driving the publish lifecycle."""

from .poll_loop import PollLoop
from .availability import AvailabilityManager

__all__ = ["PollLoop", "AvailabilityManager"]
