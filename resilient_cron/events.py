"""Scheduler event levels and the sink contract for external collaborators."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Literal

EventLevel = Literal["info", "success", "warning", "error"]

# Callback signature: (level, message). Called synchronously from the event loop.
EventSink = Callable[[EventLevel, str], None]

EVENT_LOG_LEVELS: dict[EventLevel, int] = {
    "info": logging.INFO,
    "success": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}
