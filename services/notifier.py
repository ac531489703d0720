"""Transient user-facing notifications (toasts) raised by the core services."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class Notification:
    title: str
    description: str
    variant: str = "default"

    def to_dict(self) -> Dict[str, Any]:
        return {"title": self.title, "description": self.description, "variant": self.variant}


class Notifier:
    """Collect notifications and forward each one to an optional sink.

    The websocket handler installs a sink that queues a `notification` event;
    tests read `history` instead.
    """

    def __init__(self, sink: Optional[Callable[[Notification], None]] = None) -> None:
        self.sink = sink
        self.history: List[Notification] = []

    def notify(self, title: str, description: str, variant: str = "default") -> Notification:
        note = Notification(title=title, description=description, variant=variant)
        self.history.append(note)
        if self.sink is not None:
            self.sink(note)
        return note

    def error(self, description: str, title: str = "Error") -> Notification:
        LOGGER.debug("User-facing error notification: %s", description)
        return self.notify(title, description, variant="destructive")
