"""Error taxonomy for the health core."""

from __future__ import annotations


class HostwatchError(Exception):
    """Base class for hostwatch errors."""


class SourceUnavailable(HostwatchError):
    """A local metric source (``/proc`` counters, mount table) cannot be read."""

    def __init__(self, source: str, reason: str) -> None:
        self.source = source
        self.reason = reason
        super().__init__(f"cannot read {source}: {reason}")


class SetupError(HostwatchError):
    """Unrecoverable setup problem, e.g. the report destination is not writable."""


class NotificationUnavailable(HostwatchError):
    """An alert could not be delivered (no recipient, no mail tool, send failed)."""
