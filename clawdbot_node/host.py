"""Host application execution state."""

from __future__ import annotations

from abc import ABC, abstractmethod


class HostState(ABC):
    """Tells the dispatcher whether the host app is in the foreground."""

    @abstractmethod
    def is_foreground(self) -> bool:
        """True while the host is active and may drive camera/screen/canvas."""


class StaticHostState(HostState):
    """Host whose state is set explicitly; headless hosts stay foreground."""

    def __init__(self, foreground: bool = True):
        self.foreground = foreground

    def is_foreground(self) -> bool:
        return self.foreground
