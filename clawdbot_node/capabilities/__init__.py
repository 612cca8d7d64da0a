"""Capability wrappers around platform backends."""

from __future__ import annotations

from dataclasses import dataclass

from .camera import CameraBackend, CameraCapability, NullCameraBackend
from .canvas import CanvasController, NullWebSurface, WebSurface
from .location import LocationBackend, LocationCapability, NullLocationBackend
from .screen import NullScreenBackend, ScreenBackend, ScreenRecordCapability

__all__ = [
    "CameraBackend",
    "CameraCapability",
    "CanvasController",
    "Capabilities",
    "LocationBackend",
    "LocationCapability",
    "NullCameraBackend",
    "NullLocationBackend",
    "NullScreenBackend",
    "NullWebSurface",
    "ScreenBackend",
    "ScreenRecordCapability",
    "WebSurface",
]


@dataclass
class Capabilities:
    """The set of capabilities the dispatcher routes to."""

    camera: CameraCapability
    location: LocationCapability
    screen: ScreenRecordCapability
    canvas: CanvasController
