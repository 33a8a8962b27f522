import asyncio
import logging
import os
import sys
from typing import Any, Dict, Optional, Protocol
from urllib.parse import urlparse

import cv2
from PIL import Image

from isbn_scanner.config import CAMERA_CONSTRAINTS, SECURE_HOSTS, SECURE_SCHEMES
from isbn_scanner.errors import (
    CaptureFailure,
    DeviceBusy,
    DevicePermissionDenied,
    DeviceUnavailable,
    InsecureContext,
)

logger = logging.getLogger(__name__)


def is_secure_context(origin: Optional[str]) -> bool:
    """
    True for https/file origins and for localhost, like a browser would decide.
    No origin at all means a local process (the CLI), which counts as secure.
    """
    if origin is None:
        return True
    parsed = urlparse(origin)
    return parsed.scheme in SECURE_SCHEMES or (parsed.hostname or "") in SECURE_HOSTS


class StreamHandle(Protocol):
    async def snapshot(self) -> Image.Image:
        ...

    def release(self) -> None:
        ...


class FrameSource(Protocol):
    async def acquire(self, origin: Optional[str] = None) -> StreamHandle:
        ...


class CameraStream:
    """An open OpenCV capture. Owned by exactly one session."""

    def __init__(self, capture: Any, index: int):
        self.capture = capture
        self.index = index
        self.released = False

    async def snapshot(self) -> Image.Image:
        if self.released:
            raise CaptureFailure("stream already released")
        ok, frame = await asyncio.to_thread(self.capture.read)
        if not ok or frame is None:
            raise CaptureFailure(f"camera {self.index} returned no frame")
        rgb = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
        return Image.fromarray(rgb)

    def release(self) -> None:
        if self.released:
            return
        self.capture.release()
        self.released = True
        logger.info("Released camera %d", self.index)


class Camera:
    """
    Local camera through OpenCV.

    The browser-style constraints are kept so the preferred resolution is
    requested; facing mode has no OpenCV equivalent and is only logged.
    """

    def __init__(self, index: int = 0, constraints: Optional[Dict[str, Any]] = None):
        self.index = index
        self.constraints = dict(constraints or CAMERA_CONSTRAINTS)

    async def acquire(self, origin: Optional[str] = None) -> CameraStream:
        if not is_secure_context(origin):
            raise InsecureContext(f"refusing camera access from insecure origin {origin}")
        capture = await asyncio.to_thread(self._open)
        logger.info("Opened camera %d with %s", self.index, self.constraints)
        return CameraStream(capture, self.index)

    def _open(self) -> Any:
        capture = cv2.VideoCapture(self.index)
        if not capture.isOpened():
            capture.release()
            raise self._categorize()
        capture.set(cv2.CAP_PROP_FRAME_WIDTH, self.constraints.get("ideal_width", 1280))
        capture.set(cv2.CAP_PROP_FRAME_HEIGHT, self.constraints.get("ideal_height", 720))
        return capture

    def _categorize(self) -> Exception:
        if not sys.platform.startswith("linux"):
            return DeviceUnavailable(f"camera {self.index} could not be opened")
        dev_path = f"/dev/video{self.index}"
        if not os.path.exists(dev_path):
            return DeviceUnavailable(f"{dev_path} does not exist")
        if not os.access(dev_path, os.R_OK | os.W_OK):
            return DevicePermissionDenied(f"no read/write access to {dev_path}")
        return DeviceBusy(f"{dev_path} exists but could not be opened")
