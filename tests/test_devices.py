from unittest.mock import MagicMock, patch

import numpy as np
import pytest

from isbn_scanner.devices.camera import Camera, CameraStream, is_secure_context
from isbn_scanner.errors import CaptureFailure, DeviceBusy, DevicePermissionDenied, DeviceUnavailable, InsecureContext


@pytest.mark.parametrize("origin, secure", [
    ("https://books.example.com", True),
    ("http://localhost:8000", True),
    ("http://127.0.0.1:5000/scan", True),
    ("file:///home/user/index.html", True),
    ("http://books.example.com", False),
    (None, True),
    ("", False),
])
def test_is_secure_context(origin, secure):
    assert is_secure_context(origin) is secure


class TestCamera:

    @pytest.mark.asyncio
    async def test_insecure_origin_never_opens_device(self):
        with patch("isbn_scanner.devices.camera.cv2.VideoCapture") as video_capture:
            with pytest.raises(InsecureContext):
                await Camera(0).acquire("http://books.example.com")
        video_capture.assert_not_called()

    @pytest.mark.asyncio
    async def test_no_origin_is_a_local_caller(self):
        capture = MagicMock()
        capture.isOpened.return_value = True
        with patch("isbn_scanner.devices.camera.cv2.VideoCapture", return_value=capture) as video_capture:
            await Camera(0).acquire()
        video_capture.assert_called_once_with(0)

    @pytest.mark.asyncio
    async def test_acquire_sets_requested_resolution(self):
        capture = MagicMock()
        capture.isOpened.return_value = True
        with patch("isbn_scanner.devices.camera.cv2.VideoCapture", return_value=capture):
            stream = await Camera(2).acquire("https://localhost")
        assert isinstance(stream, CameraStream)
        assert stream.index == 2
        assert capture.set.call_count == 2

    @pytest.mark.parametrize("exists, access, expected", [
        (False, False, DeviceUnavailable),
        (True, False, DevicePermissionDenied),
        (True, True, DeviceBusy),
    ])
    def test_open_failure_is_categorized(self, exists, access, expected):
        capture = MagicMock()
        capture.isOpened.return_value = False
        with patch("isbn_scanner.devices.camera.cv2.VideoCapture", return_value=capture), \
                patch("isbn_scanner.devices.camera.sys.platform", "linux"), \
                patch("isbn_scanner.devices.camera.os.path.exists", return_value=exists), \
                patch("isbn_scanner.devices.camera.os.access", return_value=access):
            with pytest.raises(expected):
                Camera(0)._open()
        capture.release.assert_called_once()


class TestCameraStream:

    @pytest.mark.asyncio
    async def test_snapshot_converts_bgr(self):
        frame = np.zeros((2, 3, 3), dtype=np.uint8)
        frame[..., 0] = 255  # blue channel in BGR order
        capture = MagicMock()
        capture.read.return_value = (True, frame)
        image = await CameraStream(capture, 0).snapshot()
        assert image.size == (3, 2)
        assert image.getpixel((0, 0)) == (0, 0, 255)

    @pytest.mark.asyncio
    async def test_failed_read(self):
        capture = MagicMock()
        capture.read.return_value = (False, None)
        with pytest.raises(CaptureFailure):
            await CameraStream(capture, 0).snapshot()

    @pytest.mark.asyncio
    async def test_release_is_idempotent(self):
        capture = MagicMock()
        stream = CameraStream(capture, 0)
        stream.release()
        stream.release()
        capture.release.assert_called_once()
        with pytest.raises(CaptureFailure):
            await stream.snapshot()
