from unittest.mock import MagicMock

import pytest
from PIL import Image

from conftest import FakeCamera, FakeOcr, FakeStream, MemoryLibrary, StubCatalog
from isbn_scanner.core.barcode import BarcodeHeuristic
from isbn_scanner.core.resolver import BibliographicResolver
from isbn_scanner.core.session import (
    STATUS_EMPTY_ISBN,
    STATUS_NO_ISBN,
    STATUS_NOT_FOUND,
    CaptureMode,
    CaptureSession,
    InvalidTransition,
    SessionState,
)
from isbn_scanner.errors import (
    CaptureFailure,
    DevicePermissionDenied,
    DuplicateRecord,
    InvalidFormat,
    PersistenceFailure,
    RecognitionFailure,
)

EFFECTIVE_JAVA = {"title": "Effective Java", "authors": ["Joshua Bloch"]}
OCR_TEXT = "Published 2020, ISBN: 978-0-13-468599-1, all rights reserved"


class UnwritableLibrary(MemoryLibrary):
    def add(self, record):
        raise OSError("disk full")


def make_session(mode=CaptureMode.CAMERA_SCAN, camera=None, ocr=None, primary=None, fallback=None,
                 library=None, **kwargs):
    resolver = BibliographicResolver(primary or StubCatalog("a"), fallback or StubCatalog("b"), timeout=1)
    return CaptureSession(
        mode,
        resolver=resolver,
        library=library if library is not None else MemoryLibrary(),
        camera=camera or FakeCamera(),
        ocr=ocr or FakeOcr(),
        **kwargs,
    )


class TestCamera:

    @pytest.mark.asyncio
    async def test_device_error_keeps_idle(self):
        session = make_session(camera=FakeCamera(error=DevicePermissionDenied()))
        state = await session.start_camera()
        assert state == SessionState.IDLE
        assert isinstance(session.last_error, DevicePermissionDenied)
        assert session.status == DevicePermissionDenied.user_message
        assert not session.holds_stream

    @pytest.mark.asyncio
    async def test_capture_releases_stream_once(self):
        camera = FakeCamera()
        session = make_session(camera=camera)
        await session.start_camera()
        assert session.holds_stream
        state = await session.capture()
        assert state == SessionState.PHOTO_CAPTURED
        assert session.still_image is not None
        assert camera.stream.release_calls == 1
        session.cancel()
        session.close()
        assert camera.stream.release_calls == 1

    @pytest.mark.asyncio
    async def test_capture_failure_keeps_camera(self):
        camera = FakeCamera(FakeStream(error=CaptureFailure()))
        session = make_session(camera=camera)
        await session.start_camera()
        assert await session.capture() == SessionState.CAMERA_ACTIVE
        assert isinstance(session.last_error, CaptureFailure)
        assert camera.stream.release_calls == 0
        session.cancel()
        assert camera.stream.release_calls == 1

    @pytest.mark.asyncio
    async def test_cancel_from_camera_active(self):
        camera = FakeCamera()
        session = make_session(camera=camera)
        await session.start_camera()
        assert session.cancel() == SessionState.IDLE
        session.cancel()
        assert camera.stream.release_calls == 1
        assert not session.holds_stream

    @pytest.mark.asyncio
    async def test_context_manager_releases_on_exit(self):
        camera = FakeCamera()
        async with make_session(camera=camera) as session:
            await session.start_camera()
        assert camera.stream.release_calls == 1

    @pytest.mark.asyncio
    async def test_retake_reacquires(self):
        camera = FakeCamera()
        session = make_session(camera=camera)
        await session.start_camera()
        await session.capture()
        assert await session.retake() == SessionState.CAMERA_ACTIVE
        assert camera.acquire_calls == 2
        assert session.still_image is None

    @pytest.mark.asyncio
    async def test_capture_requires_camera_active(self):
        with pytest.raises(InvalidTransition):
            await make_session().capture()


class TestCropping:

    def test_crop_to_box(self):
        session = make_session(CaptureMode.PHOTO)
        session.load_photo(Image.new("RGB", (400, 300), "white"))
        assert session.crop_to(10, 20, 100, 50) == SessionState.PHOTO_CAPTURED
        assert session.still_image.size == (100, 50)

    def test_crop_to_bottom_right_box(self):
        photo = Image.new("RGB", (1000, 1000), "white")
        photo.paste((255, 0, 0), (900, 900, 1000, 1000))
        session = make_session(CaptureMode.PHOTO)
        session.load_photo(photo)
        session.crop_to(900, 900, 100, 100)
        assert session.still_image.size == (100, 100)
        assert session.still_image.getpixel((0, 0)) == (255, 0, 0)

    def test_crop_to_whole_image(self):
        session = make_session(CaptureMode.PHOTO)
        session.load_photo(Image.new("RGB", (400, 300), "white"))
        session.crop_to(0, 0, 400, 300)
        assert session.still_image.size == (400, 300)

    def test_cancel_crop_keeps_photo(self):
        session = make_session(CaptureMode.PHOTO)
        photo = Image.new("RGB", (400, 300), "white")
        session.load_photo(photo)
        session.begin_crop()
        session.drag_crop(5, 5)
        assert session.cancel_crop() == SessionState.PHOTO_CAPTURED
        assert session.still_image is photo
        assert not session.crop_engine.active

    def test_cancel_while_cropping(self):
        session = make_session(CaptureMode.PHOTO)
        session.load_photo(Image.new("RGB", (400, 300), "white"))
        session.begin_crop(displayed_size=(200, 150))
        assert session.state == SessionState.CROPPING
        assert session.cancel() == SessionState.IDLE
        assert not session.crop_engine.active
        assert session.still_image is None


class TestAnalyze:

    @pytest.mark.asyncio
    async def test_resolves_and_saves(self):
        library = MemoryLibrary()
        camera = FakeCamera()
        session = make_session(camera=camera, ocr=FakeOcr(OCR_TEXT), library=library,
                               primary=StubCatalog("a", {"9780134685991": EFFECTIVE_JAVA}))
        await session.start_camera()
        await session.capture()
        assert await session.analyze() == SessionState.RESOLVED
        assert session.candidate == "9780134685991"
        assert library.saved == [{"title": "Effective Java", "author": "Joshua Bloch"}]
        assert session.still_image is None
        assert camera.stream.release_calls == 1

    @pytest.mark.asyncio
    async def test_no_isbn_returns_to_photo(self):
        primary = StubCatalog("a")
        session = make_session(CaptureMode.PHOTO, ocr=FakeOcr("no numbers here"), primary=primary)
        session.load_photo(Image.new("RGB", (100, 100), "white"))
        assert await session.analyze() == SessionState.PHOTO_CAPTURED
        assert session.status == STATUS_NO_ISBN
        assert primary.calls == []

    @pytest.mark.asyncio
    async def test_ocr_failure_returns_to_photo(self):
        session = make_session(CaptureMode.PHOTO, ocr=FakeOcr(error=RecognitionFailure("engine crashed")))
        session.load_photo(Image.new("RGB", (100, 100), "white"))
        assert await session.analyze() == SessionState.PHOTO_CAPTURED
        assert isinstance(session.last_error, RecognitionFailure)

    @pytest.mark.asyncio
    async def test_not_found_then_corrected(self):
        fallback = StubCatalog("b", {"0306406152": {"title": "Signals", "authors": ["Pat Author"]}})
        session = make_session(CaptureMode.PHOTO, ocr=FakeOcr(OCR_TEXT), fallback=fallback)
        session.load_photo(Image.new("RGB", (100, 100), "white"))
        assert await session.analyze() == SessionState.NOT_FOUND_MANUAL_ENTRY
        assert session.status == STATUS_NOT_FOUND
        assert session.candidate == "9780134685991"
        assert await session.submit_identifier("0-306-40615-2") == SessionState.RESOLVED
        assert session.record == {"title": "Signals", "author": "Pat Author"}

    @pytest.mark.asyncio
    async def test_storage_failure_keeps_retry_reachable(self):
        session = make_session(CaptureMode.PHOTO, ocr=FakeOcr(OCR_TEXT), library=UnwritableLibrary(),
                               primary=StubCatalog("a", {"9780134685991": EFFECTIVE_JAVA}))
        session.load_photo(Image.new("RGB", (100, 100), "white"))
        assert await session.analyze() == SessionState.PHOTO_CAPTURED
        assert isinstance(session.last_error, PersistenceFailure)
        assert session.status == PersistenceFailure.user_message

    @pytest.mark.asyncio
    async def test_storage_failure_on_typed_isbn(self):
        session = make_session(CaptureMode.MANUAL, library=UnwritableLibrary(),
                               primary=StubCatalog("a", {"9780134685991": EFFECTIVE_JAVA}))
        session.enter_manual()
        assert await session.submit_identifier("9780134685991") == SessionState.MANUAL_ENTRY
        assert isinstance(session.last_error, PersistenceFailure)

    @pytest.mark.asyncio
    async def test_duplicate_is_rejected_before_saving(self):
        library = MemoryLibrary([{"title": "effective java", "author": "JOSHUA BLOCH"}])
        session = make_session(CaptureMode.PHOTO, ocr=FakeOcr(OCR_TEXT), library=library,
                               primary=StubCatalog("a", {"9780134685991": EFFECTIVE_JAVA}))
        session.load_photo(Image.new("RGB", (100, 100), "white"))
        assert await session.analyze() == SessionState.PHOTO_CAPTURED
        assert isinstance(session.last_error, DuplicateRecord)
        assert library.add_calls == 0

    @pytest.mark.asyncio
    async def test_barcode_hint_without_decoder_uses_ocr(self):
        heuristic = MagicMock(spec=BarcodeHeuristic)
        heuristic.detect.return_value = True
        ocr = FakeOcr(OCR_TEXT)
        session = make_session(CaptureMode.PHOTO, ocr=ocr, heuristic=heuristic,
                               primary=StubCatalog("a", {"9780134685991": EFFECTIVE_JAVA}))
        session.load_photo(Image.new("RGB", (100, 100), "white"))
        assert await session.analyze() == SessionState.RESOLVED
        assert ocr.calls == 1

    @pytest.mark.asyncio
    async def test_decoded_barcode_skips_ocr(self):
        heuristic = MagicMock(spec=BarcodeHeuristic)
        heuristic.detect.return_value = True
        decoder = MagicMock()
        decoder.decode.return_value = "9780134685991"
        ocr = FakeOcr("")
        session = make_session(CaptureMode.PHOTO, ocr=ocr, heuristic=heuristic, decoder=decoder,
                               primary=StubCatalog("a", {"9780134685991": EFFECTIVE_JAVA}))
        session.load_photo(Image.new("RGB", (100, 100), "white"))
        assert await session.analyze() == SessionState.RESOLVED
        assert ocr.calls == 0

    @pytest.mark.asyncio
    async def test_decoder_error_falls_back_to_ocr(self):
        heuristic = MagicMock(spec=BarcodeHeuristic)
        heuristic.detect.return_value = True
        decoder = MagicMock()
        decoder.decode.side_effect = RuntimeError("unreadable")
        ocr = FakeOcr(OCR_TEXT)
        session = make_session(CaptureMode.PHOTO, ocr=ocr, heuristic=heuristic, decoder=decoder,
                               primary=StubCatalog("a", {"9780134685991": EFFECTIVE_JAVA}))
        session.load_photo(Image.new("RGB", (100, 100), "white"))
        assert await session.analyze() == SessionState.RESOLVED
        assert ocr.calls == 1

    @pytest.mark.asyncio
    async def test_negative_hint_skips_decoder(self):
        decoder = MagicMock()
        session = make_session(CaptureMode.PHOTO, ocr=FakeOcr("nothing"), heuristic=BarcodeHeuristic(),
                               decoder=decoder)
        session.load_photo(Image.new("RGB", (100, 100), "white"))
        await session.analyze()
        decoder.decode.assert_not_called()


class TestManualEntry:

    @pytest.mark.asyncio
    async def test_manual_isbn(self):
        primary = StubCatalog("a", {"9780134685991": EFFECTIVE_JAVA})
        session = make_session(CaptureMode.MANUAL, primary=primary)
        assert session.enter_manual() == SessionState.MANUAL_ENTRY

        assert await session.submit_identifier("   ") == SessionState.MANUAL_ENTRY
        assert session.status == STATUS_EMPTY_ISBN

        assert await session.submit_identifier("12345") == SessionState.MANUAL_ENTRY
        assert isinstance(session.last_error, InvalidFormat)
        assert primary.calls == []

        assert await session.submit_identifier("ISBN 978-0-13-468599-1") == SessionState.RESOLVED
        assert session.last_error is None

    @pytest.mark.asyncio
    async def test_typed_title_and_author_after_miss(self):
        library = MemoryLibrary()
        session = make_session(CaptureMode.MANUAL, library=library)
        session.enter_manual()
        assert await session.submit_identifier("0306406152") == SessionState.NOT_FOUND_MANUAL_ENTRY
        assert session.add_book("  Signals ", "Pat Author") == SessionState.RESOLVED
        assert library.saved == [{"title": "Signals", "author": "Pat Author"}]

    def test_add_book_needs_both_fields(self):
        session = make_session(CaptureMode.MANUAL)
        session.enter_manual()
        with pytest.raises(InvalidFormat):
            session.add_book("Signals", " ")
        assert session.state == SessionState.MANUAL_ENTRY

    def test_add_book_duplicate_raises(self):
        library = MemoryLibrary([{"title": "Signals", "author": "Pat Author"}])
        session = make_session(CaptureMode.MANUAL, library=library)
        session.enter_manual()
        with pytest.raises(DuplicateRecord):
            session.add_book("SIGNALS", "pat author")
        assert library.add_calls == 0
