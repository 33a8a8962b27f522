"""
The capture-to-resolution workflow.

A `CaptureSession` is created when the user opens the scan flow and owns
everything the flow needs: the camera stream (at most one, released on every
way out), the still photo, the crop selection and the last error. Every
transition method returns the state it left the session in.
"""

import asyncio
import enum
import logging
from typing import Any, Dict, List, Optional, Tuple

from PIL import Image

from isbn_scanner.core.barcode import BarcodeDecoder, BarcodeHeuristic
from isbn_scanner.core.crop import CropEngine, CropRegion
from isbn_scanner.core.isbn import IdentifierExtractor, is_valid, normalize
from isbn_scanner.core.resolver import BibliographicResolver, ResolutionResult
from isbn_scanner.devices.camera import FrameSource, StreamHandle
from isbn_scanner.errors import (
    CaptureFailure,
    DeviceError,
    DuplicateRecord,
    InvalidFormat,
    PersistenceFailure,
    RecognitionFailure,
    ScannerError,
)
from isbn_scanner.library import Library, add_unique
from isbn_scanner.ocr.engine import OcrEngine

logger = logging.getLogger(__name__)


class CaptureMode(str, enum.Enum):
    CAMERA_SCAN = "camera-scan"
    PHOTO = "photo"
    MANUAL = "manual"


class SessionState(str, enum.Enum):
    IDLE = "idle"
    CAMERA_ACTIVE = "camera_active"
    PHOTO_CAPTURED = "photo_captured"
    CROPPING = "cropping"
    ANALYZING = "analyzing"
    RESOLVED = "resolved"
    NOT_FOUND_MANUAL_ENTRY = "not_found_manual_entry"
    MANUAL_ENTRY = "manual_entry"


class InvalidTransition(RuntimeError):
    pass


STATUS_READY = "Ready to capture."
STATUS_CAMERA_READY = "Camera ready. Take a photo to capture the ISBN."
STATUS_CAPTURED = "Photo captured. You can crop it before analyzing."
STATUS_NO_ISBN = "No ISBN found in photo. Try another photo or enter manually."
STATUS_NOT_FOUND = "Book not found in database. You can enter details manually."
STATUS_EMPTY_ISBN = "Please enter an ISBN."


class CaptureSession:

    def __init__(
        self,
        mode: CaptureMode = CaptureMode.PHOTO,
        *,
        resolver: BibliographicResolver,
        library: Library,
        camera: Optional[FrameSource] = None,
        ocr: Optional[OcrEngine] = None,
        extractor: Optional[IdentifierExtractor] = None,
        heuristic: Optional[BarcodeHeuristic] = None,
        decoder: Optional[BarcodeDecoder] = None,
        crop_engine: Optional[CropEngine] = None,
        origin: Optional[str] = None,
    ):
        self.mode = CaptureMode(mode)
        self.resolver = resolver
        self.library = library
        self.camera = camera
        self.ocr = ocr
        self.extractor = extractor or IdentifierExtractor()
        self.heuristic = heuristic
        self.decoder = decoder
        self.crop_engine = crop_engine or CropEngine()
        self.origin = origin

        self.state = SessionState.IDLE
        self.stream: Optional[StreamHandle] = None
        self.still_image: Optional[Image.Image] = None
        self.candidate: Optional[str] = None
        self.result: Optional[ResolutionResult] = None
        self.record: Optional[Dict[str, Any]] = None
        self.last_error: Optional[ScannerError] = None
        self.status = STATUS_READY

    async def __aenter__(self) -> "CaptureSession":
        return self

    async def __aexit__(self, *exc_info) -> None:
        self.close()

    # -------------------- helpers --------------------

    @property
    def crop_region(self) -> Optional[CropRegion]:
        return self.crop_engine.region

    @property
    def holds_stream(self) -> bool:
        return self.stream is not None

    def _expect(self, *states: SessionState) -> None:
        if self.state not in states:
            allowed = ", ".join(s.value for s in states)
            raise InvalidTransition(f"{self.state.value} is not one of: {allowed}")

    def _transition(self, state: SessionState, status: Optional[str] = None) -> SessionState:
        if state != self.state:
            logger.info("Session %s -> %s", self.state.value, state.value)
        self.state = state
        if status is not None:
            self.status = status
        return state

    def _fail(self, error: ScannerError, state: SessionState) -> SessionState:
        logger.warning("%s: %s", error.category, error)
        self.last_error = error
        return self._transition(state, error.user_message)

    def _release_stream(self) -> None:
        handle, self.stream = self.stream, None
        if handle is not None:
            handle.release()

    def _teardown(self) -> None:
        self._release_stream()
        if self.crop_engine.active:
            self.crop_engine.end()
        self.still_image = None

    # -------------------- camera --------------------

    async def start_camera(self) -> SessionState:
        """Acquire the camera. On failure the session stays idle with `last_error` set."""
        self._expect(SessionState.IDLE)
        if self.camera is None:
            raise InvalidTransition("no camera configured for this session")
        self._release_stream()
        self.last_error = None
        try:
            self.stream = await self.camera.acquire(self.origin)
        except DeviceError as exc:
            return self._fail(exc, SessionState.IDLE)
        return self._transition(SessionState.CAMERA_ACTIVE, STATUS_CAMERA_READY)

    async def capture(self) -> SessionState:
        """Snapshot the current frame and let go of the camera straight away."""
        self._expect(SessionState.CAMERA_ACTIVE)
        try:
            image = await self.stream.snapshot()
        except CaptureFailure as exc:
            return self._fail(exc, SessionState.CAMERA_ACTIVE)
        self._release_stream()
        self.still_image = image
        self.last_error = None
        return self._transition(SessionState.PHOTO_CAPTURED, STATUS_CAPTURED)

    async def retake(self) -> SessionState:
        self._expect(SessionState.PHOTO_CAPTURED, SessionState.NOT_FOUND_MANUAL_ENTRY)
        self.still_image = None
        self.candidate = None
        self._transition(SessionState.IDLE)
        return await self.start_camera()

    def load_photo(self, image: Image.Image) -> SessionState:
        """Use an existing photo instead of the camera."""
        self._expect(SessionState.IDLE)
        self.still_image = image
        self.last_error = None
        return self._transition(SessionState.PHOTO_CAPTURED, STATUS_CAPTURED)

    # -------------------- cropping --------------------

    def begin_crop(self, displayed_size: Optional[Tuple[float, float]] = None,
                   initial_ratio: Optional[float] = None) -> CropRegion:
        self._expect(SessionState.PHOTO_CAPTURED)
        if initial_ratio is None:
            region = self.crop_engine.begin(self.still_image, displayed_size=displayed_size)
        else:
            region = self.crop_engine.begin(self.still_image, initial_ratio, displayed_size)
        self._transition(SessionState.CROPPING, "Drag or resize the selection, then confirm.")
        return region

    def drag_crop(self, dx: float, dy: float) -> CropRegion:
        self._expect(SessionState.CROPPING)
        return self.crop_engine.drag(dx, dy)

    def resize_crop(self, handle: str, dx: float, dy: float) -> CropRegion:
        self._expect(SessionState.CROPPING)
        return self.crop_engine.resize(handle, dx, dy)

    def confirm_crop(self) -> SessionState:
        self._expect(SessionState.CROPPING)
        self.still_image = self.crop_engine.commit()
        return self._transition(SessionState.PHOTO_CAPTURED, "Photo cropped. Ready to analyze.")

    def crop_to(self, left: float, top: float, width: float, height: float,
                displayed_size: Optional[Tuple[float, float]] = None) -> SessionState:
        """
        Crop to a known box in one go, through the same clamped gestures:
        shrink to the target size, move the corner onto the target, then grow
        back to the target size in case the first resize ran out of room.
        """
        region = self.begin_crop(displayed_size=displayed_size)
        region = self.resize_crop("se", width - region.width, height - region.height)
        region = self.drag_crop(left - region.left, top - region.top)
        self.resize_crop("se", left + width - region.right, top + height - region.bottom)
        return self.confirm_crop()

    def cancel_crop(self) -> SessionState:
        self._expect(SessionState.CROPPING)
        self.crop_engine.end()
        return self._transition(SessionState.PHOTO_CAPTURED, STATUS_CAPTURED)

    # -------------------- analysis --------------------

    async def _decode_barcode(self, image: Image.Image) -> Optional[str]:
        if self.heuristic is None or not self.heuristic.detect(image):
            return None
        if self.decoder is None:
            return None
        try:
            decoded = await asyncio.to_thread(self.decoder.decode, image)
        except Exception as exc:
            logger.info("Barcode decoding failed, falling back to OCR: %s", exc)
            return None
        if decoded and is_valid(decoded):
            return normalize(decoded)
        return None

    async def analyze(self) -> SessionState:
        """
        Find an ISBN in the still photo and resolve it.

        A decodable barcode skips OCR entirely. When no ISBN is found the
        session goes back to PHOTO_CAPTURED so the user can retry.
        """
        self._expect(SessionState.PHOTO_CAPTURED)
        self.last_error = None
        self._transition(SessionState.ANALYZING, "Analyzing photo for ISBN...")
        image = self.still_image

        identifier = await self._decode_barcode(image)
        if identifier is None:
            if self.ocr is None:
                raise InvalidTransition("no OCR engine configured for this session")
            self.status = "Scanning image for ISBN text..."
            try:
                text = await self.ocr.recognize(image)
            except RecognitionFailure as exc:
                return self._fail(exc, SessionState.PHOTO_CAPTURED)
            logger.debug("OCR text: %r", text)
            identifier = self.extractor.extract(text)

        if identifier is None:
            return self._transition(SessionState.PHOTO_CAPTURED, STATUS_NO_ISBN)
        return await self._resolve(identifier, SessionState.PHOTO_CAPTURED)

    async def _resolve(self, identifier: str, fallback: SessionState) -> SessionState:
        self.candidate = identifier
        self._transition(SessionState.ANALYZING, f"Fetching book details for ISBN: {identifier}...")
        result = await self.resolver.resolve(identifier)
        self.result = result
        if not result.found:
            return self._transition(SessionState.NOT_FOUND_MANUAL_ENTRY, STATUS_NOT_FOUND)
        try:
            return self.add_book(result.title, result.author)
        except (DuplicateRecord, PersistenceFailure) as exc:
            return self._fail(exc, fallback)

    # -------------------- manual paths --------------------

    def enter_manual(self) -> SessionState:
        self._expect(SessionState.IDLE)
        self.last_error = None
        return self._transition(SessionState.MANUAL_ENTRY, "Enter an ISBN-10 or ISBN-13.")

    async def submit_identifier(self, raw: str) -> SessionState:
        """
        Resolve a typed (or corrected) ISBN. Shape validation happens before
        any catalog is contacted.
        """
        self._expect(SessionState.MANUAL_ENTRY, SessionState.NOT_FOUND_MANUAL_ENTRY)
        fallback = self.state
        identifier = normalize(raw)
        if not identifier:
            self.status = STATUS_EMPTY_ISBN
            return self.state
        if not is_valid(identifier):
            return self._fail(InvalidFormat(f"not an ISBN-10/ISBN-13: {raw!r}"), fallback)
        self.last_error = None
        return await self._resolve(identifier, fallback)

    def add_book(self, title: str, author: str) -> SessionState:
        """
        Add a title/author pair to the library, either resolved or typed in.
        The session is torn down on success.
        """
        if self.state == SessionState.RESOLVED:
            raise InvalidTransition("session already resolved")
        title, author = (title or "").strip(), (author or "").strip()
        if not title or not author:
            raise InvalidFormat("title and author are both required",
                                user_message="Please enter both a title and an author.")
        self.record = add_unique(self.library, title, author)
        self._teardown()
        return self._transition(SessionState.RESOLVED, f'Book added: "{title}" by {author}')

    async def search_by_title(self, title: str) -> List[Dict[str, Any]]:
        return await self.resolver.search_by_title(title)

    # -------------------- exits --------------------

    def cancel(self) -> SessionState:
        """Back to idle from anywhere; the camera is released if held."""
        self._teardown()
        self.candidate = None
        self.result = None
        self.last_error = None
        return self._transition(SessionState.IDLE, STATUS_READY)

    def close(self) -> None:
        self._teardown()
