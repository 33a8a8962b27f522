import logging
from typing import Optional, Protocol

import numpy as np
import zxingcpp
from PIL import Image

from isbn_scanner.config import BARCODE_MIN_HEIGHT_RATIO, BARCODE_MIN_WIDTH_RATIO, BARCODE_THRESHOLD
from isbn_scanner.core.isbn import IdentifierExtractor, is_valid, normalize

logger = logging.getLogger(__name__)


class BarcodeDecoder(Protocol):
    def decode(self, image: Image.Image) -> Optional[str]:
        ...


class BarcodeHeuristic:
    """
    Coarse test for a barcode-like block of dark rows.

    This never reads a value. A positive answer only means a decoder is worth
    trying before falling back to OCR.
    """

    def __init__(self, threshold: int = BARCODE_THRESHOLD, width_ratio: float = BARCODE_MIN_WIDTH_RATIO,
                 height_ratio: float = BARCODE_MIN_HEIGHT_RATIO):
        self.threshold = threshold
        self.width_ratio = width_ratio
        self.height_ratio = height_ratio

    def dense_rows(self, image: Image.Image) -> np.ndarray:
        pixels = np.asarray(image.convert("RGB"), dtype=np.float32)
        luminance = pixels.sum(axis=2) / 3.0
        dark_per_row = (luminance < self.threshold).sum(axis=1)
        width = pixels.shape[1]
        return np.flatnonzero(dark_per_row > width * self.width_ratio)

    def detect(self, image: Image.Image) -> bool:
        rows = self.dense_rows(image)
        if rows.size == 0:
            return False
        span = int(rows[-1] - rows[0])
        hint = span > image.height * self.height_ratio
        if hint:
            logger.info("Barcode-like band spanning %d rows", span)
        return hint


class ZXingDecoder:
    """Decoder adapter over zxing-cpp returning the first ISBN-shaped payload."""

    def __init__(self):
        self.extractor = IdentifierExtractor()

    def decode(self, image: Image.Image) -> Optional[str]:
        results = zxingcpp.read_barcodes(image.convert("RGB"))
        for res in results:
            raw = (res.text or "").strip()
            cleaned = normalize(raw)
            if is_valid(cleaned):
                return cleaned
            found = self.extractor.extract(raw)
            if found:
                return found
        return None

