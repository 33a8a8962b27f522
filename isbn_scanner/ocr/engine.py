import asyncio
import io
import logging
from typing import List, Tuple

import cv2
import numpy as np
import pytesseract
from PIL import Image, ImageFilter

from isbn_scanner.config import IMAGE_QUALITY
from isbn_scanner.errors import RecognitionFailure

logger = logging.getLogger(__name__)

OCR_ENGINES = ("tesseract", "easyocr")


def encode_jpeg(image: Image.Image, quality: int = IMAGE_QUALITY) -> bytes:
    buf = io.BytesIO()
    image.convert("RGB").save(buf, format="JPEG", quality=quality)
    return buf.getvalue()


def preprocess_for_isbn(image: Image.Image) -> Tuple[np.ndarray, List[str]]:
    """
    Grayscale, upscale, denoise, CLAHE and a gentle sharpen.

    Small printed digits under a barcode read much better after this chain.
    """
    steps = ["original"]
    gray = cv2.cvtColor(np.asarray(image.convert("RGB")), cv2.COLOR_RGB2GRAY)
    steps.append("grayscale")
    h, w = gray.shape[:2]
    gray = cv2.resize(gray, (int(w * 1.5), int(h * 1.5)), interpolation=cv2.INTER_CUBIC)
    steps.append("resize(1.5x)")
    gray = cv2.GaussianBlur(gray, (3, 3), 5)
    steps.append("denoise")
    clahe = cv2.createCLAHE(clipLimit=2.0, tileGridSize=(8, 8))
    gray = clahe.apply(gray)
    steps.append("clahe")
    sharpened = Image.fromarray(gray).filter(ImageFilter.UnsharpMask(radius=1.0, percent=20, threshold=3))
    steps.append("sharpen(0.2)")
    return np.array(sharpened), steps


class OcrEngine:
    """Runs tesseract or easyocr on a still image and returns the raw text."""

    _easyocr_reader = None

    def __init__(self, engine: str = "tesseract", language: str = "eng", use_preprocessing: bool = True,
                 quality: int = IMAGE_QUALITY):
        self.engine = engine.lower()
        if self.engine not in OCR_ENGINES:
            raise ValueError(f"Unknown OCR engine: {engine}")
        self.language = language
        self.use_preprocessing = use_preprocessing
        self.quality = quality

    def _easy_reader(self):
        if OcrEngine._easyocr_reader is None:
            import easyocr
            # easyocr uses two-letter codes
            OcrEngine._easyocr_reader = easyocr.Reader([self.language[:2]])
        return OcrEngine._easyocr_reader

    def recognize_sync(self, image: Image.Image) -> str:
        try:
            encoded = Image.open(io.BytesIO(encode_jpeg(image, self.quality)))
            if self.use_preprocessing:
                pixels, steps = preprocess_for_isbn(encoded)
                logger.debug("Preprocessing steps: %s", ", ".join(steps))
            else:
                pixels = np.asarray(encoded.convert("RGB"))
            if self.engine == "easyocr":
                results = self._easy_reader().readtext(pixels)
                return " ".join(r[1] for r in results)
            return pytesseract.image_to_string(Image.fromarray(pixels), lang=self.language)
        except Exception as exc:
            raise RecognitionFailure(f"{self.engine} failed: {exc}") from exc

    async def recognize(self, image: Image.Image) -> str:
        text = await asyncio.to_thread(self.recognize_sync, image)
        logger.info("OCR produced %d characters", len(text))
        return text


