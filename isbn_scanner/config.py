import os
from dataclasses import dataclass, field
from typing import Optional, Tuple


FETCH_TIMEOUT_SECONDS = 8.0

GOOGLE_BOOKS_API = "https://www.googleapis.com/books/v1/volumes"
OPEN_LIBRARY_API = "https://openlibrary.org/api/books"
OPEN_LIBRARY_SEARCH_API = "https://openlibrary.org/search.json"

SEARCH_RESULT_LIMIT = 5
DISPLAY_RESULT_LIMIT = 3

CAMERA_CONSTRAINTS = {
    "facing_mode": "environment",
    "ideal_width": 1280,
    "ideal_height": 720,
    "audio": False,
}

SECURE_SCHEMES = ("https", "file")
SECURE_HOSTS = ("localhost", "127.0.0.1")

IMAGE_QUALITY = 90

CROP_INITIAL_SIZE_RATIO = 0.7
CROP_MIN_WIDTH = 50
CROP_MIN_HEIGHT = 50

BARCODE_THRESHOLD = 100
BARCODE_MIN_WIDTH_RATIO = 0.2
BARCODE_MIN_HEIGHT_RATIO = 0.1


def _env(name: str, default: Optional[str] = None) -> Optional[str]:
    value = os.getenv(f"ISBN_SCANNER_{name}")
    return value if value not in (None, "") else default


@dataclass
class Settings:
    fetch_timeout: float = FETCH_TIMEOUT_SECONDS
    google_books_api: str = GOOGLE_BOOKS_API
    google_books_api_key: Optional[str] = None
    open_library_api: str = OPEN_LIBRARY_API
    open_library_search_api: str = OPEN_LIBRARY_SEARCH_API
    ocr_engine: str = "tesseract"
    ocr_language: str = "eng"
    image_quality: int = IMAGE_QUALITY
    crop_min_size: Tuple[int, int] = (CROP_MIN_WIDTH, CROP_MIN_HEIGHT)
    barcode_threshold: int = BARCODE_THRESHOLD
    barcode_width_ratio: float = BARCODE_MIN_WIDTH_RATIO
    barcode_height_ratio: float = BARCODE_MIN_HEIGHT_RATIO
    camera_index: int = 0
    library_path: str = field(default_factory=lambda: os.path.join(os.getcwd(), "data", "library.json"))

    @classmethod
    def from_env(cls, dotenv: bool = True) -> "Settings":
        """
        Build settings from ISBN_SCANNER_* environment variables.

        A .env file in the working directory is loaded first when present.
        GOOGLE_BOOKS_API_KEY is honoured as well so existing keys keep working.
        """
        if dotenv:
            from dotenv import load_dotenv
            load_dotenv()
        defaults = cls()
        return cls(
            fetch_timeout=float(_env("FETCH_TIMEOUT", str(defaults.fetch_timeout))),
            google_books_api=_env("GOOGLE_BOOKS_API", defaults.google_books_api),
            google_books_api_key=_env("GOOGLE_BOOKS_API_KEY") or os.getenv("GOOGLE_BOOKS_API_KEY"),
            open_library_api=_env("OPEN_LIBRARY_API", defaults.open_library_api),
            open_library_search_api=_env("OPEN_LIBRARY_SEARCH_API", defaults.open_library_search_api),
            ocr_engine=_env("OCR_ENGINE", defaults.ocr_engine).lower(),
            ocr_language=_env("OCR_LANGUAGE", defaults.ocr_language),
            image_quality=int(_env("IMAGE_QUALITY", str(defaults.image_quality))),
            crop_min_size=(int(_env("CROP_MIN_WIDTH", str(defaults.crop_min_size[0]))),
                           int(_env("CROP_MIN_HEIGHT", str(defaults.crop_min_size[1])))),
            barcode_threshold=int(_env("BARCODE_THRESHOLD", str(defaults.barcode_threshold))),
            barcode_width_ratio=float(_env("BARCODE_WIDTH_RATIO", str(defaults.barcode_width_ratio))),
            barcode_height_ratio=float(_env("BARCODE_HEIGHT_RATIO", str(defaults.barcode_height_ratio))),
            camera_index=int(_env("CAMERA_INDEX", str(defaults.camera_index))),
            library_path=_env("LIBRARY_PATH", defaults.library_path),
        )
