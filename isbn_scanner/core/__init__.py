from isbn_scanner.core.barcode import BarcodeHeuristic, ZXingDecoder
from isbn_scanner.core.crop import CropEngine, CropRegion, drag_region, resize_region
from isbn_scanner.core.isbn import IdentifierExtractor, extract_isbn, is_valid, normalize, to_isbn10
from isbn_scanner.core.resolver import BibliographicResolver, ResolutionResult
from isbn_scanner.core.session import CaptureMode, CaptureSession, SessionState

__all__ = [
    "BarcodeHeuristic",
    "ZXingDecoder",
    "CropEngine",
    "CropRegion",
    "drag_region",
    "resize_region",
    "IdentifierExtractor",
    "extract_isbn",
    "is_valid",
    "normalize",
    "to_isbn10",
    "BibliographicResolver",
    "ResolutionResult",
    "CaptureMode",
    "CaptureSession",
    "SessionState",
]
