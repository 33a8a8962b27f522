from isbn_scanner.ocr.engine import OcrEngine, encode_jpeg, preprocess_for_isbn

__all__ = ["OcrEngine", "encode_jpeg", "preprocess_for_isbn"]
