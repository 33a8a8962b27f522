import argparse
import asyncio
import json
import logging
import sys
from typing import Any, Dict

from PIL import Image

from isbn_scanner.config import Settings
from isbn_scanner.core.barcode import BarcodeHeuristic, ZXingDecoder
from isbn_scanner.core.crop import CropEngine
from isbn_scanner.core.isbn import IdentifierExtractor
from isbn_scanner.core.resolver import BibliographicResolver
from isbn_scanner.core.session import CaptureMode, CaptureSession, SessionState
from isbn_scanner.devices.camera import Camera
from isbn_scanner.errors import ScannerError
from isbn_scanner.library import JsonLibrary, add_unique
from isbn_scanner.ocr.engine import OCR_ENGINES, OcrEngine


def _print(obj: Any) -> None:
    print(json.dumps(obj, indent=2, ensure_ascii=False))


def _session_summary(session: CaptureSession) -> Dict[str, Any]:
    out: Dict[str, Any] = {
        "state": session.state.value,
        "status": session.status,
        "isbn": session.candidate,
    }
    if session.record:
        out["book"] = session.record
    elif session.result and session.result.found:
        out["book"] = session.result.as_record()
    if session.last_error:
        out["error"] = session.last_error.category
    return out


def build_session(args, settings: Settings, mode: CaptureMode) -> CaptureSession:
    return CaptureSession(
        mode,
        resolver=BibliographicResolver.from_settings(settings),
        library=JsonLibrary(settings.library_path),
        camera=Camera(settings.camera_index),
        ocr=OcrEngine(args.ocr_engine or settings.ocr_engine, language=settings.ocr_language,
                      quality=settings.image_quality),
        heuristic=BarcodeHeuristic(settings.barcode_threshold, settings.barcode_width_ratio,
                                   settings.barcode_height_ratio),
        decoder=None if args.no_barcode else ZXingDecoder(),
        crop_engine=CropEngine(settings.crop_min_size),
        origin="file://",
    )


def cmd_lookup(args, settings: Settings) -> int:
    resolver = BibliographicResolver.from_settings(settings)
    result = asyncio.run(resolver.resolve(args.isbn))
    _print({
        "isbn": result.identifier,
        "found": result.found,
        "title": result.title,
        "author": result.author,
        "provider": result.provider,
    })
    return 0 if result.found else 1


def cmd_extract(args, settings: Settings) -> int:
    if args.file:
        with open(args.file, "r", encoding="utf-8") as f:
            text = f.read()
    else:
        text = " ".join(args.text or [])
    candidate = IdentifierExtractor().extract_candidate(text)
    if candidate is None:
        print("No ISBN found", file=sys.stderr)
        return 1
    _print({"isbn": candidate.value, "rule": candidate.rule})
    return 0


def cmd_photo(args, settings: Settings) -> int:
    image = Image.open(args.image)
    image.load()

    async def run() -> CaptureSession:
        session = build_session(args, settings, CaptureMode.PHOTO)
        async with session:
            session.load_photo(image)
            if args.crop:
                session.crop_to(*args.crop)
            await session.analyze()
        return session

    session = asyncio.run(run())
    _print(_session_summary(session))
    return 0 if session.state == SessionState.RESOLVED else 1


def cmd_scan(args, settings: Settings) -> int:
    async def run() -> CaptureSession:
        session = build_session(args, settings, CaptureMode.CAMERA_SCAN)
        async with session:
            await session.start_camera()
            if session.state != SessionState.CAMERA_ACTIVE:
                return session
            await asyncio.to_thread(input, "Camera ready. Press Enter to take a photo...")
            await session.capture()
            if session.state == SessionState.PHOTO_CAPTURED:
                await session.analyze()
            if session.state == SessionState.NOT_FOUND_MANUAL_ENTRY and sys.stdin.isatty():
                corrected = await asyncio.to_thread(input, f"ISBN {session.candidate} not found. Correct it (blank to skip): ")
                if corrected.strip():
                    await session.submit_identifier(corrected)
        return session

    session = asyncio.run(run())
    _print(_session_summary(session))
    return 0 if session.state == SessionState.RESOLVED else 1


def cmd_search(args, settings: Settings) -> int:
    resolver = BibliographicResolver.from_settings(settings)
    results = asyncio.run(resolver.search_by_title(" ".join(args.title)))
    if not results:
        print("No books found with that title. Please enter details manually.", file=sys.stderr)
        return 1
    _print(results)
    return 0


def cmd_books(args, settings: Settings) -> int:
    library = JsonLibrary(settings.library_path)
    if args.action == "add":
        if not args.title or not args.author:
            print("--title and --author are required", file=sys.stderr)
            return 2
        try:
            record = add_unique(library, args.title, args.author)
        except ScannerError as exc:
            print(exc.user_message, file=sys.stderr)
            return 1
        _print(record)
        return 0
    _print(library.records())
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Find a book's ISBN and resolve it to a title and author")
    p.add_argument("--library", type=str, help="Path to the library JSON file")
    p.add_argument("--timeout", type=float, help="Per-catalog timeout in seconds")
    p.add_argument("--verbose", "-v", action="store_true")
    sub = p.add_subparsers(dest="cmd", required=True)

    def add_capture_options(sp):
        sp.add_argument("--ocr-engine", choices=list(OCR_ENGINES), default=None)
        sp.add_argument("--no-barcode", action="store_true", help="Skip barcode decoding and go straight to OCR")

    sp = sub.add_parser("lookup", help="Resolve an ISBN")
    sp.add_argument("isbn")
    sp.set_defaults(func=cmd_lookup)

    sp = sub.add_parser("extract", help="Extract an ISBN from text")
    sp.add_argument("text", nargs="*")
    sp.add_argument("--file", "-f", type=str)
    sp.set_defaults(func=cmd_extract)

    sp = sub.add_parser("photo", help="Find and resolve the ISBN in a photo")
    sp.add_argument("image")
    sp.add_argument("--crop", type=float, nargs=4, metavar=("LEFT", "TOP", "WIDTH", "HEIGHT"))
    add_capture_options(sp)
    sp.set_defaults(func=cmd_photo)

    sp = sub.add_parser("scan", help="Take a photo with the camera and resolve its ISBN")
    sp.add_argument("--camera-index", type=int)
    add_capture_options(sp)
    sp.set_defaults(func=cmd_scan)

    sp = sub.add_parser("search", help="Search a book by title")
    sp.add_argument("title", nargs="+")
    sp.set_defaults(func=cmd_search)

    sp = sub.add_parser("books", help="List or add library records")
    sp.add_argument("action", choices=["list", "add"], nargs="?", default="list")
    sp.add_argument("--title", type=str)
    sp.add_argument("--author", type=str)
    sp.set_defaults(func=cmd_books)

    return p


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    settings = Settings.from_env()
    if args.library:
        settings.library_path = args.library
    if args.timeout:
        settings.fetch_timeout = args.timeout
    if getattr(args, "camera_index", None) is not None:
        settings.camera_index = args.camera_index
    try:
        return args.func(args, settings)
    except ScannerError as exc:
        print(exc.user_message, file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
