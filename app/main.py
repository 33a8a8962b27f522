import io
from functools import lru_cache
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, File, Form, HTTPException, UploadFile
from fastapi.responses import JSONResponse
from PIL import Image, UnidentifiedImageError
from pydantic import BaseModel

from isbn_scanner import __version__
from isbn_scanner.config import Settings
from isbn_scanner.core.barcode import BarcodeHeuristic, ZXingDecoder
from isbn_scanner.core.crop import CropEngine
from isbn_scanner.core.isbn import IdentifierExtractor
from isbn_scanner.core.resolver import BibliographicResolver
from isbn_scanner.core.session import CaptureMode, CaptureSession
from isbn_scanner.errors import DuplicateRecord, InvalidFormat, ScannerError
from isbn_scanner.library import JsonLibrary, Library, add_unique
from isbn_scanner.ocr.engine import OcrEngine


class LookupRequest(BaseModel):
    isbn: str


class LookupResponse(BaseModel):
    isbn: str
    found: bool
    title: Optional[str] = None
    author: Optional[str] = None
    provider: Optional[str] = None


class ExtractRequest(BaseModel):
    text: str


class BookRequest(BaseModel):
    title: str
    author: str


class AnalyzeResponse(BaseModel):
    state: str
    status: str
    isbn: Optional[str] = None
    book: Optional[Dict[str, str]] = None
    error: Optional[str] = None


app = FastAPI(title="ISBN Scanner API", version=__version__)


@lru_cache
def get_settings() -> Settings:
    return Settings.from_env()


def get_resolver(settings: Settings = Depends(get_settings)) -> BibliographicResolver:
    return BibliographicResolver.from_settings(settings)


def get_library(settings: Settings = Depends(get_settings)) -> Library:
    return JsonLibrary(settings.library_path)


def get_ocr(settings: Settings = Depends(get_settings)) -> OcrEngine:
    return OcrEngine(settings.ocr_engine, language=settings.ocr_language, quality=settings.image_quality)


def get_heuristic(settings: Settings = Depends(get_settings)) -> BarcodeHeuristic:
    return BarcodeHeuristic(settings.barcode_threshold, settings.barcode_width_ratio, settings.barcode_height_ratio)


def get_decoder() -> Optional[ZXingDecoder]:
    return ZXingDecoder()


@app.get("/")
async def root():
    return {"status": "ok", "version": __version__}


@app.post("/lookup", response_model=LookupResponse)
async def lookup(req: LookupRequest, resolver: BibliographicResolver = Depends(get_resolver)):
    try:
        result = await resolver.resolve(req.isbn)
    except InvalidFormat as exc:
        raise HTTPException(status_code=422, detail=exc.user_message)
    return LookupResponse(
        isbn=result.identifier,
        found=result.found,
        title=result.title,
        author=result.author,
        provider=result.provider,
    )


@app.post("/extract")
async def extract(req: ExtractRequest):
    candidate = IdentifierExtractor().extract_candidate(req.text)
    if candidate is None:
        raise HTTPException(status_code=404, detail="No ISBN found in text")
    return {"isbn": candidate.value, "rule": candidate.rule}


@app.post("/analyze", response_model=AnalyzeResponse)
async def analyze(
    image: UploadFile = File(...),
    left: Optional[float] = Form(None),
    top: Optional[float] = Form(None),
    width: Optional[float] = Form(None),
    height: Optional[float] = Form(None),
    displayed_width: Optional[float] = Form(None),
    displayed_height: Optional[float] = Form(None),
    resolver: BibliographicResolver = Depends(get_resolver),
    library: Library = Depends(get_library),
    ocr: OcrEngine = Depends(get_ocr),
    heuristic: BarcodeHeuristic = Depends(get_heuristic),
    decoder: Optional[ZXingDecoder] = Depends(get_decoder),
    settings: Settings = Depends(get_settings),
):
    """
    Run the photo flow on an uploaded image. A crop box, in the coordinates
    of the displayed image, may be passed alongside it.
    """
    try:
        photo = Image.open(io.BytesIO(await image.read()))
        photo.load()
    except (UnidentifiedImageError, OSError):
        raise HTTPException(status_code=400, detail="Could not read the uploaded image")

    session = CaptureSession(
        CaptureMode.PHOTO,
        resolver=resolver,
        library=library,
        ocr=ocr,
        heuristic=heuristic,
        decoder=decoder,
        crop_engine=CropEngine(settings.crop_min_size),
    )
    async with session:
        session.load_photo(photo)
        if None not in (left, top, width, height):
            displayed = None
            if displayed_width and displayed_height:
                displayed = (displayed_width, displayed_height)
            session.crop_to(left, top, width, height, displayed)
        await session.analyze()

    book = session.record or (session.result.as_record() if session.result and session.result.found else None)
    return AnalyzeResponse(
        state=session.state.value,
        status=session.status,
        isbn=session.candidate,
        book=book,
        error=session.last_error.category if session.last_error else None,
    )


@app.get("/books")
async def list_books(library: Library = Depends(get_library)) -> List[Dict[str, Any]]:
    return library.records()


@app.post("/books", status_code=201)
async def add_book(req: BookRequest, library: Library = Depends(get_library)):
    title, author = req.title.strip(), req.author.strip()
    if not title or not author:
        raise HTTPException(status_code=422, detail="Please enter both a title and an author.")
    try:
        return add_unique(library, title, author)
    except DuplicateRecord as exc:
        raise HTTPException(status_code=409, detail=exc.user_message)


@app.get("/search")
async def search(title: str, resolver: BibliographicResolver = Depends(get_resolver)):
    results = await resolver.search_by_title(title)
    if not results:
        raise HTTPException(status_code=404, detail="No books found with that title. Please enter details manually.")
    return {"results": results}


@app.exception_handler(ScannerError)
async def scanner_error_handler(request, exc: ScannerError):
    return JSONResponse(status_code=502, content={"error": exc.category, "detail": exc.user_message})


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("app.main:app", host="127.0.0.1", port=8000)
