import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Dict, List, Optional, Protocol, Set, Tuple

from isbn_scanner.config import DISPLAY_RESULT_LIMIT, FETCH_TIMEOUT_SECONDS, Settings
from isbn_scanner.core.isbn import is_valid, normalize, to_isbn10
from isbn_scanner.errors import InvalidFormat, Timeout
from isbn_scanner.providers import GoogleBooksProvider, OpenLibraryProvider

logger = logging.getLogger(__name__)

UNKNOWN_TITLE = "Unknown Title"
UNKNOWN_AUTHOR = "Unknown Author"


class Catalog(Protocol):
    name: str

    async def lookup(self, isbn: str) -> Optional[Dict[str, Any]]:
        ...


@dataclass(frozen=True)
class ResolutionResult:
    identifier: str
    title: Optional[str] = None
    author: Optional[str] = None
    provider: Optional[str] = None
    matched_identifier: Optional[str] = None

    @property
    def found(self) -> bool:
        return self.title is not None

    @classmethod
    def not_found(cls, identifier: str) -> "ResolutionResult":
        return cls(identifier=identifier)

    @classmethod
    def from_metadata(cls, identifier: str, metadata: Dict[str, Any], provider: str,
                      matched_identifier: str) -> "ResolutionResult":
        authors = metadata.get("authors") or []
        return cls(
            identifier=identifier,
            title=metadata.get("title") or UNKNOWN_TITLE,
            author=authors[0] if authors else UNKNOWN_AUTHOR,
            provider=provider,
            matched_identifier=matched_identifier,
        )

    def as_record(self) -> Dict[str, str]:
        return {"title": self.title, "author": self.author}


def _discard_late_result(task: "asyncio.Future[Any]") -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.debug("Abandoned lookup finished late with error: %s", exc)
    else:
        logger.debug("Abandoned lookup finished late; result discarded")


async def bounded_wait(awaitable: Awaitable[Any], timeout: float, abandoned: Optional[Set[asyncio.Future]] = None) -> Any:
    """
    Await `awaitable` for at most `timeout` seconds.

    On expiry the call is left running in the background rather than
    cancelled, and whatever it eventually returns is dropped.
    """
    task = asyncio.ensure_future(awaitable)
    try:
        return await asyncio.wait_for(asyncio.shield(task), timeout=timeout)
    except asyncio.TimeoutError:
        if abandoned is not None:
            abandoned.add(task)
            task.add_done_callback(abandoned.discard)
        task.add_done_callback(_discard_late_result)
        raise Timeout(f"no response within {timeout:.1f}s")


class BibliographicResolver:
    """
    Resolve an ISBN to a title and author.

    Catalogs are consulted one after another, never in parallel: the primary
    catalog, then the fallback catalog, then the fallback catalog again with
    the 978-prefix dropped. Each step gets its own bounded wait and any
    failure just moves on to the next step.
    """

    def __init__(self, primary: Catalog, fallback: Catalog, timeout: float = FETCH_TIMEOUT_SECONDS):
        self.primary = primary
        self.fallback = fallback
        self.timeout = timeout
        self._abandoned: Set[asyncio.Future] = set()

    @classmethod
    def from_settings(cls, settings: Settings) -> "BibliographicResolver":
        return cls(
            primary=GoogleBooksProvider(base_url=settings.google_books_api, api_key=settings.google_books_api_key),
            fallback=OpenLibraryProvider(base_url=settings.open_library_api, search_url=settings.open_library_search_api),
            timeout=settings.fetch_timeout,
        )

    def plan(self, identifier: str) -> List[Tuple[Catalog, str]]:
        steps = [(self.primary, identifier), (self.fallback, identifier)]
        converted = to_isbn10(identifier)
        if converted:
            steps.append((self.fallback, converted))
        return steps

    async def attempt(self, catalog: Catalog, identifier: str) -> Optional[Dict[str, Any]]:
        try:
            metadata = await bounded_wait(catalog.lookup(identifier), self.timeout, self._abandoned)
        except Timeout as exc:
            logger.warning("%s timed out for %s (%s)", catalog.name, identifier, exc)
            return None
        except Exception as exc:
            logger.warning("%s failed for %s: %s", catalog.name, identifier, exc)
            return None
        if not metadata:
            logger.info("%s has no match for %s", catalog.name, identifier)
        return metadata or None

    async def resolve(self, identifier: str) -> ResolutionResult:
        cleaned = normalize(identifier)
        if not is_valid(cleaned):
            raise InvalidFormat(f"not an ISBN-10/ISBN-13: {identifier!r}")
        logger.info("Resolving ISBN %s", cleaned)
        for catalog, query in self.plan(cleaned):
            metadata = await self.attempt(catalog, query)
            if metadata:
                result = ResolutionResult.from_metadata(cleaned, metadata, catalog.name, query)
                logger.info("Found %r by %s on %s", result.title, result.author, catalog.name)
                return result
        logger.info("ISBN %s not found in any catalog", cleaned)
        return ResolutionResult.not_found(cleaned)

    async def search_by_title(self, title: str, limit: int = DISPLAY_RESULT_LIMIT) -> List[Dict[str, Any]]:
        """Title search on the fallback catalog, for the manual-entry path."""
        title = (title or "").strip()
        if not title:
            return []
        search = getattr(self.fallback, "search", None)
        if search is None:
            return []
        try:
            results = await bounded_wait(search(title), self.timeout, self._abandoned)
        except Exception as exc:
            logger.warning("Title search failed for %r: %s", title, exc)
            return []
        return results[:limit]
