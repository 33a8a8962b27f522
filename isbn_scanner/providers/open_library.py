from typing import Any, Dict, List, Optional

import httpx

from isbn_scanner.config import OPEN_LIBRARY_API, OPEN_LIBRARY_SEARCH_API, SEARCH_RESULT_LIMIT


def _author_names(raw: List[Any]) -> List[str]:
    # the books API gives [{"name": ...}], older records give plain strings
    names = []
    for a in raw or []:
        name = a.get("name") if isinstance(a, dict) else a
        if name:
            names.append(name)
    return names


class OpenLibraryProvider:
    name = "open_library"

    def __init__(self, base_url: str = OPEN_LIBRARY_API, search_url: str = OPEN_LIBRARY_SEARCH_API,
                 transport: Optional[httpx.AsyncBaseTransport] = None, timeout: float = 6.0):
        self.base_url = base_url
        self.search_url = search_url
        self.transport = transport
        self.timeout = timeout

    async def lookup(self, isbn: str) -> Optional[Dict[str, Any]]:
        key = f"ISBN:{isbn}"
        params = {"bibkeys": key, "jscmd": "data", "format": "json"}
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            r = await client.get(self.base_url, params=params)
            r.raise_for_status()
            data = r.json()
        book = (data or {}).get(key)
        if not book:
            return None
        return {
            "provider": self.name,
            "title": book.get("title"),
            "authors": _author_names(book.get("authors")),
            "publisher": next((p.get("name") for p in book.get("publishers", []) or [] if isinstance(p, dict)), None),
            "publication_date": book.get("publish_date"),
            "url": book.get("url"),
        }

    async def search(self, title: str, limit: int = SEARCH_RESULT_LIMIT) -> List[Dict[str, Any]]:
        """Free-text title search used when an ISBN cannot be resolved."""
        params = {"q": title, "limit": limit}
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            r = await client.get(self.search_url, params=params)
            r.raise_for_status()
            data = r.json()
        results = []
        for doc in data.get("docs", []) or []:
            if not doc.get("title"):
                continue
            authors = doc.get("author_name") or []
            results.append({
                "title": doc["title"],
                "author": authors[0] if authors else "Unknown",
                "first_publish_year": doc.get("first_publish_year"),
            })
        return results
