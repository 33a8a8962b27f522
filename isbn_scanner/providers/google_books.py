from typing import Any, Dict, Optional

import httpx

from isbn_scanner.config import GOOGLE_BOOKS_API


class GoogleBooksProvider:
    name = "google_books"

    def __init__(self, base_url: str = GOOGLE_BOOKS_API, api_key: Optional[str] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None, timeout: float = 6.0):
        self.base_url = base_url
        self.api_key = api_key
        self.transport = transport
        self.timeout = timeout

    async def lookup(self, isbn: str) -> Optional[Dict[str, Any]]:
        params = {"q": f"isbn:{isbn}"}
        if self.api_key:
            params["key"] = self.api_key
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            r = await client.get(self.base_url, params=params)
            r.raise_for_status()
            data = r.json()
        items = data.get("items", []) or []
        if not items:
            return None
        vi = items[0].get("volumeInfo", {}) or {}
        identifiers = vi.get("industryIdentifiers", []) or []
        return {
            "provider": self.name,
            "title": vi.get("title"),
            "authors": [a for a in vi.get("authors", []) or [] if a],
            "publisher": vi.get("publisher"),
            "publication_date": vi.get("publishedDate"),
            "isbn_13": next((i.get("identifier") for i in identifiers if i.get("type") == "ISBN_13"), None),
            "isbn_10": next((i.get("identifier") for i in identifiers if i.get("type") == "ISBN_10"), None),
            "url": vi.get("infoLink") or items[0].get("selfLink"),
        }
