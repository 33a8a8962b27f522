import json
import logging
import os
from typing import Any, Dict, List, Optional, Protocol

import jsonschema

from isbn_scanner.errors import DuplicateRecord, PersistenceFailure

logger = logging.getLogger(__name__)

RECORD_SCHEMA = {
    "type": "object",
    "properties": {
        "title": {"type": "string", "minLength": 1},
        "author": {"type": "string", "minLength": 1},
    },
    "required": ["title", "author"],
}


class Library(Protocol):
    def records(self) -> List[Dict[str, Any]]:
        ...

    def add(self, record: Dict[str, Any]) -> Dict[str, Any]:
        ...


def book_exists(title: Optional[str], author: Optional[str], records: List[Dict[str, Any]]) -> bool:
    """Case-insensitive exact match on both title and author."""
    if not title or not author or not records:
        return False
    t, a = title.lower(), author.lower()
    return any(
        (r.get("title") or "").lower() == t and (r.get("author") or "").lower() == a
        for r in records
    )


def add_unique(library: Library, title: str, author: str) -> Dict[str, Any]:
    """
    Check for a duplicate, then hand the record to the library. Storage and
    schema errors come back as PersistenceFailure.
    """
    try:
        if book_exists(title, author, library.records()):
            raise DuplicateRecord(title, author)
        return library.add({"title": title, "author": author})
    except (OSError, ValueError, jsonschema.ValidationError) as exc:
        raise PersistenceFailure(f"could not store {title!r} by {author!r}: {exc}") from exc


class JsonLibrary:
    """Book records kept in a single JSON file."""

    def __init__(self, path: str):
        self.path = path

    def records(self) -> List[Dict[str, Any]]:
        if not os.path.exists(self.path):
            return []
        with open(self.path, "r", encoding="utf-8") as f:
            return json.load(f)

    def add(self, record: Dict[str, Any]) -> Dict[str, Any]:
        jsonschema.validate(instance=record, schema=RECORD_SCHEMA)
        records = self.records()
        records.append({"title": record["title"], "author": record["author"]})
        d = os.path.dirname(os.path.abspath(self.path))
        if d and not os.path.isdir(d):
            os.makedirs(d, exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(records, f, indent=2, ensure_ascii=False)
        logger.info("Added %r by %s", record["title"], record["author"])
        return records[-1]
