from isbn_scanner.providers.google_books import GoogleBooksProvider
from isbn_scanner.providers.open_library import OpenLibraryProvider

__all__ = ["GoogleBooksProvider", "OpenLibraryProvider"]
