"""
ISBN Scanner
Capture a book's ISBN from a camera, a photo or free text and resolve it to a title and author.
"""

__version__ = "0.1.0"
