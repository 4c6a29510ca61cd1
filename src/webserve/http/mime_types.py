"""
=============================================================================
CONTENT TYPES
=============================================================================

Maps file extensions and logical type names to the MIME type sent in the
Content-Type header.

The table is deliberately closed: a type that is not listed here produces
NO Content-Type header at all. The response still succeeds with 200, and
the client is left to sniff the body.

    ┌────────────────────────────────────────────────────────────────────┐
    │  Lookup key            Example                                      │
    ├────────────────────────────────────────────────────────────────────┤
    │  logical type name     "json"  → application/json                   │
    │  file extension        ".css"  → text/css                           │
    │  file path             "a/b.png" → image/png                        │
    │  anything else         "tar"   → None (header omitted)              │
    └────────────────────────────────────────────────────────────────────┘

=============================================================================
"""

from pathlib import PurePath
from typing import Optional, Union


MIME_TYPES = {
    # ─────────────────────────────────────────────────────────────────────
    # DOCUMENTS
    # ─────────────────────────────────────────────────────────────────────
    "htm": "text/html",
    "html": "text/html",
    "css": "text/css",
    "csv": "text/csv",
    "txt": "text/plain",
    "rtf": "text/rtf",
    "xml": "application/xml",
    "json": "application/json",
    "js": "application/javascript",
    "pdf": "application/pdf",

    # ─────────────────────────────────────────────────────────────────────
    # IMAGES
    # ─────────────────────────────────────────────────────────────────────
    "bmp": "image/bmp",
    "gif": "image/gif",
    "ico": "image/x-icon",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "svg": "image/svg+xml",
    "tiff": "image/tiff",

    # ─────────────────────────────────────────────────────────────────────
    # AUDIO / VIDEO
    # ─────────────────────────────────────────────────────────────────────
    "avi": "video/avi",
    "mp4": "audio/mp4",
    "mp3": "audio/mpeg",
    "mpeg": "audio/mpeg",

    # ─────────────────────────────────────────────────────────────────────
    # FONTS
    # ─────────────────────────────────────────────────────────────────────
    "woff": "application/font-woff",
}


def type_name_for(path: Union[str, PurePath]) -> str:
    """
    Get the logical type name for a file path (its lowercase extension).

    Example:
        type_name_for("/srv/www/index.HTML")  # "html"
        type_name_for("/srv/www/README")      # ""
    """
    return PurePath(path).suffix.lstrip(".").lower()


def get_mime_type(type_name: Optional[str]) -> Optional[str]:
    """
    Get the MIME type for a logical type name or extension.

    Args:
        type_name: "json", ".json" or "JSON" all work.

    Returns:
        The MIME type, or None when the type is unknown.
    """
    if not type_name:
        return None
    return MIME_TYPES.get(type_name.lstrip(".").lower())


def get_content_type(path: Union[str, PurePath]) -> Optional[str]:
    """Get the MIME type for a file path based on its extension."""
    return get_mime_type(type_name_for(path))
