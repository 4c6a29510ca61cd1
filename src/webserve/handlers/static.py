"""
=============================================================================
STATIC FILE HANDLER
=============================================================================

Serves files from the configured root directory. The router falls back to
this handler for every path that has no registered handler.

=============================================================================
FLOW
=============================================================================

    Request: GET /docs/

    1. Join the URL path onto root_dir and canonicalize it
       (resolve() collapses ".." and follows symlinks)
    2. Containment: the result must still be inside root_dir,
       otherwise ForbiddenPath is raised
    3. Directory? try index.html, then index.htm
    4. Existing, non-empty file → 200 with its bytes
       Missing or empty         → 404
    5. Any other OSError propagates; the router turns it into a 500

=============================================================================
"""

import logging
from pathlib import Path
from typing import Union

from ..http import writer
from ..http.message import Message
from ..http.mime_types import type_name_for


logger = logging.getLogger(__name__)

INDEX_FILES = ("index.html", "index.htm")


class ForbiddenPath(ValueError):
    """Raised when a URL path resolves outside the served root."""


class StaticFileHandler:
    """
    Handler for serving static files.

    Usage:
        static = StaticFileHandler("/srv/www")
        static.handle(message)
    """

    def __init__(self, root_dir: Union[str, Path]):
        self.root_dir = Path(root_dir).resolve()
        if not self.root_dir.is_dir():
            raise ValueError(f"Static root directory does not exist: {root_dir}")

    def resolve(self, url_path: str) -> Path:
        """
        Map a decoded URL path to a filesystem path inside the root.

        Raises:
            ForbiddenPath: if the path escapes the root directory.
        """
        relative = url_path.lstrip("/")
        if "\x00" in relative:
            raise ForbiddenPath(f"Invalid path: {url_path!r}")

        full_path = (self.root_dir / relative).resolve()
        try:
            full_path.relative_to(self.root_dir)
        except ValueError:
            logger.warning(f"Path traversal attempt: {url_path}")
            raise ForbiddenPath(f"Path outside served root: {url_path}")

        if full_path.is_dir():
            for name in INDEX_FILES:
                candidate = full_path / name
                if candidate.is_file():
                    return candidate
            return full_path / INDEX_FILES[0]

        return full_path

    def handle(self, message: Message) -> Message:
        """Serve the file for message.request.path (200 or 404)."""
        path = self.resolve(message.request.path)

        if not path.is_file() or path.stat().st_size == 0:
            logger.debug(f"[{message.id}] Not found: {path}")
            return writer.write_not_found(message)

        data = path.read_bytes()
        if not data:
            return writer.write_not_found(message)
        return writer.write_as_file(message, data, type_name_for(path))
