"""
Request handlers.

StaticFileHandler serves files from the configured root and is the
router's fallback for every path without a registered handler.
"""

from .static import StaticFileHandler, ForbiddenPath

__all__ = ["StaticFileHandler", "ForbiddenPath"]
