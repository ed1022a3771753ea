"""
Page lookup collaborators used by the built-in handlers.
"""

from abc import ABC, abstractmethod
from pathlib import Path


class PageLookup(ABC):
    """Resolves a route to the directory holding that page's content."""

    @abstractmethod
    def find(self, route: str) -> Path | None:
        """Return the page directory for a route, or None if the page does not exist."""


class FilesystemPageLookup(PageLookup):
    """
    Page lookup backed by a content directory.

    A route "/blog/post-1" maps to ``content_root/blog/post-1`` when that
    directory exists. Routes escaping the content root resolve to nothing.
    """

    def __init__(self, content_root: str | Path):
        self.content_root = Path(content_root)

    def find(self, route: str) -> Path | None:
        relative = route.strip("/")
        if not relative:
            candidate = self.content_root
        else:
            candidate = self.content_root / relative

        try:
            root = self.content_root.resolve()
            resolved = candidate.resolve()
        except OSError:
            return None

        if resolved != root and root not in resolved.parents:
            return None
        if not resolved.is_dir():
            return None
        return resolved
