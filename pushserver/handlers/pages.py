"""
Page change watcher.

Reports when any markdown file of a page is modified.
"""

import time
from pathlib import Path
from typing import Any

from .base import ChangeEvent, HandlerProvider
from .lookup import FilesystemPageLookup, PageLookup


class PageChangeHandler(HandlerProvider):
    """Handler provider that watches a page's ``*.md`` files."""

    def __init__(self, config: dict[str, Any] | None = None, page_lookup: PageLookup | None = None):
        super().__init__(config)
        self.pattern = self._config.get("pattern", "*.md")
        self.page_lookup = page_lookup or FilesystemPageLookup(self._config.get("content_root", "user/pages"))

    def watch_targets(self, route: str) -> list[str]:
        page_dir = self.page_lookup.find(route)
        if page_dir is None:
            return []
        return sorted(str(path) for path in page_dir.glob(self.pattern) if path.is_file())

    def last_modified(self, route: str) -> int | None:
        """Newest modification time of the page's files in nanoseconds, or None."""
        targets = self.watch_targets(route)
        if not targets:
            return None
        return max(Path(target).stat().st_mtime_ns for target in targets)

    def detect_change(self, route: str, since: int) -> ChangeEvent | None:
        modified = self.last_modified(route)
        if modified is None or modified <= since:
            return None

        return ChangeEvent(
            watermark=modified,
            payload={
                "type": "page_changed",
                "route": route,
                "modified": modified // 1_000_000_000,
                "timestamp": int(time.time()),
            },
        )

    def event_type_name(self) -> str:
        return "pages"

    def handle_client_message(self, event: str, data: dict[str, Any], route: str) -> dict[str, Any] | None:
        if event != "get_modified":
            return None

        modified = self.last_modified(route)
        if modified is None:
            return None
        return {
            "type": "modified",
            "route": route,
            "modified": modified // 1_000_000_000,
            "timestamp": int(time.time()),
        }

    def configuration(self) -> dict[str, Any]:
        return dict(self._config)
