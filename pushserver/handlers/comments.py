"""
Comment count watcher.

Watches the ``comments.yaml`` file stored next to a page and reports the
number of published comments whenever the file changes.
"""

import time
from pathlib import Path
from typing import Any

import yaml

from ..structured_logging.enhanced_logging_config import get_logger
from .base import ChangeEvent, HandlerProvider
from .lookup import FilesystemPageLookup, PageLookup

logger = get_logger(__name__)

COMMENTS_FILENAME = "comments.yaml"
PUBLISHED_STATUS = "published"


class CommentCountHandler(HandlerProvider):
    """
    Handler provider for live comment counts.

    Configuration:
        content_root: Directory page routes are resolved in (default "user/pages")
        comments_file: File name holding a page's comments (default "comments.yaml")
    """

    def __init__(self, config: dict[str, Any] | None = None, page_lookup: PageLookup | None = None):
        super().__init__(config)
        self.comments_file = self._config.get("comments_file", COMMENTS_FILENAME)
        self.page_lookup = page_lookup or FilesystemPageLookup(self._config.get("content_root", "user/pages"))

    def _comments_path(self, route: str) -> Path | None:
        page_dir = self.page_lookup.find(route)
        if page_dir is None:
            return None
        return page_dir / self.comments_file

    def watch_targets(self, route: str) -> list[str]:
        path = self._comments_path(route)
        if path is None or not path.is_file():
            return []
        return [str(path)]

    def count_published(self, route: str) -> int | None:
        """
        Count published comments for a route.

        Comments without a status are treated as published.

        Returns:
            The count, or None if the page does not exist
        """
        path = self._comments_path(route)
        if path is None:
            return None
        if not path.is_file():
            return 0

        with path.open(encoding="utf-8") as f:
            data = yaml.safe_load(f) or []

        if isinstance(data, dict):
            data = data.get("comments", [])
        if not isinstance(data, list):
            logger.warning("Unexpected comments file structure", route=route, path=str(path))
            return 0

        return sum(
            1
            for comment in data
            if isinstance(comment, dict) and comment.get("status", PUBLISHED_STATUS) == PUBLISHED_STATUS
        )

    def detect_change(self, route: str, since: int) -> ChangeEvent | None:
        targets = self.watch_targets(route)
        if not targets:
            return None

        max_modified = max(Path(target).stat().st_mtime_ns for target in targets)
        if max_modified <= since:
            return None

        count = self.count_published(route)
        if count is None:
            return None

        return ChangeEvent(
            watermark=max_modified,
            payload={
                "type": "update",
                "route": route,
                "count": count,
                "timestamp": int(time.time()),
                "modified": max_modified // 1_000_000_000,
            },
        )

    def event_type_name(self) -> str:
        return "comments"

    def handle_client_message(self, event: str, data: dict[str, Any], route: str) -> dict[str, Any] | None:
        if event != "get_count":
            return None

        count = self.count_published(route)
        if count is None:
            return None
        return {"type": "count", "route": route, "count": count, "timestamp": int(time.time())}

    def configuration(self) -> dict[str, Any]:
        return dict(self._config)

    def snapshot(self, route: str) -> dict[str, Any] | None:
        count = self.count_published(route)
        if count is None:
            return None
        return {"type": "initial", "route": route, "count": count, "timestamp": int(time.time())}
