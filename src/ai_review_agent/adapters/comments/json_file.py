"""Comment source backed by a JSON export of review comments.

The file holds a list of comment objects as exported from the hosting
provider:

    [
      {"id": 101, "body": "**SQL injection** ... <!-- ai-review:v1:src/db.ts:42:1a2b3c4d -->",
       "thread_id": "PRRT_abc", "is_resolved": false},
      {"id": 102, "path": "src/db.ts", "line": 7, "title": "Typo",
       "description": "recieve", "thread_id": "PRRT_def"}
    ]

Comments carrying this tool's marker are parsed from their body. Others
need explicit ``path``/``line``/``title`` fields and are kept as foreign
comments (they take part in deduplication but are never this tool's to
retract); entries with neither are skipped.
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ...core.stale_comments import comment_from_body, generate_content_hash
from ...models.comment import ExistingComment
from ...utils.async_helpers import CommentSourceError

log = structlog.get_logger()


class CommentRecord(BaseModel):
    """One exported comment."""

    model_config = ConfigDict(extra="ignore")

    id: int
    body: str = ""
    path: str | None = None
    line: int | None = Field(default=None, gt=0)
    title: str | None = None
    description: str = ""
    thread_id: str | None = None
    is_resolved: bool = False

    def to_comment(self) -> ExistingComment | None:
        own = comment_from_body(self.id, self.body, self.thread_id, self.is_resolved)
        if own is not None:
            return own
        if self.path is None or self.line is None or not self.title:
            return None
        return ExistingComment(
            id=self.id,
            path=self.path,
            line=self.line,
            title=self.title,
            description=self.description,
            content_hash=generate_content_hash(self.title, self.description),
            thread_id=self.thread_id,
            is_resolved=self.is_resolved,
            body=self.body or None,
        )


class JsonFileCommentSource:
    """CommentSource reading a JSON comment export."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)

    def _load(self) -> list[ExistingComment]:
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except OSError as e:
            raise CommentSourceError(f"Cannot read comments file {self._path}: {e}") from e
        except json.JSONDecodeError as e:
            raise CommentSourceError(f"Invalid JSON in comments file {self._path}: {e}") from e

        if not isinstance(data, list):
            raise CommentSourceError(f"Comments file {self._path} must contain a JSON list")

        comments: list[ExistingComment] = []
        for index, entry in enumerate(data):
            try:
                record = CommentRecord.model_validate(entry)
            except ValidationError as e:
                log.warning("comment_record_invalid", index=index, errors=e.error_count())
                continue
            comment = record.to_comment()
            if comment is None:
                log.debug("comment_record_skipped", index=index, comment_id=record.id)
                continue
            comments.append(comment)
        return comments

    async def fetch_existing_comments(self) -> list[ExistingComment]:
        return await asyncio.to_thread(self._load)
