"""
Keyword content filter for user generated text.

Used as a route dependency: ``Depends(content_filter("caption"))`` rejects the
request with 400 ``CONTENT_FILTERED`` when a listed body field contains a
blocked word. A failure inside the filter never blocks the request.
"""

import logging
import re
from typing import Any, Iterable, List, Optional

from fastapi import Request
from pydantic import BaseModel

from fitsocial.app.core.config import settings
from fitsocial.app.core.exceptions import ContentRejectedError

logger = logging.getLogger(__name__)


class FilterResult(BaseModel):
    is_clean: bool
    flagged_words: List[str] = []
    reason: Optional[str] = None


class KeywordFilter:
    """Case-insensitive whole-word matching against a fixed word list."""

    def __init__(self, keywords: Iterable[str]):
        self.keywords = [k.lower() for k in keywords if k and k.strip()]
        self._patterns = [(k, re.compile(rf"\b{re.escape(k)}\b", re.IGNORECASE)) for k in self.keywords]

    def check(self, text: str) -> FilterResult:
        flagged = [keyword for keyword, pattern in self._patterns if pattern.search(text)]
        if flagged:
            return FilterResult(is_clean=False, flagged_words=flagged, reason="Inappropriate language detected")
        return FilterResult(is_clean=True)


default_filter = KeywordFilter(settings.blocked_keywords)


def _nested(body: Any, path: str) -> Any:
    current = body
    for part in path.split("."):
        if not isinstance(current, dict):
            return None
        current = current.get(part)
    return current


def content_filter(*fields: str, keyword_filter: Optional[KeywordFilter] = None):
    """Build a dependency checking ``fields`` (dotted paths) of the JSON body."""

    async def check_request_content(request: Request) -> None:
        try:
            body = await request.json()
        except ValueError:
            # Not JSON; body validation reports it
            return

        active = keyword_filter or default_filter
        for field in fields:
            value = _nested(body, field)
            if not isinstance(value, str) or not value.strip():
                continue
            try:
                result = active.check(value)
            except Exception:
                logger.exception("Content filter failed on field %s, letting request through", field)
                continue

            if not result.is_clean:
                logger.info(
                    "Content filter triggered on %s", field,
                    extra={"field": field, "flagged": result.flagged_words, "path": request.url.path},
                )
                raise ContentRejectedError(field=field, reason=result.reason)

    return check_request_content
