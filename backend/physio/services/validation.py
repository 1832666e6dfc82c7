from __future__ import annotations
import re
from datetime import date, datetime, timedelta
from typing import Optional

from physio.errors import bad_request, unprocessable
from physio.time_utils import ensure_utc, utc_now

MAX_NAME_LENGTH = 100
MAX_SEARCH_LENGTH = 100
MAX_CONTENT_LENGTH = 10_000
FUTURE_VISIT_WINDOW_DAYS = 30

_NAME_CHARS = re.compile(r"^(?:[^\W\d_]|[- ])+$")
_WHITESPACE = re.compile(r"\s+")
_HORIZONTAL_WHITESPACE = re.compile(r"[ \t\f\v]{2,}")
_DISALLOWED_MARKUP = re.compile(r"<(script|style|iframe)[^>]*>", re.IGNORECASE)


def contains_markup(value: str) -> bool:
    return _DISALLOWED_MARKUP.search(value) is not None


def normalize_name(value: Optional[str], field: str) -> str:
    """이름: 공백 정리 후 100자 이하, 문자/하이픈/공백만 허용."""
    if value is None or not value.strip():
        raise bad_request(f"{field}_required")
    collapsed = _WHITESPACE.sub(" ", value.strip())
    if len(collapsed) > MAX_NAME_LENGTH:
        raise bad_request(f"{field}_too_long")
    if not _NAME_CHARS.match(collapsed):
        raise bad_request(f"{field}_invalid")
    return collapsed


def normalize_date_of_birth(value: Optional[date]) -> Optional[date]:
    if value is None:
        return None
    if value > utc_now().date():
        raise unprocessable("date_of_birth_future")
    return value


def normalize_search(value: Optional[str]) -> Optional[str]:
    if value is None or not value.strip():
        return None
    collapsed = _WHITESPACE.sub(" ", value.strip())
    if len(collapsed) > MAX_SEARCH_LENGTH:
        raise bad_request("search_too_long")
    return collapsed


def normalize_content(value: Optional[str], field: str) -> Optional[str]:
    """긴 서술형 텍스트. 비어 있으면 None (기존 값 삭제 용도)."""
    if value is None or not value.strip():
        return None
    collapsed = _HORIZONTAL_WHITESPACE.sub(" ", value.strip())
    if len(collapsed) > MAX_CONTENT_LENGTH:
        raise unprocessable(f"{field}_too_long")
    return collapsed


def normalize_visit_date(value: Optional[datetime], now: Optional[datetime] = None) -> datetime:
    now = now or utc_now()
    normalized = ensure_utc(value) if value is not None else now
    if normalized > now + timedelta(days=FUTURE_VISIT_WINDOW_DAYS):
        raise unprocessable("visit_date_future")
    return normalized


def normalize_order(value: Optional[str], default: str = "desc") -> str:
    if value is None or not value.strip():
        return default
    candidate = value.strip().lower()
    return candidate if candidate in ("asc", "desc") else default


def total_pages(total_items: int, page_size: int) -> int:
    if page_size <= 0 or total_items == 0:
        return 0
    return -(-total_items // page_size)
