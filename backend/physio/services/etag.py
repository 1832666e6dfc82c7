from __future__ import annotations
from datetime import datetime
from typing import Optional

import structlog
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from physio.errors import bad_request, conflict
from physio.time_utils import ensure_utc, utc_now

logger = structlog.get_logger(__name__)


def weak_etag(updated_at: datetime) -> str:
    return f'W/"{ensure_utc(updated_at).isoformat()}"'


def parse_weak_etag(value: str) -> datetime:
    """`W/"<timestamp>"` 또는 `"<timestamp>"` 형태를 datetime 으로 되돌린다."""
    raw = value.strip()
    if raw.startswith("W/"):
        raw = raw[2:]
    raw = raw.strip().strip('"')
    if not raw:
        raise bad_request("invalid_if_match")
    try:
        parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        raise bad_request("invalid_if_match")
    return ensure_utc(parsed)


def first_if_match(header: Optional[str]) -> Optional[str]:
    # If-Match 에 여러 값이 오면 첫 번째만 사용
    if header is None:
        return None
    first = header.split(",")[0].strip()
    return first or None


def validate_token(presented: Optional[str], current: datetime) -> None:
    if presented is None:
        raise bad_request("missing_if_match")
    expected = parse_weak_etag(presented)
    if expected != ensure_utc(current):
        logger.warning("etag_mismatch", presented=presented, current=weak_etag(current))
        raise conflict("etag_mismatch")


async def write_if_current(db: AsyncSession, entity, values: dict) -> None:
    """
    updated_at 이 읽은 시점과 같을 때만 UPDATE 한다.
    그 사이 다른 요청이 먼저 썼다면 409 etag_mismatch.
    """
    model = type(entity)
    stmt = (
        update(model)
        .where(model.id == entity.id, model.updated_at == entity.updated_at)
        .values(**values, updated_at=utc_now())
        .execution_options(synchronize_session=False)
    )
    res = await db.execute(stmt)
    if res.rowcount != 1:
        await db.rollback()
        logger.warning("etag_race_lost", entity=model.__tablename__, id=str(entity.id))
        raise conflict("etag_mismatch")
    await db.commit()
    await db.refresh(entity)
