from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from orgauthz.authz.types import DecisionEvent
from orgauthz.models.permissions import PermissionCheckLog


class CheckLogSink:
    """
    Decision recorder sink that persists every event as a PermissionCheckLog row.

    Uses its own short-lived session: events are written after the request
    that produced them has finished.
    """

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    async def __call__(self, event: DecisionEvent) -> None:
        await run_in_threadpool(self._write, event)

    def _write(self, event: DecisionEvent) -> None:
        checked_at = datetime.fromtimestamp(event.timestamp_ms / 1000, tz=timezone.utc).replace(tzinfo=None)
        with self._session_factory() as db:
            db.add(
                PermissionCheckLog(
                    user_id=event.actor_id,
                    resource=event.resource,
                    action=event.action,
                    scope=event.scope or "none",
                    is_allowed=event.allowed,
                    reason=event.reason,
                    checked_at=checked_at,
                )
            )
            db.commit()


def list_check_logs(
    db: Session,
    *,
    user_id: str | None = None,
    is_allowed: bool | None = None,
    limit: int = 50,
) -> list[PermissionCheckLog]:
    stmt = select(PermissionCheckLog)
    if user_id is not None:
        stmt = stmt.where(PermissionCheckLog.user_id == user_id)
    if is_allowed is not None:
        stmt = stmt.where(PermissionCheckLog.is_allowed.is_(is_allowed))
    stmt = stmt.order_by(PermissionCheckLog.checked_at.desc(), PermissionCheckLog.id.desc()).limit(limit)
    return list(db.scalars(stmt).all())
