import logging
from dataclasses import replace
from datetime import datetime
from typing import Iterable, Optional, Tuple, TypeVar

from ledger.domain import AuditTrail, Auditable, LifecycleAction
from ledger.errors import InvalidLifecycleAction

__all__ = ["archive", "restore", "apply_action", "stamp_created", "stamp_updated", "active", "archived", "with_archived"]

logger = logging.getLogger("ledger.lifecycle")

R = TypeVar("R", bound=Auditable)


def _now(at: Optional[datetime]) -> datetime:
    return at if at is not None else datetime.now()


def archive(record: R, actor: str, at: Optional[datetime] = None) -> R:
    """Soft-delete: mark the record archived and stamp who did it and when."""
    if record.is_deleted:
        raise InvalidLifecycleAction(f"Record {record.id} is already archived", id=record.id)
    audit = replace(record.audit, is_deleted=True, deleted_by=actor, deleted_at=_now(at))
    logger.info("archived %s %s by %s", type(record).__name__, record.id, actor)
    return replace(record, audit=audit)


def restore(record: R, actor: str, at: Optional[datetime] = None) -> R:
    """Bring an archived record back.

    deleted_by/deleted_at stay as the record of the most recent archive event.
    """
    if not record.is_deleted:
        raise InvalidLifecycleAction(f"Record {record.id} is not archived", id=record.id)
    audit = replace(record.audit, is_deleted=False, updated_by=actor, updated_at=_now(at))
    logger.info("restored %s %s by %s", type(record).__name__, record.id, actor)
    return replace(record, audit=audit)


def apply_action(record: R, action: LifecycleAction, actor: str, at: Optional[datetime] = None) -> R:
    if action is LifecycleAction.ARCHIVE:
        return archive(record, actor, at)
    return restore(record, actor, at)


def stamp_created(actor: Optional[str], at: Optional[datetime] = None) -> AuditTrail:
    when = _now(at)
    return AuditTrail(created_by=actor, created_at=when, updated_by=actor, updated_at=when)


def stamp_updated(record: R, actor: Optional[str], at: Optional[datetime] = None) -> R:
    return replace(record, audit=replace(record.audit, updated_by=actor, updated_at=_now(at)))


def active(records: Iterable[R]) -> Tuple[R, ...]:
    return tuple(r for r in records if not r.is_deleted)


def archived(records: Iterable[R]) -> Tuple[R, ...]:
    return tuple(r for r in records if r.is_deleted)


def with_archived(records: Iterable[R], include_archived: bool = False) -> Tuple[R, ...]:
    return tuple(records) if include_archived else active(records)
