"""Session hooks that turn committed Project / ProjectMember writes into change events.

``after_flush`` records one event per written row in ``session.info``;
``after_commit`` hands them to the change bus in flush order; a rollback
discards whatever was recorded. Nothing reaches subscribers unless the
transaction that produced it committed.
"""

import logging
import uuid
from datetime import date, datetime
from typing import Any

from sqlalchemy import event, inspect
from sqlalchemy.orm import Session

from planshare.models.project import Project
from planshare.models.project_member import ProjectMember
from planshare.services.change_bus import ChangeEvent, change_bus

logger = logging.getLogger(__name__)

_PENDING_KEY = "planshare.pending_changes"
_CAPTURED = (Project, ProjectMember)


def _jsonable(value: Any) -> Any:
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def row_image(obj: Any) -> dict[str, Any]:
    """Column values of ``obj`` as a JSON-safe dict, read without triggering loads."""
    state = inspect(obj)
    values = state.dict
    return {
        attr.key: _jsonable(values.get(attr.key))
        for attr in state.mapper.column_attrs
    }


def _project_id_of(obj: Any) -> uuid.UUID:
    return obj.id if isinstance(obj, Project) else obj.project_id


def _record(session: Session, kind: str, obj: Any) -> None:
    pending = session.info.setdefault(_PENDING_KEY, [])
    pending.append(
        ChangeEvent(
            table=obj.__tablename__,
            kind=kind,
            project_id=_project_id_of(obj),
            record=row_image(obj),
        )
    )


@event.listens_for(Session, "after_flush")
def _capture_changes(session: Session, flush_context) -> None:
    for obj in session.new:
        if isinstance(obj, _CAPTURED):
            _record(session, "insert", obj)
    for obj in session.dirty:
        if isinstance(obj, _CAPTURED) and session.is_modified(obj, include_collections=False):
            _record(session, "update", obj)
    for obj in session.deleted:
        if isinstance(obj, _CAPTURED):
            _record(session, "delete", obj)


@event.listens_for(Session, "after_commit")
def _publish_changes(session: Session) -> None:
    pending = session.info.pop(_PENDING_KEY, None)
    if not pending:
        return
    for change in pending:
        change_bus.publish(change)


@event.listens_for(Session, "after_rollback")
def _discard_changes(session: Session) -> None:
    dropped = session.info.pop(_PENDING_KEY, None)
    if dropped:
        logger.debug("Discarded %d uncommitted change event(s)", len(dropped))
