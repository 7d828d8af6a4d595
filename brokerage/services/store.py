"""Entity store adapter: the only path from services to persistence.

Wraps a SQLAlchemy Session with CRUD helpers, a conditional update primitive
(compare-and-set) and a unit-of-work scope that commits or rolls back as one.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Iterator, TypeVar
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.orm import Session

from brokerage.core.errors import ConflictError, NotFoundError, StoreUnavailableError

logger = logging.getLogger(__name__)

M = TypeVar("M")


class EntityStore:
    """Narrow persistence interface over one Session (one request)."""

    def __init__(self, session: Session):
        self.session = session
        self._depth = 0

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get(self, model: type[M], entity_id: UUID | None) -> M | None:
        if entity_id is None:
            return None
        return self.session.get(model, entity_id)

    def require(self, model: type[M], entity_id: UUID | None, label: str | None = None) -> M:
        """Get by id or raise NotFoundError."""
        entity = self.get(model, entity_id)
        if entity is None:
            name = label or model.__name__
            raise NotFoundError(f"{name} not found", code=f"{name.lower()}_not_found")
        return entity

    def get_for_update(self, model: type[M], entity_id: UUID | None) -> M | None:
        """Get with a row lock (SELECT ... FOR UPDATE; a no-op on SQLite)."""
        if entity_id is None:
            return None
        return self.session.get(model, entity_id, with_for_update=True, populate_existing=True)

    def refresh(self, entity: Any) -> None:
        self.session.refresh(entity)

    def scalar(self, statement) -> Any:
        return self.session.execute(statement).scalar()

    def scalars(self, statement) -> list:
        return list(self.session.execute(statement).scalars().all())

    def first(self, statement) -> Any:
        return self.session.execute(statement.limit(1)).scalars().first()

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def add(self, entity: M) -> M:
        self.session.add(entity)
        return entity

    def delete(self, entity: Any) -> None:
        self.session.delete(entity)

    def execute(self, statement) -> Any:
        """Run a bulk insert/update/delete statement."""
        return self.session.execute(statement)

    def flush(self) -> None:
        self.session.flush()

    def compare_and_set(
        self,
        model: type,
        entity_id: UUID,
        column: str,
        expected: Any,
        new: Any,
        *,
        guard: dict[str, Any] | None = None,
        **values: Any,
    ) -> bool:
        """
        UPDATE model SET column=new, **values WHERE id=entity_id AND column=expected.

        ``guard`` adds further ``column == value`` conditions that must also
        hold. Returns True when exactly one row changed. Zero rows means another
        writer moved the row first; the caller decides how to report it.
        Loaded instances are expired so later reads see the stored values.
        """
        col = getattr(model, column)
        conditions = [getattr(model, name) == value for name, value in (guard or {}).items()]
        stmt = (
            update(model)
            .where(model.id == entity_id, col == expected, *conditions)
            .values({column: new, **values})
            .execution_options(synchronize_session=False)
        )
        result = self.session.execute(stmt)
        changed = result.rowcount == 1
        instance = self.session.identity_map.get(self.session.identity_key(model, entity_id))
        if instance is not None:
            self.session.expire(instance)
        return changed

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    @contextmanager
    def unit_of_work(self) -> Iterator["EntityStore"]:
        """
        Run the enclosed writes as one transaction.

        Nested scopes join the outermost one. Any exception rolls everything
        back; SQLAlchemy infrastructure errors surface as StoreUnavailableError.
        """
        self._depth += 1
        outermost = self._depth == 1
        try:
            yield self
            if outermost:
                self.session.commit()
        except IntegrityError as exc:
            if outermost:
                self.session.rollback()
            raise ConflictError("Write conflicted with existing data") from exc
        except (OperationalError, DBAPIError) as exc:
            if outermost:
                self.session.rollback()
            logger.error("Store failure inside unit of work: %s", exc.__class__.__name__)
            raise StoreUnavailableError(str(exc)) from exc
        except BaseException:
            if outermost:
                self.session.rollback()
            raise
        finally:
            self._depth -= 1


def exists(store: EntityStore, statement) -> bool:
    """True when ``statement`` (a select) yields at least one row."""
    return store.session.execute(select(statement.exists())).scalar() is True
