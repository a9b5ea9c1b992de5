# Overview: SQLAlchemy-backed entity store; keyed reads/writes and the transactional boundary for ledger work.

"""
Entity Store

Owns persistence and nothing else: read/write by key, the handful of ledger
queries the engine needs, and unit_of_work(), the single transactional
boundary every multi-entity ledger operation runs inside.

The store wraps one SQLAlchemy session that the caller provides. There is
no module-level session; the engine and workflow receive a store instance.

unit_of_work(func) semantics:
- func runs, then the session commits. Both happen inside one transaction.
- LedgerError raised by func -> rollback, re-raised unchanged.
- OperationalError / StaleDataError -> rollback and retry the whole func
  (fresh reads), up to retry_attempts.
- StaleDataError after the last attempt -> ConcurrencyConflictError.
- Any other SQLAlchemy failure -> rollback, EngineUnavailableError.
- Any other exception -> rollback, EngineUnavailableError.
  Nothing from func is left written in any of these cases.
"""

from __future__ import annotations

import logging
from typing import Callable, Iterable, TypeVar

from sqlalchemy import func as sa_func
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import ConcurrencyConflictError, EngineUnavailableError, LedgerError, NotFoundError
from ..models import (
    AddRecord,
    DemobRecord,
    EmployeeAccess,
    Item,
    OffboardingTask,
    Person,
    TransferRecord,
    Warehouse,
    WarehouseAddRecord,
    WarehouseTransferRecord,
)
from ..models.ledger import TRANSFER_STATUS_ACTIVE
from ..models.master_data import LOCATION_PERSON, LOCATION_WAREHOUSE
from .concurrency import lock_for_update, run_with_retry

logger = logging.getLogger(__name__)

T = TypeVar("T")


class EntityStore:
    def __init__(self, session, *, retry_attempts: int = 3, retry_backoff: float = 0.1):
        self.session = session
        self.retry_attempts = retry_attempts
        self.retry_backoff = retry_backoff

    # ------------------------------------------------------------------
    # Transactional boundary
    # ------------------------------------------------------------------

    def unit_of_work(self, func: Callable[[], T]) -> T:
        def _attempt():
            result = func()
            self.session.commit()
            return result

        try:
            return run_with_retry(
                self.session,
                _attempt,
                attempts=self.retry_attempts,
                backoff_base=self.retry_backoff,
            )
        except LedgerError:
            self.session.rollback()
            raise
        except StaleDataError as exc:
            self.session.rollback()
            raise ConcurrencyConflictError(
                "Record was modified by a concurrent request; please retry"
            ) from exc
        except OperationalError as exc:
            self.session.rollback()
            logger.error("Entity store unavailable after %d attempts: %s", self.retry_attempts, exc)
            raise EngineUnavailableError("Entity store is unavailable") from exc
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.error("Entity store write failed: %s", exc)
            raise EngineUnavailableError("Entity store write failed") from exc
        except Exception as exc:
            self.session.rollback()
            logger.exception("Unit of work aborted by unexpected error")
            raise EngineUnavailableError(f"Unit of work aborted: {type(exc).__name__}") from exc

    # ------------------------------------------------------------------
    # Keyed reads
    # ------------------------------------------------------------------

    def _get(self, model, entity_id, *, lock: bool = False):
        if entity_id is None:
            return None
        query = self.session.query(model).filter_by(id=entity_id)
        if lock:
            query = lock_for_update(query)
        return query.first()

    def get_item(self, item_id: int, *, lock: bool = False) -> Item | None:
        return self._get(Item, item_id, lock=lock)

    def get_person(self, person_id: int, *, lock: bool = False) -> Person | None:
        return self._get(Person, person_id, lock=lock)

    def get_warehouse(self, warehouse_id: int, *, lock: bool = False) -> Warehouse | None:
        return self._get(Warehouse, warehouse_id, lock=lock)

    def get_task(self, task_id: int, *, lock: bool = False) -> OffboardingTask | None:
        return self._get(OffboardingTask, task_id, lock=lock)

    def get_access(self, access_id: int, *, lock: bool = False) -> EmployeeAccess | None:
        return self._get(EmployeeAccess, access_id, lock=lock)

    def get_demob_record(self, record_id: int) -> DemobRecord | None:
        return self._get(DemobRecord, record_id)

    def get_item_by_serial(self, serial_number: str) -> Item | None:
        return self.session.query(Item).filter_by(serial_number=serial_number).first()

    # ------------------------------------------------------------------
    # Ledger queries
    # ------------------------------------------------------------------

    def find_active_transfer_record(
        self, item_id: int, person_id: int, *, lock: bool = False
    ) -> TransferRecord | None:
        """Most recent active record for (item, person); first match wins."""
        query = (
            self.session.query(TransferRecord)
            .filter_by(item_id=item_id, people_id=person_id, status=TRANSFER_STATUS_ACTIVE)
            .order_by(TransferRecord.created_at.desc(), TransferRecord.id.desc())
        )
        if lock:
            query = lock_for_update(query)
        return query.first()

    def latest_active_transfer_by_item(self, item_ids: Iterable[int] | None = None) -> dict[int, TransferRecord]:
        """Map item_id -> its most recent active TransferRecord."""
        query = self.session.query(TransferRecord).filter_by(status=TRANSFER_STATUS_ACTIVE)
        if item_ids is not None:
            query = query.filter(TransferRecord.item_id.in_(list(item_ids)))
        latest: dict[int, TransferRecord] = {}
        for record in query.order_by(TransferRecord.created_at.asc(), TransferRecord.id.asc()):
            latest[record.item_id] = record
        return latest

    def count_active_transfers_by_item(self) -> dict[int, int]:
        rows = (
            self.session.query(TransferRecord.item_id, sa_func.count(TransferRecord.id))
            .filter_by(status=TRANSFER_STATUS_ACTIVE)
            .group_by(TransferRecord.item_id)
            .all()
        )
        return {item_id: count for item_id, count in rows}

    def active_quantity_by_person(self) -> dict[int, int]:
        rows = (
            self.session.query(
                TransferRecord.people_id,
                sa_func.coalesce(sa_func.sum(TransferRecord.transfer_stock_qty), 0),
            )
            .filter_by(status=TRANSFER_STATUS_ACTIVE)
            .group_by(TransferRecord.people_id)
            .all()
        )
        return {person_id: int(total) for person_id, total in rows}

    def active_transfer_records_for_person(self, person_id: int) -> list[TransferRecord]:
        return (
            self.session.query(TransferRecord)
            .filter_by(people_id=person_id, status=TRANSFER_STATUS_ACTIVE)
            .order_by(TransferRecord.created_at.desc(), TransferRecord.id.desc())
            .all()
        )

    def item_ids(self) -> list[int]:
        return [row[0] for row in self.session.query(Item.id).order_by(Item.id.asc()).all()]

    def items_by_ids(self, item_ids: Iterable[int], *, lock: bool = False) -> list[Item]:
        query = self.session.query(Item).filter(Item.id.in_(list(item_ids))).order_by(Item.id.asc())
        if lock:
            query = lock_for_update(query)
        return query.all()

    def person_held_items(self) -> list[Item]:
        return (
            self.session.query(Item)
            .filter(Item.current_location_type == LOCATION_PERSON, Item.assigned_to_person_id.isnot(None))
            .order_by(Item.id.asc())
            .all()
        )

    def all_items(self) -> list[Item]:
        return self.session.query(Item).order_by(Item.id.asc()).all()

    def all_people(self) -> list[Person]:
        return self.session.query(Person).order_by(Person.id.asc()).all()

    def all_warehouses(self) -> list[Warehouse]:
        return self.session.query(Warehouse).order_by(Warehouse.id.asc()).all()

    def find_active_access(self, person_id: int, access_name: str) -> EmployeeAccess | None:
        return (
            self.session.query(EmployeeAccess)
            .filter_by(people_id=person_id, access_name=access_name, status="active")
            .first()
        )

    def list_demob_records(self, person_id: int | None = None) -> list[DemobRecord]:
        query = self.session.query(DemobRecord)
        if person_id is not None:
            query = query.filter_by(people_id=person_id)
        return query.order_by(DemobRecord.created_at.desc(), DemobRecord.id.desc()).all()

    # ------------------------------------------------------------------
    # Keyed writes (inside unit_of_work)
    # ------------------------------------------------------------------

    def _update(self, model, entity_id, changes: dict):
        entity = self.session.get(model, entity_id)
        if entity is None:
            raise NotFoundError(model.__name__, entity_id)
        for key, value in changes.items():
            setattr(entity, key, value)
        return entity

    def update_item(self, item_id: int, **changes) -> Item:
        return self._update(Item, item_id, changes)

    def update_person(self, person_id: int, **changes) -> Person:
        return self._update(Person, person_id, changes)

    def update_warehouse(self, warehouse_id: int, **changes) -> Warehouse:
        return self._update(Warehouse, warehouse_id, changes)

    def update_task(self, task_id: int, **changes) -> OffboardingTask:
        return self._update(OffboardingTask, task_id, changes)

    def update_access(self, access_id: int, **changes) -> EmployeeAccess:
        return self._update(EmployeeAccess, access_id, changes)

    def update_demob_record(self, record_id: int, **changes) -> DemobRecord:
        return self._update(DemobRecord, record_id, changes)

    def update_transfer_record_status(self, record_id: int, status: str, **changes) -> TransferRecord:
        return self._update(TransferRecord, record_id, {"status": status, **changes})

    def _create(self, model, data: dict):
        entity = model(**data)
        self.session.add(entity)
        self.session.flush()  # assigns id without committing
        return entity

    def create_item(self, **data) -> Item:
        return self._create(Item, data)

    def create_transfer_record(self, **data) -> TransferRecord:
        return self._create(TransferRecord, data)

    def create_add_record(self, **data) -> AddRecord:
        return self._create(AddRecord, data)

    def create_warehouse_transfer_record(self, **data) -> WarehouseTransferRecord:
        return self._create(WarehouseTransferRecord, data)

    def create_warehouse_add_record(self, **data) -> WarehouseAddRecord:
        return self._create(WarehouseAddRecord, data)

    def create_demob_record(self, **data) -> DemobRecord:
        return self._create(DemobRecord, data)

    def create_task(self, **data) -> OffboardingTask:
        return self._create(OffboardingTask, data)

    def create_access(self, **data) -> EmployeeAccess:
        return self._create(EmployeeAccess, data)

    def move_items_to_warehouse(self, item_ids: list[int]) -> int:
        """Batch custody reset for person-held items; bumps version_id."""
        if not item_ids:
            return 0
        updated = 0
        for item in self.items_by_ids(item_ids, lock=True):
            if item.current_location_type != LOCATION_PERSON:
                continue
            item.current_location_type = LOCATION_WAREHOUSE
            item.assigned_to_person_id = None
            updated += 1
        self.session.flush()
        return updated
