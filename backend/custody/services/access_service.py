# Overview: Employee access grant/revoke; the revocation collaborator used by demobilization and offboarding.

from __future__ import annotations

import logging
from typing import Optional

from ..errors import InvalidStateError, NotFoundError
from ..models.offboarding import ACCESS_STATUS_ACTIVE, ACCESS_STATUS_REVOKED
from ..time_utils import utcnow
from . import audit_service
from .audit_service import Actor
from .results import LedgerResult

logger = logging.getLogger(__name__)


class AccessService:
    def __init__(self, store, audit):
        self.store = store
        self.audit = audit

    def grant(
        self,
        access_name: str,
        person_id: int,
        granted_by: Optional[str] = None,
        category: Optional[str] = None,
        notes: Optional[str] = None,
        *,
        actor: Optional[Actor] = None,
    ) -> LedgerResult:
        """Grant an access; a second active grant of the same name is rejected."""
        def _op():
            person = self.store.get_person(person_id)
            if person is None:
                raise NotFoundError("Person", person_id)
            if self.store.find_active_access(person_id, access_name) is not None:
                raise InvalidStateError(
                    f"Person {person_id} already has active access '{access_name}'",
                    person_id=person_id,
                    access_name=access_name,
                )
            return self.store.create_access(
                people_id=person_id,
                access_name=access_name,
                category=category,
                status=ACCESS_STATUS_ACTIVE,
                granted_by=granted_by,
                notes=notes,
            )

        try:
            access = self.store.unit_of_work(_op)
        except (NotFoundError, InvalidStateError) as exc:
            return LedgerResult.failure(exc)

        logger.info("Granted access %s (%s) to person %s", access.id, access_name, person_id)
        audit_service.emit(
            self.audit,
            audit_service.GRANT_ACCESS,
            audit_service.ENTITY_EMPLOYEE_ACCESS,
            access.id,
            access_name,
            actor,
            {"people_id": person_id, "category": category},
        )
        return LedgerResult.success(access)

    def apply_revoke(
        self,
        access_id: int,
        revoked_by: Optional[str],
        notes: Optional[str] = None,
        person_id: Optional[int] = None,
    ):
        """
        Revocation writes; call inside store.unit_of_work().

        With person_id set, an access held by anyone else is rejected.
        """
        access = self.store.get_access(access_id, lock=True)
        if access is None:
            raise NotFoundError("EmployeeAccess", access_id)
        if person_id is not None and access.people_id != person_id:
            raise InvalidStateError(
                f"Access {access_id} does not belong to person {person_id}",
                access_id=access_id,
                person_id=person_id,
            )
        if access.status == ACCESS_STATUS_REVOKED:
            raise InvalidStateError(f"Access {access_id} is already revoked", access_id=access_id)
        changes = {
            "status": ACCESS_STATUS_REVOKED,
            "revoked_by": revoked_by,
            "revoked_date": utcnow(),
        }
        if notes:
            changes["notes"] = notes
        return self.store.update_access(access_id, **changes)

    def notify_revoke(self, access, actor: Optional[Actor]) -> None:
        logger.info("Revoked access %s (%s) for person %s", access.id, access.access_name, access.people_id)
        audit_service.emit(
            self.audit,
            audit_service.REVOKE_ACCESS,
            audit_service.ENTITY_EMPLOYEE_ACCESS,
            access.id,
            access.access_name,
            actor,
            {"people_id": access.people_id, "revoked_by": access.revoked_by},
        )

    def revoke(
        self,
        access_id: int,
        revoked_by: Optional[str] = None,
        notes: Optional[str] = None,
        *,
        person_id: Optional[int] = None,
        actor: Optional[Actor] = None,
    ) -> LedgerResult:
        try:
            access = self.store.unit_of_work(lambda: self.apply_revoke(access_id, revoked_by, notes, person_id))
        except (NotFoundError, InvalidStateError) as exc:
            return LedgerResult.failure(exc)
        self.notify_revoke(access, actor)
        return LedgerResult.success(access)
