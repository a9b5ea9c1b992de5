# Overview: Wires the entity store, audit notifier, engine and workflow for one session.

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Optional

from .access_service import AccessService
from .audit_service import DatabaseAuditNotifier
from .custody_workflow import CustodyWorkflow
from .entity_store import EntityStore
from .ledger_engine import StockLedgerEngine


@dataclass(frozen=True)
class LedgerServices:
    store: EntityStore
    audit: Any
    engine: StockLedgerEngine
    access: AccessService
    workflow: CustodyWorkflow


def build_ledger_services(session, config: Mapping[str, Any], audit: Optional[Any] = None) -> LedgerServices:
    """
    Build the service graph around `session`.

    `config` is any mapping with the LEDGER_* / MAINTENANCE_* / DEMOB_* keys
    (a Flask app.config works). `audit` defaults to a DatabaseAuditNotifier
    on the same session.
    """
    store = EntityStore(
        session,
        retry_attempts=int(config.get("LEDGER_RETRY_ATTEMPTS", 3)),
        retry_backoff=float(config.get("LEDGER_RETRY_BACKOFF", 0.1)),
    )
    audit = audit if audit is not None else DatabaseAuditNotifier(session)
    engine = StockLedgerEngine(
        store,
        audit,
        strict_stock_check=bool(config.get("LEDGER_STRICT_STOCK_CHECK", True)),
        batch_size=int(config.get("MAINTENANCE_BATCH_SIZE", 100)),
    )
    access = AccessService(store, audit)
    workflow = CustodyWorkflow(
        engine,
        store,
        access,
        audit,
        require_contract_end=bool(config.get("DEMOB_REQUIRE_CONTRACT_END", False)),
    )
    return LedgerServices(store=store, audit=audit, engine=engine, access=access, workflow=workflow)
