from .master_data import Warehouse, Person, Item
from .ledger import TransferRecord, AddRecord, WarehouseTransferRecord, WarehouseAddRecord
from .offboarding import EmployeeAccess, DemobRecord, OffboardingTask
from .audit import AuditEvent

__all__ = [
    'Warehouse', 'Person', 'Item',
    'TransferRecord', 'AddRecord', 'WarehouseTransferRecord', 'WarehouseAddRecord',
    'EmployeeAccess', 'DemobRecord', 'OffboardingTask',
    'AuditEvent',
]
