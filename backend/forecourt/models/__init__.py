from .directory import Product, Tank, Nozzle, Attendant
from .shifts import AttendantShift, MeterAssignment, STATUS_OPEN, STATUS_CLOSED
from .accounting import ShiftAccounting, CashDistributionEntry, DENOMINATION_FIELDS
from .banking import BankAccount, BankTransaction, TXN_CREDIT, TXN_DEBIT
from .audit import ShiftEvent

__all__ = [
    'Product', 'Tank', 'Nozzle', 'Attendant',
    'AttendantShift', 'MeterAssignment', 'STATUS_OPEN', 'STATUS_CLOSED',
    'ShiftAccounting', 'CashDistributionEntry', 'DENOMINATION_FIELDS',
    'BankAccount', 'BankTransaction', 'TXN_CREDIT', 'TXN_DEBIT',
    'ShiftEvent',
]
