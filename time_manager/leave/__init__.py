"""Leave module — leave types, accounts, ledger, balances and the absence accounting bridge."""

from time_manager.leave.models import LeaveAccount, LeaveLedgerEntry, LeaveType
from time_manager.leave.units import compute_units

__all__ = ["LeaveType", "LeaveAccount", "LeaveLedgerEntry", "compute_units"]
