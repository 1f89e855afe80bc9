"""Accounting bridge — keeps the leave ledger in step with absence decisions.

An APPROVED absence of a mapped type owns exactly one DEBIT row, keyed by
``reference_absence_id``; any other status owns none. The hooks are
idempotent and are called by the absence service inside the same
transaction as the change that triggered them.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
import weakref
from datetime import date
from typing import Mapping, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from time_manager.absence.models import Absence
from time_manager.common.constants import AbsenceStatus, LeaveLedgerKind
from time_manager.common.exceptions import PreconditionFailedException
from time_manager.config import settings
from time_manager.leave.models import LeaveLedgerEntry
from time_manager.leave.service import LeaveAccountService, LeaveLedgerService
from time_manager.leave.units import compute_units

logger = logging.getLogger(__name__)

# Per-absence locks; entries disappear once no coroutine holds them
_absence_locks: "weakref.WeakValueDictionary[uuid.UUID, asyncio.Lock]" = (
    weakref.WeakValueDictionary()
)


def _lock_for(absence_id: uuid.UUID) -> asyncio.Lock:
    lock = _absence_locks.get(absence_id)
    if lock is None:
        lock = asyncio.Lock()
        _absence_locks[absence_id] = lock
    return lock


def _type_key(absence_type) -> str:
    return getattr(absence_type, "value", absence_type)


class LeaveAccountingBridge:
    """Translate absence lifecycle events into ledger debits."""

    def __init__(self, type_map: Optional[Mapping[str, str]] = None) -> None:
        source = settings.ABSENCE_LEAVE_TYPE_MAP if type_map is None else type_map
        self.type_map: dict[str, str] = {_type_key(k): v for k, v in source.items()}

    @classmethod
    def from_settings(cls) -> "LeaveAccountingBridge":
        return cls(settings.ABSENCE_LEAVE_TYPE_MAP)

    def leave_type_for(self, absence: Absence) -> Optional[str]:
        return self.type_map.get(_type_key(absence.type))

    # ── Hooks ───────────────────────────────────────────────────────

    async def on_absence_changed(
        self, db: AsyncSession, absence: Absence,
    ) -> Optional[LeaveLedgerEntry]:
        if absence.status == AbsenceStatus.APPROVED and self.leave_type_for(absence):
            return await self.ensure_debit_for_approved_absence(db, absence)
        # Not approved, or retyped to a type that draws on no account
        await self.remove_debit_for_absence(db, absence.id)
        return None

    async def on_absence_deleted(self, db: AsyncSession, absence_id: uuid.UUID) -> int:
        return await self.remove_debit_for_absence(db, absence_id)

    # ── Reconciliation ──────────────────────────────────────────────

    async def ensure_debit_for_approved_absence(
        self, db: AsyncSession, absence: Absence,
    ) -> Optional[LeaveLedgerEntry]:
        """Create or refresh the DEBIT row of an approved absence.

        ``absence.days`` must be loaded. Returns the row, or ``None`` when
        the absence is not approved or its type does not draw on a leave
        account.
        """
        if absence.status != AbsenceStatus.APPROVED:
            logger.debug("Absence %s is %s, no debit", absence.id, absence.status)
            return None

        leave_type_code = self.leave_type_for(absence)
        if leave_type_code is None:
            logger.debug(
                "Absence type %s is not mapped to a leave type, ledger untouched",
                _type_key(absence.type),
            )
            return None

        account = await LeaveAccountService.find_for_user_and_type(
            db, absence.user_id, leave_type_code,
        )
        if account is None:
            logger.warning(
                "User %s has no %s leave account, cannot debit absence %s",
                absence.user_id, leave_type_code, absence.id,
            )
            raise PreconditionFailedException(
                f"User {absence.user_id} has no '{leave_type_code}' leave account.",
                errors={"leave_type_code": [leave_type_code]},
            )

        units = compute_units(day.period for day in absence.days)
        entry_date = absence.start_date or date.today()
        note = f"Auto debit for absence #{absence.id} ({_type_key(absence.type)})"

        async with _lock_for(absence.id):
            entry = await LeaveLedgerService.find_by_reference_absence(db, absence.id)
            if entry is None:
                entry = LeaveLedgerEntry(
                    account_id=account.id,
                    entry_date=entry_date,
                    kind=LeaveLedgerKind.DEBIT,
                    amount=units,
                    reference_absence_id=absence.id,
                    note=note,
                )
                try:
                    async with db.begin_nested():
                        db.add(entry)
                except IntegrityError:
                    # Another process inserted the row first; adopt it
                    logger.info("Debit for absence %s created concurrently", absence.id)
                    entry = await LeaveLedgerService.find_by_reference_absence(
                        db, absence.id,
                    )
                    if entry is None:
                        raise
                else:
                    logger.info(
                        "Debited %s %s for absence %s", units, leave_type_code, absence.id,
                    )
                    return entry

            entry.account_id = account.id
            entry.entry_date = entry_date
            entry.kind = LeaveLedgerKind.DEBIT
            entry.amount = units
            entry.note = note
            await db.flush()
            logger.info(
                "Refreshed debit for absence %s: %s %s", absence.id, units, leave_type_code,
            )
            return entry

    async def remove_debit_for_absence(
        self, db: AsyncSession, absence_id: uuid.UUID,
    ) -> int:
        async with _lock_for(absence_id):
            removed = await LeaveLedgerService.delete_by_reference_absence(db, absence_id)
        if removed:
            logger.info("Removed %d debit row(s) for absence %s", removed, absence_id)
        return removed
