"""Leave service layer — leave-type registry, accounts, ledger, balance engine, accruals.

Business logic:
  - A balance is never stored: it is the account's opening balance plus the
    signed sum of its ledger rows, recomputed on every read
  - Ledger amounts are non-negative magnitudes; the entry kind carries the sign
  - At most one ledger row references a given absence
  - Monthly accruals and carryover expiry are materialised as ledger rows,
    idempotently, by ``AccrualService`` (run from ``scripts/post_accruals.py``)
"""

from __future__ import annotations

import calendar
import logging
import uuid
from collections import defaultdict
from datetime import date
from decimal import Decimal
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from time_manager.absence.models import Absence
from time_manager.common.constants import CREDIT_KINDS, LeaveLedgerKind
from time_manager.common.exceptions import (
    ConflictError,
    NotFoundException,
    ValidationException,
)
from time_manager.directory.service import DirectoryService
from time_manager.leave.models import LeaveAccount, LeaveLedgerEntry, LeaveType

logger = logging.getLogger(__name__)


def _month_bounds(day: date) -> tuple[date, date]:
    last = calendar.monthrange(day.year, day.month)[1]
    return day.replace(day=1), day.replace(day=last)


def _check_amount(amount: Optional[Decimal]) -> Decimal:
    if amount is None:
        raise ValidationException({"amount": ["Amount is required."]})
    amount = Decimal(amount)
    if amount < 0:
        raise ValidationException({"amount": ["Amount must be zero or positive."]})
    return amount


# ═════════════════════════════════════════════════════════════════════
# Leave types
# ═════════════════════════════════════════════════════════════════════


class LeaveTypeService:
    """Registry of leave-type codes (VAC, RTT, ...)."""

    @staticmethod
    async def list_all(db: AsyncSession) -> list[LeaveType]:
        result = await db.execute(select(LeaveType).order_by(LeaveType.code))
        return list(result.scalars().all())

    @staticmethod
    async def get_by_code(db: AsyncSession, code: str) -> LeaveType:
        leave_type = await db.get(LeaveType, code)
        if leave_type is None:
            raise NotFoundException("LeaveType", code)
        return leave_type

    @staticmethod
    async def create(db: AsyncSession, code: str, label: str) -> LeaveType:
        if await db.get(LeaveType, code) is not None:
            raise ConflictError("code", code)
        leave_type = LeaveType(code=code, label=label)
        db.add(leave_type)
        await db.flush()
        logger.info("Created leave type %s", code)
        return leave_type

    @staticmethod
    async def update(
        db: AsyncSession, code: str, label: Optional[str] = None,
    ) -> LeaveType:
        leave_type = await LeaveTypeService.get_by_code(db, code)
        if label is not None:
            leave_type.label = label
        await db.flush()
        return leave_type

    @staticmethod
    async def delete(db: AsyncSession, code: str) -> bool:
        """Delete a leave type; refused while accounts still use it."""
        leave_type = await db.get(LeaveType, code)
        if leave_type is None:
            return False

        in_use = await db.execute(
            select(func.count(LeaveAccount.id)).where(
                LeaveAccount.leave_type_code == code
            )
        )
        if in_use.scalar_one() > 0:
            raise ConflictError(
                "leave_type_code",
                code,
                detail=f"Leave type '{code}' is still used by leave accounts.",
            )

        await db.delete(leave_type)
        await db.flush()
        logger.info("Deleted leave type %s", code)
        return True


# ═════════════════════════════════════════════════════════════════════
# Leave accounts
# ═════════════════════════════════════════════════════════════════════


class LeaveAccountService:
    """One account per (user, leave type)."""

    @staticmethod
    async def get(db: AsyncSession, account_id: uuid.UUID) -> LeaveAccount:
        account = await db.get(LeaveAccount, account_id)
        if account is None:
            raise NotFoundException("LeaveAccount", str(account_id))
        return account

    @staticmethod
    async def list_by_user(db: AsyncSession, user_id: uuid.UUID) -> list[LeaveAccount]:
        result = await db.execute(
            select(LeaveAccount)
            .where(LeaveAccount.user_id == user_id)
            .order_by(LeaveAccount.leave_type_code)
        )
        return list(result.scalars().all())

    @staticmethod
    async def list_by_users(
        db: AsyncSession, user_ids: list[uuid.UUID],
    ) -> list[LeaveAccount]:
        if not user_ids:
            return []
        result = await db.execute(
            select(LeaveAccount)
            .where(LeaveAccount.user_id.in_(user_ids))
            .order_by(LeaveAccount.user_id, LeaveAccount.leave_type_code)
        )
        return list(result.scalars().all())

    @staticmethod
    async def find_for_user_and_type(
        db: AsyncSession, user_id: uuid.UUID, leave_type_code: str,
    ) -> Optional[LeaveAccount]:
        result = await db.execute(
            select(LeaveAccount).where(
                LeaveAccount.user_id == user_id,
                LeaveAccount.leave_type_code == leave_type_code,
            )
        )
        return result.scalars().first()

    @staticmethod
    async def create(
        db: AsyncSession,
        user_id: uuid.UUID,
        leave_type_code: str,
        *,
        opening_balance: Optional[Decimal] = None,
        accrual_per_month: Optional[Decimal] = None,
        max_carryover: Optional[Decimal] = None,
        carryover_expire_on: Optional[date] = None,
    ) -> LeaveAccount:
        await DirectoryService.find_user(db, user_id)
        await LeaveTypeService.get_by_code(db, leave_type_code)

        existing = await LeaveAccountService.find_for_user_and_type(
            db, user_id, leave_type_code,
        )
        if existing is not None:
            raise ConflictError(
                "leave_type_code",
                leave_type_code,
                detail=f"User {user_id} already has a '{leave_type_code}' account.",
            )

        account = LeaveAccount(
            user_id=user_id,
            leave_type_code=leave_type_code,
            opening_balance=opening_balance if opening_balance is not None else Decimal("0"),
            accrual_per_month=accrual_per_month if accrual_per_month is not None else Decimal("0"),
            max_carryover=max_carryover,
            carryover_expire_on=carryover_expire_on,
        )
        db.add(account)
        try:
            await db.flush()
        except IntegrityError:
            # Lost a race against a concurrent create for the same pair
            raise ConflictError(
                "leave_type_code",
                leave_type_code,
                detail=f"User {user_id} already has a '{leave_type_code}' account.",
            )

        logger.info(
            "Opened %s leave account %s for user %s (opening %s)",
            leave_type_code, account.id, user_id, account.opening_balance,
        )
        return account

    @staticmethod
    async def update(
        db: AsyncSession,
        account_id: uuid.UUID,
        *,
        opening_balance: Optional[Decimal] = None,
        accrual_per_month: Optional[Decimal] = None,
        max_carryover: Optional[Decimal] = None,
        carryover_expire_on: Optional[date] = None,
    ) -> LeaveAccount:
        """Numeric fields change only when given; the expiry date is always
        overwritten, so passing ``None`` clears it."""
        account = await LeaveAccountService.get(db, account_id)
        if opening_balance is not None:
            account.opening_balance = opening_balance
        if accrual_per_month is not None:
            account.accrual_per_month = accrual_per_month
        if max_carryover is not None:
            account.max_carryover = max_carryover
        account.carryover_expire_on = carryover_expire_on
        await db.flush()
        return account

    @staticmethod
    async def delete(db: AsyncSession, account_id: uuid.UUID) -> bool:
        """Delete an account together with its ledger rows."""
        account = await db.get(LeaveAccount, account_id)
        if account is None:
            return False

        result = await db.execute(
            select(LeaveLedgerEntry).where(LeaveLedgerEntry.account_id == account_id)
        )
        entries = result.scalars().all()
        for entry in entries:
            await db.delete(entry)
        await db.delete(account)
        await db.flush()
        logger.info(
            "Deleted leave account %s and %d ledger entries", account_id, len(entries),
        )
        return True


# ═════════════════════════════════════════════════════════════════════
# Balance engine
# ═════════════════════════════════════════════════════════════════════


class BalanceEngine:
    """On-demand balance computation. Nothing here is cached."""

    @staticmethod
    async def kind_totals(
        db: AsyncSession, account_id: uuid.UUID,
    ) -> dict[LeaveLedgerKind, Decimal]:
        """Unsigned sum of ledger amounts per entry kind."""
        result = await db.execute(
            select(LeaveLedgerEntry.kind, LeaveLedgerEntry.amount).where(
                LeaveLedgerEntry.account_id == account_id
            )
        )
        totals: dict[LeaveLedgerKind, Decimal] = defaultdict(lambda: Decimal("0"))
        for kind, amount in result.all():
            totals[LeaveLedgerKind(kind)] += Decimal(amount)
        return {kind: totals[kind] for kind in LeaveLedgerKind}

    @staticmethod
    def balance_from_totals(
        opening_balance: Decimal, totals: dict[LeaveLedgerKind, Decimal],
    ) -> Decimal:
        balance = Decimal(opening_balance)
        for kind, amount in totals.items():
            balance += amount if kind in CREDIT_KINDS else -amount
        return balance

    @staticmethod
    async def current_balance(
        db: AsyncSession,
        account_id: uuid.UUID,
        *,
        for_update: bool = False,
    ) -> Decimal:
        """opening_balance + Σ signed(entries).

        ``for_update`` locks the account row first so that a caller checking
        for a sufficient balance is serialised against concurrent writers.
        """
        account = await BalanceEngine._load_account(db, account_id, for_update)
        totals = await BalanceEngine.kind_totals(db, account_id)
        return BalanceEngine.balance_from_totals(account.opening_balance, totals)

    @staticmethod
    async def balance_as_of(
        db: AsyncSession,
        account_id: uuid.UUID,
        as_of: date,
        *,
        for_update: bool = False,
    ) -> Decimal:
        """Balance counting only entries dated on or before ``as_of``."""
        account = await BalanceEngine._load_account(db, account_id, for_update)
        result = await db.execute(
            select(LeaveLedgerEntry).where(
                LeaveLedgerEntry.account_id == account_id,
                LeaveLedgerEntry.entry_date <= as_of,
            )
        )
        balance = Decimal(account.opening_balance)
        for entry in result.scalars():
            balance += entry.signed_amount
        return balance

    @staticmethod
    async def _load_account(
        db: AsyncSession, account_id: uuid.UUID, for_update: bool,
    ) -> LeaveAccount:
        query = select(LeaveAccount).where(LeaveAccount.id == account_id)
        if for_update:
            query = query.with_for_update()
        result = await db.execute(query)
        account = result.scalars().first()
        if account is None:
            raise NotFoundException("LeaveAccount", str(account_id))
        return account


# ═════════════════════════════════════════════════════════════════════
# Ledger
# ═════════════════════════════════════════════════════════════════════


class LeaveLedgerService:
    """CRUD over ledger rows. ``kind`` and ``account_id`` are fixed at creation."""

    @staticmethod
    async def get(db: AsyncSession, entry_id: uuid.UUID) -> LeaveLedgerEntry:
        entry = await db.get(LeaveLedgerEntry, entry_id)
        if entry is None:
            raise NotFoundException("LeaveLedgerEntry", str(entry_id))
        return entry

    @staticmethod
    async def add_entry(
        db: AsyncSession,
        account_id: uuid.UUID,
        *,
        kind: LeaveLedgerKind,
        amount: Optional[Decimal],
        entry_date: Optional[date] = None,
        reference_absence_id: Optional[uuid.UUID] = None,
        note: Optional[str] = None,
        accrual_period: Optional[date] = None,
    ) -> LeaveLedgerEntry:
        amount = _check_amount(amount)
        await LeaveAccountService.get(db, account_id)

        if reference_absence_id is not None:
            if await db.get(Absence, reference_absence_id) is None:
                raise NotFoundException("Absence", str(reference_absence_id))
            taken = await LeaveLedgerService.find_by_reference_absence(
                db, reference_absence_id,
            )
            if taken is not None:
                raise ConflictError("reference_absence_id", reference_absence_id)

        entry = LeaveLedgerEntry(
            account_id=account_id,
            entry_date=entry_date or date.today(),
            kind=kind,
            amount=amount,
            reference_absence_id=reference_absence_id,
            accrual_period=accrual_period,
            note=note,
        )
        db.add(entry)
        await db.flush()
        logger.info(
            "Ledger %s %s on account %s (%s)",
            kind.value, amount, account_id, entry.entry_date,
        )
        return entry

    @staticmethod
    async def update(
        db: AsyncSession,
        entry_id: uuid.UUID,
        *,
        entry_date: Optional[date] = None,
        amount: Optional[Decimal] = None,
        note: Optional[str] = None,
    ) -> LeaveLedgerEntry:
        entry = await LeaveLedgerService.get(db, entry_id)
        if entry_date is not None:
            entry.entry_date = entry_date
        if amount is not None:
            entry.amount = _check_amount(amount)
        if note is not None:
            entry.note = note
        await db.flush()
        return entry

    @staticmethod
    async def delete(db: AsyncSession, entry_id: uuid.UUID) -> bool:
        entry = await db.get(LeaveLedgerEntry, entry_id)
        if entry is None:
            return False
        await db.delete(entry)
        await db.flush()
        logger.info("Deleted ledger entry %s", entry_id)
        return True

    @staticmethod
    async def list_by_account(
        db: AsyncSession,
        account_id: uuid.UUID,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> list[LeaveLedgerEntry]:
        """Rows of an account in chronological order, optionally bounded
        by an inclusive date range."""
        if start is not None and end is not None and start > end:
            raise ValidationException({"start": ["start must be on or before end."]})
        await LeaveAccountService.get(db, account_id)

        query = select(LeaveLedgerEntry).where(LeaveLedgerEntry.account_id == account_id)
        if start is not None:
            query = query.where(LeaveLedgerEntry.entry_date >= start)
        if end is not None:
            query = query.where(LeaveLedgerEntry.entry_date <= end)
        query = query.order_by(LeaveLedgerEntry.entry_date, LeaveLedgerEntry.created_at)

        result = await db.execute(query)
        return list(result.scalars().all())

    @staticmethod
    async def find_by_reference_absence(
        db: AsyncSession, absence_id: uuid.UUID,
    ) -> Optional[LeaveLedgerEntry]:
        result = await db.execute(
            select(LeaveLedgerEntry).where(
                LeaveLedgerEntry.reference_absence_id == absence_id
            )
        )
        return result.scalars().first()

    @staticmethod
    async def delete_by_reference_absence(
        db: AsyncSession, absence_id: uuid.UUID,
    ) -> int:
        result = await db.execute(
            select(LeaveLedgerEntry).where(
                LeaveLedgerEntry.reference_absence_id == absence_id
            )
        )
        entries = result.scalars().all()
        for entry in entries:
            await db.delete(entry)
        if entries:
            await db.flush()
        return len(entries)


# ═════════════════════════════════════════════════════════════════════
# Accrual / carryover materialisation
# ═════════════════════════════════════════════════════════════════════


class AccrualService:
    """Turns account accrual settings into ledger rows.

    Both operations are idempotent: re-running them for the same month or
    date creates nothing new.
    """

    @staticmethod
    async def post_monthly_accruals(db: AsyncSession, period: date) -> int:
        """Post one ACCRUAL row per eligible account for ``period``'s month.

        Returns the number of rows created.
        """
        month_start, month_end = _month_bounds(period)

        result = await db.execute(
            select(LeaveAccount)
            .where(LeaveAccount.accrual_per_month > 0)
            .order_by(LeaveAccount.id)
        )
        accounts = result.scalars().all()

        posted = await db.execute(
            select(LeaveLedgerEntry.account_id).where(
                LeaveLedgerEntry.accrual_period == month_start
            )
        )
        already_posted = set(posted.scalars().all())

        created = 0
        for account in accounts:
            if account.id in already_posted:
                continue
            if account.created_at is not None and account.created_at.date() > month_end:
                continue
            amount = Decimal(account.accrual_per_month)
            db.add(
                LeaveLedgerEntry(
                    account_id=account.id,
                    entry_date=month_start,
                    kind=LeaveLedgerKind.ACCRUAL,
                    amount=amount,
                    accrual_period=month_start,
                    note=f"Monthly accrual {month_start:%Y-%m}",
                )
            )
            created += 1

        if created:
            await db.flush()
        logger.info(
            "Posted %d accrual entries for %s (%d already posted)",
            created, f"{month_start:%Y-%m}", len(already_posted),
        )
        return created

    @staticmethod
    async def expire_carryover(db: AsyncSession, as_of: date) -> int:
        """Forfeit the balance above ``max_carryover`` on every account whose
        carryover expiry date has passed. Returns the number of rows created."""
        result = await db.execute(
            select(LeaveAccount)
            .where(
                LeaveAccount.carryover_expire_on.is_not(None),
                LeaveAccount.carryover_expire_on <= as_of,
            )
            .order_by(LeaveAccount.id)
        )
        accounts = result.scalars().all()

        created = 0
        for account in accounts:
            done = await db.execute(
                select(func.count(LeaveLedgerEntry.id)).where(
                    LeaveLedgerEntry.account_id == account.id,
                    LeaveLedgerEntry.kind == LeaveLedgerKind.CARRYOVER_EXPIRE,
                    LeaveLedgerEntry.entry_date == account.carryover_expire_on,
                )
            )
            if done.scalar_one() > 0:
                continue

            balance = await BalanceEngine.balance_as_of(
                db, account.id, account.carryover_expire_on, for_update=True,
            )
            keep = Decimal(account.max_carryover or 0)
            forfeit = balance - keep
            if forfeit <= 0:
                logger.debug(
                    "Account %s balance %s within carryover cap %s", account.id, balance, keep,
                )
                continue

            db.add(
                LeaveLedgerEntry(
                    account_id=account.id,
                    entry_date=account.carryover_expire_on,
                    kind=LeaveLedgerKind.CARRYOVER_EXPIRE,
                    amount=forfeit,
                    note=f"Carryover expired on {account.carryover_expire_on.isoformat()}",
                )
            )
            await db.flush()
            created += 1
            logger.info("Expired %s units on account %s", forfeit, account.id)

        return created
