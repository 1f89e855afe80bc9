"""Leave module test suite — unit calculator, leave-type registry, accounts,
ledger store, balance engine and accrual / carryover materialisation.

Tests run against SQLite via the shared conftest.py fixtures.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from time_manager.common.constants import AbsencePeriod, LeaveLedgerKind
from time_manager.common.exceptions import (
    ConflictError,
    NotFoundException,
    ValidationException,
)
from time_manager.leave.models import LeaveLedgerEntry
from time_manager.leave.service import (
    AccrualService,
    BalanceEngine,
    LeaveAccountService,
    LeaveLedgerService,
    LeaveTypeService,
)
from time_manager.leave.units import compute_units, unit_for_period
from tests.conftest import make_absence, make_account, make_leave_type, make_user


async def _ledger_count(db: AsyncSession, account_id: uuid.UUID) -> int:
    result = await db.execute(
        select(func.count(LeaveLedgerEntry.id)).where(LeaveLedgerEntry.account_id == account_id)
    )
    return result.scalar_one()


# ═════════════════════════════════════════════════════════════════════
# 1. Unit calculator — pure logic tests (no DB)
# ═════════════════════════════════════════════════════════════════════


class TestComputeUnits:

    def test_mixed_periods(self):
        """AM + PM + FULL_DAY → 0.5 + 0.5 + 1.0."""
        units = compute_units([AbsencePeriod.AM, AbsencePeriod.PM, AbsencePeriod.FULL_DAY])
        assert units == Decimal("2.0")

    def test_empty_is_zero(self):
        assert compute_units([]) == Decimal("0")
        assert compute_units(None) == Decimal("0")

    def test_missing_period_counts_as_full_day(self):
        assert compute_units([None, None]) == Decimal("2.0")

    def test_accepts_string_values(self):
        assert compute_units(["AM", "FULL_DAY"]) == Decimal("1.5")

    def test_result_is_exact_decimal(self):
        units = compute_units([AbsencePeriod.AM] * 7)
        assert isinstance(units, Decimal)
        assert units == Decimal("3.5")

    def test_unknown_period_rejected(self):
        with pytest.raises(ValueError):
            unit_for_period("EVENING")


# ═════════════════════════════════════════════════════════════════════
# 2. Leave-type registry
# ═════════════════════════════════════════════════════════════════════


class TestLeaveTypes:

    async def test_create_and_list(self, db: AsyncSession):
        await LeaveTypeService.create(db, "VAC", "Vacation")
        await LeaveTypeService.create(db, "RTT", "RTT")

        codes = [lt.code for lt in await LeaveTypeService.list_all(db)]
        assert codes == ["RTT", "VAC"]

    async def test_duplicate_code_conflicts(self, db: AsyncSession):
        await make_leave_type(db, "VAC")
        with pytest.raises(ConflictError):
            await LeaveTypeService.create(db, "VAC", "Again")

    async def test_update_label_only(self, db: AsyncSession):
        await make_leave_type(db, "VAC", "Vacation")
        updated = await LeaveTypeService.update(db, "VAC", label="Paid leave")
        assert updated.label == "Paid leave"

        unchanged = await LeaveTypeService.update(db, "VAC")
        assert unchanged.label == "Paid leave"

    async def test_get_unknown_code(self, db: AsyncSession):
        with pytest.raises(NotFoundException):
            await LeaveTypeService.get_by_code(db, "NOPE")

    async def test_delete_unused(self, db: AsyncSession):
        await make_leave_type(db, "VAC")
        assert await LeaveTypeService.delete(db, "VAC") is True
        assert await LeaveTypeService.delete(db, "VAC") is False

    async def test_delete_referenced_type_refused(self, db: AsyncSession):
        user = await make_user(db)
        await make_leave_type(db, "VAC")
        await make_account(db, user, "VAC")

        with pytest.raises(ConflictError):
            await LeaveTypeService.delete(db, "VAC")


# ═════════════════════════════════════════════════════════════════════
# 3. Leave accounts
# ═════════════════════════════════════════════════════════════════════


class TestLeaveAccounts:

    async def test_create_defaults_to_zero(self, db: AsyncSession):
        user = await make_user(db)
        await make_leave_type(db, "VAC")

        account = await LeaveAccountService.create(db, user.id, "VAC")

        assert account.opening_balance == Decimal("0")
        assert account.accrual_per_month == Decimal("0")
        assert account.max_carryover is None
        assert account.carryover_expire_on is None

    async def test_duplicate_user_and_type(self, db: AsyncSession):
        user = await make_user(db)
        await make_leave_type(db, "VAC")
        await LeaveAccountService.create(db, user.id, "VAC")

        with pytest.raises(ConflictError):
            await LeaveAccountService.create(db, user.id, "VAC", opening_balance=Decimal("3"))

    async def test_same_type_for_two_users(self, db: AsyncSession):
        alice = await make_user(db)
        bob = await make_user(db)
        await make_leave_type(db, "VAC")

        await LeaveAccountService.create(db, alice.id, "VAC")
        await LeaveAccountService.create(db, bob.id, "VAC")

        assert len(await LeaveAccountService.list_by_user(db, alice.id)) == 1
        assert len(await LeaveAccountService.list_by_user(db, bob.id)) == 1

    async def test_unknown_user_or_type(self, db: AsyncSession):
        user = await make_user(db)
        await make_leave_type(db, "VAC")

        with pytest.raises(NotFoundException):
            await LeaveAccountService.create(db, uuid.uuid4(), "VAC")
        with pytest.raises(NotFoundException):
            await LeaveAccountService.create(db, user.id, "RTT")

    async def test_update_always_overwrites_expiry(self, db: AsyncSession):
        """Omitted numeric fields are kept, the expiry date is cleared."""
        user = await make_user(db)
        await make_leave_type(db, "VAC")
        account = await make_account(
            db, user, "VAC",
            opening_balance=Decimal("10"),
            accrual_per_month=Decimal("2.083"),
            max_carryover=Decimal("5"),
            carryover_expire_on=date(2026, 3, 31),
        )

        updated = await LeaveAccountService.update(db, account.id, opening_balance=Decimal("7"))

        assert updated.opening_balance == Decimal("7")
        assert updated.accrual_per_month == Decimal("2.083")
        assert updated.max_carryover == Decimal("5")
        assert updated.carryover_expire_on is None

    async def test_update_sets_expiry(self, db: AsyncSession):
        user = await make_user(db)
        await make_leave_type(db, "VAC")
        account = await make_account(db, user, "VAC")

        updated = await LeaveAccountService.update(
            db, account.id, carryover_expire_on=date(2027, 3, 31),
        )
        assert updated.carryover_expire_on == date(2027, 3, 31)

    async def test_get_unknown(self, db: AsyncSession):
        with pytest.raises(NotFoundException):
            await LeaveAccountService.get(db, uuid.uuid4())

    async def test_delete_cascades_ledger(self, db: AsyncSession):
        user = await make_user(db)
        await make_leave_type(db, "VAC")
        account = await make_account(db, user, "VAC")
        await LeaveLedgerService.add_entry(
            db, account.id, kind=LeaveLedgerKind.ACCRUAL, amount=Decimal("2"),
        )
        await LeaveLedgerService.add_entry(
            db, account.id, kind=LeaveLedgerKind.DEBIT, amount=Decimal("1"),
        )

        assert await LeaveAccountService.delete(db, account.id) is True
        assert await _ledger_count(db, account.id) == 0
        assert await LeaveAccountService.delete(db, account.id) is False


# ═════════════════════════════════════════════════════════════════════
# 4. Balance engine
# ═════════════════════════════════════════════════════════════════════


class TestBalanceEngine:

    async def test_no_rows_returns_opening(self, db: AsyncSession):
        user = await make_user(db)
        await make_leave_type(db, "VAC")
        account = await make_account(db, user, "VAC", opening_balance=Decimal("4.5"))

        assert await BalanceEngine.current_balance(db, account.id) == Decimal("4.5")

    async def test_opening_plus_signed_entries(self, db: AsyncSession):
        """10 + ACCRUAL 2 − DEBIT 1.5 = 10.5; a zero ADJUSTMENT changes nothing."""
        user = await make_user(db)
        await make_leave_type(db, "VAC")
        account = await make_account(db, user, "VAC", opening_balance=Decimal("10"))

        await LeaveLedgerService.add_entry(
            db, account.id, kind=LeaveLedgerKind.ACCRUAL, amount=Decimal("2"),
        )
        await LeaveLedgerService.add_entry(
            db, account.id, kind=LeaveLedgerKind.DEBIT, amount=Decimal("1.5"),
        )
        assert await BalanceEngine.current_balance(db, account.id) == Decimal("10.5")

        await LeaveLedgerService.add_entry(
            db, account.id, kind=LeaveLedgerKind.ADJUSTMENT, amount=Decimal("0"),
        )
        assert await BalanceEngine.current_balance(db, account.id) == Decimal("10.5")

    async def test_balance_matches_independent_sum(self, db: AsyncSession):
        user = await make_user(db)
        await make_leave_type(db, "VAC")
        account = await make_account(db, user, "VAC", opening_balance=Decimal("3"))
        movements = [
            (LeaveLedgerKind.ACCRUAL, Decimal("2.08")),
            (LeaveLedgerKind.ACCRUAL, Decimal("2.08")),
            (LeaveLedgerKind.DEBIT, Decimal("0.5")),
            (LeaveLedgerKind.CARRYOVER_EXPIRE, Decimal("1.25")),
            (LeaveLedgerKind.ADJUSTMENT, Decimal("0.1")),
        ]
        for kind, amount in movements:
            await LeaveLedgerService.add_entry(db, account.id, kind=kind, amount=amount)

        rows = await LeaveLedgerService.list_by_account(db, account.id)
        expected = Decimal("3") + sum((row.signed_amount for row in rows), Decimal("0"))

        assert expected == Decimal("5.51")
        assert await BalanceEngine.current_balance(db, account.id) == expected

    async def test_for_update_reads_same_value(self, db: AsyncSession):
        user = await make_user(db)
        await make_leave_type(db, "VAC")
        account = await make_account(db, user, "VAC", opening_balance=Decimal("2"))

        assert await BalanceEngine.current_balance(db, account.id, for_update=True) == Decimal("2")

    async def test_kind_totals(self, db: AsyncSession):
        user = await make_user(db)
        await make_leave_type(db, "VAC")
        account = await make_account(db, user, "VAC")
        await LeaveLedgerService.add_entry(
            db, account.id, kind=LeaveLedgerKind.DEBIT, amount=Decimal("1"),
        )
        await LeaveLedgerService.add_entry(
            db, account.id, kind=LeaveLedgerKind.DEBIT, amount=Decimal("0.5"),
        )

        totals = await BalanceEngine.kind_totals(db, account.id)
        assert totals[LeaveLedgerKind.DEBIT] == Decimal("1.5")
        assert totals[LeaveLedgerKind.ACCRUAL] == Decimal("0")

    async def test_balance_as_of_skips_later_entries(self, db: AsyncSession):
        user = await make_user(db)
        await make_leave_type(db, "VAC")
        account = await make_account(db, user, "VAC", opening_balance=Decimal("4"))
        await LeaveLedgerService.add_entry(
            db, account.id, kind=LeaveLedgerKind.DEBIT, amount=Decimal("1.5"),
            entry_date=date(2026, 3, 10),
        )
        await LeaveLedgerService.add_entry(
            db, account.id, kind=LeaveLedgerKind.ACCRUAL, amount=Decimal("2.083"),
            entry_date=date(2026, 4, 1),
        )

        assert await BalanceEngine.balance_as_of(db, account.id, date(2026, 3, 9)) == Decimal("4")
        assert await BalanceEngine.balance_as_of(db, account.id, date(2026, 3, 31)) == Decimal("2.5")
        assert await BalanceEngine.current_balance(db, account.id) == Decimal("4.583")

        with pytest.raises(NotFoundException):
            await BalanceEngine.balance_as_of(db, uuid.uuid4(), date(2026, 3, 31))

    async def test_unknown_account(self, db: AsyncSession):
        with pytest.raises(NotFoundException):
            await BalanceEngine.current_balance(db, uuid.uuid4())


# ═════════════════════════════════════════════════════════════════════
# 5. Ledger store
# ═════════════════════════════════════════════════════════════════════


class TestLedger:

    async def test_negative_amount_rejected(self, db: AsyncSession):
        user = await make_user(db)
        await make_leave_type(db, "VAC")
        account = await make_account(db, user, "VAC")

        with pytest.raises(ValidationException) as exc:
            await LeaveLedgerService.add_entry(
                db, account.id, kind=LeaveLedgerKind.ADJUSTMENT, amount=Decimal("-1"),
            )
        assert "amount" in exc.value.errors

    async def test_missing_amount_rejected(self, db: AsyncSession):
        user = await make_user(db)
        await make_leave_type(db, "VAC")
        account = await make_account(db, user, "VAC")

        with pytest.raises(ValidationException):
            await LeaveLedgerService.add_entry(
                db, account.id, kind=LeaveLedgerKind.ACCRUAL, amount=None,
            )

    async def test_entry_date_defaults_to_today(self, db: AsyncSession):
        user = await make_user(db)
        await make_leave_type(db, "VAC")
        account = await make_account(db, user, "VAC")

        entry = await LeaveLedgerService.add_entry(
            db, account.id, kind=LeaveLedgerKind.ACCRUAL, amount=Decimal("1"),
        )
        assert entry.entry_date == date.today()

    async def test_unknown_account_or_absence(self, db: AsyncSession):
        user = await make_user(db)
        await make_leave_type(db, "VAC")
        account = await make_account(db, user, "VAC")

        with pytest.raises(NotFoundException):
            await LeaveLedgerService.add_entry(
                db, uuid.uuid4(), kind=LeaveLedgerKind.ACCRUAL, amount=Decimal("1"),
            )
        with pytest.raises(NotFoundException):
            await LeaveLedgerService.add_entry(
                db, account.id, kind=LeaveLedgerKind.DEBIT, amount=Decimal("1"),
                reference_absence_id=uuid.uuid4(),
            )

    async def test_absence_referenced_once(self, db: AsyncSession):
        user = await make_user(db)
        await make_leave_type(db, "VAC")
        account = await make_account(db, user, "VAC")
        absence = await make_absence(db, user)

        await LeaveLedgerService.add_entry(
            db, account.id, kind=LeaveLedgerKind.DEBIT, amount=Decimal("1"),
            reference_absence_id=absence.id,
        )
        with pytest.raises(ConflictError):
            await LeaveLedgerService.add_entry(
                db, account.id, kind=LeaveLedgerKind.DEBIT, amount=Decimal("1"),
                reference_absence_id=absence.id,
            )

    async def test_list_ordered_by_entry_date(self, db: AsyncSession):
        user = await make_user(db)
        await make_leave_type(db, "VAC")
        account = await make_account(db, user, "VAC")
        for day in (date(2026, 3, 1), date(2026, 1, 1), date(2026, 2, 1)):
            await LeaveLedgerService.add_entry(
                db, account.id, kind=LeaveLedgerKind.ACCRUAL, amount=Decimal("2"),
                entry_date=day,
            )

        rows = await LeaveLedgerService.list_by_account(db, account.id)
        assert [r.entry_date for r in rows] == [
            date(2026, 1, 1), date(2026, 2, 1), date(2026, 3, 1),
        ]

        feb_on = await LeaveLedgerService.list_by_account(
            db, account.id, start=date(2026, 2, 1),
        )
        assert [r.entry_date for r in feb_on] == [date(2026, 2, 1), date(2026, 3, 1)]

        january = await LeaveLedgerService.list_by_account(
            db, account.id, start=date(2026, 1, 1), end=date(2026, 1, 31),
        )
        assert len(january) == 1

    async def test_list_inverted_range_rejected(self, db: AsyncSession):
        user = await make_user(db)
        await make_leave_type(db, "VAC")
        account = await make_account(db, user, "VAC")

        with pytest.raises(ValidationException):
            await LeaveLedgerService.list_by_account(
                db, account.id, start=date(2026, 2, 1), end=date(2026, 1, 1),
            )

    async def test_list_unknown_account(self, db: AsyncSession):
        with pytest.raises(NotFoundException):
            await LeaveLedgerService.list_by_account(db, uuid.uuid4())

    async def test_partial_update(self, db: AsyncSession):
        user = await make_user(db)
        await make_leave_type(db, "VAC")
        account = await make_account(db, user, "VAC")
        entry = await LeaveLedgerService.add_entry(
            db, account.id, kind=LeaveLedgerKind.ADJUSTMENT, amount=Decimal("1"),
            entry_date=date(2026, 1, 10), note="initial",
        )

        updated = await LeaveLedgerService.update(db, entry.id, amount=Decimal("2.5"))
        assert updated.amount == Decimal("2.5")
        assert updated.note == "initial"
        assert updated.entry_date == date(2026, 1, 10)
        assert updated.kind == LeaveLedgerKind.ADJUSTMENT

        with pytest.raises(ValidationException):
            await LeaveLedgerService.update(db, entry.id, amount=Decimal("-0.5"))

    async def test_delete(self, db: AsyncSession):
        user = await make_user(db)
        await make_leave_type(db, "VAC")
        account = await make_account(db, user, "VAC")
        entry = await LeaveLedgerService.add_entry(
            db, account.id, kind=LeaveLedgerKind.ACCRUAL, amount=Decimal("1"),
        )

        assert await LeaveLedgerService.delete(db, entry.id) is True
        assert await LeaveLedgerService.delete(db, entry.id) is False

    async def test_delete_by_reference_absence(self, db: AsyncSession):
        user = await make_user(db)
        await make_leave_type(db, "VAC")
        account = await make_account(db, user, "VAC")
        absence = await make_absence(db, user)
        await LeaveLedgerService.add_entry(
            db, account.id, kind=LeaveLedgerKind.DEBIT, amount=Decimal("1"),
            reference_absence_id=absence.id,
        )

        assert await LeaveLedgerService.delete_by_reference_absence(db, absence.id) == 1
        assert await LeaveLedgerService.find_by_reference_absence(db, absence.id) is None
        assert await LeaveLedgerService.delete_by_reference_absence(db, absence.id) == 0


# ═════════════════════════════════════════════════════════════════════
# 6. Accrual & carryover materialisation
# ═════════════════════════════════════════════════════════════════════


class TestAccruals:

    async def test_posts_once_per_month(self, db: AsyncSession):
        user = await make_user(db)
        await make_leave_type(db, "VAC")
        account = await make_account(
            db, user, "VAC",
            accrual_per_month=Decimal("2.083"),
            created_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
        )

        assert await AccrualService.post_monthly_accruals(db, date(2026, 2, 15)) == 1
        assert await AccrualService.post_monthly_accruals(db, date(2026, 2, 28)) == 0

        rows = await LeaveLedgerService.list_by_account(db, account.id)
        assert len(rows) == 1
        assert rows[0].kind == LeaveLedgerKind.ACCRUAL
        assert rows[0].entry_date == date(2026, 2, 1)
        assert rows[0].accrual_period == date(2026, 2, 1)
        assert rows[0].amount == Decimal("2.083")

    async def test_year_of_accruals_keeps_exact_rate(self, db: AsyncSession):
        user = await make_user(db)
        await make_leave_type(db, "VAC")
        account = await make_account(
            db, user, "VAC",
            accrual_per_month=Decimal("2.083"),
            created_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
        )

        for month in range(1, 13):
            assert await AccrualService.post_monthly_accruals(db, date(2026, month, 1)) == 1

        assert await _ledger_count(db, account.id) == 12
        assert await BalanceEngine.current_balance(db, account.id) == Decimal("24.996")

    async def test_skips_zero_rate_and_future_accounts(self, db: AsyncSession):
        alice = await make_user(db)
        bob = await make_user(db)
        await make_leave_type(db, "VAC")
        await make_account(db, alice, "VAC", accrual_per_month=Decimal("0"))
        await make_account(
            db, bob, "VAC",
            accrual_per_month=Decimal("2"),
            created_at=datetime(2026, 3, 5, tzinfo=timezone.utc),
        )

        assert await AccrualService.post_monthly_accruals(db, date(2026, 2, 1)) == 0
        assert await AccrualService.post_monthly_accruals(db, date(2026, 3, 1)) == 1

    async def test_expire_carryover_above_cap(self, db: AsyncSession):
        user = await make_user(db)
        await make_leave_type(db, "VAC")
        account = await make_account(
            db, user, "VAC",
            opening_balance=Decimal("12"),
            max_carryover=Decimal("5"),
            carryover_expire_on=date(2026, 3, 31),
        )

        assert await AccrualService.expire_carryover(db, date(2026, 3, 30)) == 0
        assert await AccrualService.expire_carryover(db, date(2026, 4, 1)) == 1
        assert await AccrualService.expire_carryover(db, date(2026, 4, 2)) == 0

        rows = await LeaveLedgerService.list_by_account(db, account.id)
        assert [(r.kind, r.amount, r.entry_date) for r in rows] == [
            (LeaveLedgerKind.CARRYOVER_EXPIRE, Decimal("7"), date(2026, 3, 31)),
        ]
        assert await BalanceEngine.current_balance(db, account.id) == Decimal("5")

    async def test_expire_carryover_ignores_later_rows(self, db: AsyncSession):
        """An April accrual posted in the same run is not forfeited for March."""
        user = await make_user(db)
        await make_leave_type(db, "VAC")
        account = await make_account(
            db, user, "VAC",
            opening_balance=Decimal("10"),
            accrual_per_month=Decimal("2"),
            max_carryover=Decimal("5"),
            carryover_expire_on=date(2026, 3, 31),
            created_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
        )

        assert await AccrualService.post_monthly_accruals(db, date(2026, 4, 1)) == 1
        assert await AccrualService.expire_carryover(db, date(2026, 4, 1)) == 1

        rows = await LeaveLedgerService.list_by_account(db, account.id)
        assert [(r.kind, r.amount, r.entry_date) for r in rows] == [
            (LeaveLedgerKind.CARRYOVER_EXPIRE, Decimal("5"), date(2026, 3, 31)),
            (LeaveLedgerKind.ACCRUAL, Decimal("2"), date(2026, 4, 1)),
        ]
        assert await BalanceEngine.current_balance(db, account.id) == Decimal("7")

    async def test_expire_carryover_within_cap(self, db: AsyncSession):
        user = await make_user(db)
        await make_leave_type(db, "VAC")
        await make_account(
            db, user, "VAC",
            opening_balance=Decimal("3"),
            max_carryover=Decimal("5"),
            carryover_expire_on=date(2026, 3, 31),
        )

        assert await AccrualService.expire_carryover(db, date(2026, 4, 1)) == 0
