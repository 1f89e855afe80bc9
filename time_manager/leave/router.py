"""Leave router — leave types, accounts, balances, ledger, accrual runs.

All endpoints require authentication. Writes to the registry, the accounts
and the ledger are admin-only; owners and their managers can read.
"""


import uuid
from datetime import date, datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession

from time_manager.auth.dependencies import get_current_user, require_role
from time_manager.common.constants import UserRole
from time_manager.common.exceptions import ForbiddenException, NotFoundException
from time_manager.database import get_db
from time_manager.directory.models import User
from time_manager.directory.service import DirectoryService
from time_manager.leave.models import LeaveAccount
from time_manager.leave.schemas import (
    AccrualRunRequest,
    BalanceOut,
    CarryoverExpiryRequest,
    LeaveAccountCreate,
    LeaveAccountOut,
    LeaveAccountUpdate,
    LeaveLedgerCreate,
    LeaveLedgerEntryOut,
    LeaveLedgerUpdate,
    LeaveTypeCreate,
    LeaveTypeOut,
    LeaveTypeUpdate,
    MaterialisationResult,
)
from time_manager.leave.service import (
    AccrualService,
    BalanceEngine,
    LeaveAccountService,
    LeaveLedgerService,
    LeaveTypeService,
)

router = APIRouter(prefix="", tags=["leave"])

_admin = require_role(UserRole.admin)


async def _readable_account(
    db: AsyncSession, user: User, account_id: uuid.UUID,
) -> LeaveAccount:
    account = await LeaveAccountService.get(db, account_id)
    if not await DirectoryService.can_act_on(db, user, account.user_id):
        raise ForbiddenException()
    return account


# ═════════════════════════════════════════════════════════════════════
# Leave types
# ═════════════════════════════════════════════════════════════════════


@router.get("/types", response_model=list[LeaveTypeOut])
async def list_leave_types(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await LeaveTypeService.list_all(db)


@router.post("/types", response_model=LeaveTypeOut, status_code=201)
async def create_leave_type(
    body: LeaveTypeCreate,
    user: User = Depends(_admin),
    db: AsyncSession = Depends(get_db),
):
    return await LeaveTypeService.create(db, body.code, body.label)


@router.patch("/types/{code}", response_model=LeaveTypeOut)
async def update_leave_type(
    code: str,
    body: LeaveTypeUpdate,
    user: User = Depends(_admin),
    db: AsyncSession = Depends(get_db),
):
    return await LeaveTypeService.update(db, code, label=body.label)


@router.delete("/types/{code}", status_code=204)
async def delete_leave_type(
    code: str,
    user: User = Depends(_admin),
    db: AsyncSession = Depends(get_db),
):
    """Delete an unused leave type. 409 while accounts reference it."""
    if not await LeaveTypeService.delete(db, code):
        raise NotFoundException("LeaveType", code)
    return Response(status_code=204)


# ═════════════════════════════════════════════════════════════════════
# Accounts
# ═════════════════════════════════════════════════════════════════════


@router.post("/accounts", response_model=LeaveAccountOut, status_code=201)
async def create_leave_account(
    body: LeaveAccountCreate,
    user: User = Depends(_admin),
    db: AsyncSession = Depends(get_db),
):
    return await LeaveAccountService.create(
        db,
        body.user_id,
        body.leave_type_code,
        opening_balance=body.opening_balance,
        accrual_per_month=body.accrual_per_month,
        max_carryover=body.max_carryover,
        carryover_expire_on=body.carryover_expire_on,
    )


@router.get("/accounts", response_model=list[LeaveAccountOut])
async def list_leave_accounts(
    user_id: Optional[uuid.UUID] = Query(None),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Accounts of ``user_id`` (default: the caller)."""
    target = user_id or user.id
    if not await DirectoryService.can_act_on(db, user, target):
        raise ForbiddenException()
    return await LeaveAccountService.list_by_user(db, target)


@router.get("/accounts/{account_id}", response_model=LeaveAccountOut)
async def get_leave_account(
    account_id: uuid.UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await _readable_account(db, user, account_id)


@router.patch("/accounts/{account_id}", response_model=LeaveAccountOut)
async def update_leave_account(
    account_id: uuid.UUID,
    body: LeaveAccountUpdate,
    user: User = Depends(_admin),
    db: AsyncSession = Depends(get_db),
):
    """Partial update; an omitted ``carryover_expire_on`` clears the expiry."""
    return await LeaveAccountService.update(
        db,
        account_id,
        opening_balance=body.opening_balance,
        accrual_per_month=body.accrual_per_month,
        max_carryover=body.max_carryover,
        carryover_expire_on=body.carryover_expire_on,
    )


@router.delete("/accounts/{account_id}", status_code=204)
async def delete_leave_account(
    account_id: uuid.UUID,
    user: User = Depends(_admin),
    db: AsyncSession = Depends(get_db),
):
    """Delete an account and every ledger row on it."""
    if not await LeaveAccountService.delete(db, account_id):
        raise NotFoundException("LeaveAccount", str(account_id))
    return Response(status_code=204)


@router.get("/accounts/{account_id}/balance", response_model=BalanceOut)
async def get_balance(
    account_id: uuid.UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    account = await _readable_account(db, user, account_id)
    balance = await BalanceEngine.current_balance(db, account.id)
    return BalanceOut(
        account_id=account.id,
        leave_type_code=account.leave_type_code,
        balance=balance,
        as_of=datetime.now(timezone.utc),
    )


@router.get("/accounts/{account_id}/ledger", response_model=list[LeaveLedgerEntryOut])
async def list_ledger(
    account_id: uuid.UUID,
    start: Optional[date] = Query(None),
    end: Optional[date] = Query(None),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await _readable_account(db, user, account_id)
    return await LeaveLedgerService.list_by_account(db, account_id, start, end)


# ═════════════════════════════════════════════════════════════════════
# Ledger (manual movements)
# ═════════════════════════════════════════════════════════════════════


@router.post("/ledger", response_model=LeaveLedgerEntryOut, status_code=201)
async def add_ledger_entry(
    body: LeaveLedgerCreate,
    user: User = Depends(_admin),
    db: AsyncSession = Depends(get_db),
):
    return await LeaveLedgerService.add_entry(
        db,
        body.account_id,
        kind=body.kind,
        amount=body.amount,
        entry_date=body.entry_date,
        reference_absence_id=body.reference_absence_id,
        note=body.note,
    )


@router.patch("/ledger/{entry_id}", response_model=LeaveLedgerEntryOut)
async def update_ledger_entry(
    entry_id: uuid.UUID,
    body: LeaveLedgerUpdate,
    user: User = Depends(_admin),
    db: AsyncSession = Depends(get_db),
):
    return await LeaveLedgerService.update(
        db, entry_id, entry_date=body.entry_date, amount=body.amount, note=body.note,
    )


@router.delete("/ledger/{entry_id}", status_code=204)
async def delete_ledger_entry(
    entry_id: uuid.UUID,
    user: User = Depends(_admin),
    db: AsyncSession = Depends(get_db),
):
    if not await LeaveLedgerService.delete(db, entry_id):
        raise NotFoundException("LeaveLedgerEntry", str(entry_id))
    return Response(status_code=204)


# ═════════════════════════════════════════════════════════════════════
# Materialisation runs
# ═════════════════════════════════════════════════════════════════════


@router.post("/accruals", response_model=MaterialisationResult)
async def run_monthly_accruals(
    body: AccrualRunRequest,
    user: User = Depends(_admin),
    db: AsyncSession = Depends(get_db),
):
    """Post the monthly accrual for every eligible account. Idempotent."""
    created = await AccrualService.post_monthly_accruals(db, body.period)
    return MaterialisationResult(created=created)


@router.post("/carryover-expiry", response_model=MaterialisationResult)
async def run_carryover_expiry(
    body: CarryoverExpiryRequest,
    user: User = Depends(_admin),
    db: AsyncSession = Depends(get_db),
):
    created = await AccrualService.expire_carryover(db, body.as_of)
    return MaterialisationResult(created=created)
