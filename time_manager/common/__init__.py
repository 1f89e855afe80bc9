"""Common module — shared utilities for time_manager."""

from time_manager.common.constants import (
    CREDIT_KINDS,
    AbsencePeriod,
    AbsenceStatus,
    AbsenceType,
    ClockKind,
    KpiScope,
    LeaveLedgerKind,
    UserRole,
    WorkDay,
    WorkPeriod,
)
from time_manager.common.exceptions import (
    AppException,
    ConflictError,
    ForbiddenException,
    InternalError,
    NotFoundException,
    PreconditionFailedException,
    ValidationException,
    register_exception_handlers,
)

__all__ = [
    # Constants / Enums
    "AbsencePeriod",
    "AbsenceStatus",
    "AbsenceType",
    "ClockKind",
    "KpiScope",
    "LeaveLedgerKind",
    "UserRole",
    "WorkDay",
    "WorkPeriod",
    "CREDIT_KINDS",
    # Exceptions
    "AppException",
    "ConflictError",
    "ForbiddenException",
    "InternalError",
    "NotFoundException",
    "PreconditionFailedException",
    "ValidationException",
    "register_exception_handlers",
]
