"""Absence Pydantic v2 schemas."""

from __future__ import annotations

import uuid
from datetime import date, datetime, time
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from time_manager.common.constants import AbsencePeriod, AbsenceStatus, AbsenceType


class AbsenceCreate(BaseModel):
    """Payload for requesting an absence.

    Every date in the range gets one day row, FULL_DAY unless
    ``period_by_date`` overrides it.
    """

    start_date: date
    end_date: date
    type: AbsenceType
    reason: Optional[str] = Field(None, max_length=2000)
    supporting_document_url: Optional[str] = Field(None, max_length=500)
    period_by_date: Optional[dict[date, AbsencePeriod]] = None

    @model_validator(mode="after")
    def _check_range(self) -> "AbsenceCreate":
        if self.start_date > self.end_date:
            raise ValueError("start_date must be on or before end_date")
        return self


class AbsenceUpdate(BaseModel):
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    type: Optional[AbsenceType] = None
    reason: Optional[str] = Field(None, max_length=2000)
    supporting_document_url: Optional[str] = Field(None, max_length=500)
    period_by_date: Optional[dict[date, AbsencePeriod]] = None


class AbsenceStatusUpdate(BaseModel):
    status: AbsenceStatus


class AbsenceDayOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    absence_date: date
    period: Optional[AbsencePeriod] = None
    start_time: Optional[time] = None
    end_time: Optional[time] = None


class AbsenceOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    user_id: uuid.UUID
    start_date: date
    end_date: date
    type: AbsenceType
    reason: Optional[str] = None
    supporting_document_url: Optional[str] = None
    status: AbsenceStatus
    approved_by: Optional[uuid.UUID] = None
    approved_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    days: list[AbsenceDayOut] = []
