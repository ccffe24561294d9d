from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field as PydanticField
from sqlalchemy import ARRAY, Column, DateTime
from sqlmodel import Field, SQLModel

DenialReason = Literal["perMinute", "perDay"]


class QuotaRecord(SQLModel, table=True):
    """Per-model request accounting. One row per model id, upserted lazily."""

    __tablename__ = "quota_records"

    model: str = Field(primary_key=True)
    requests: List[datetime] = Field(
        default_factory=list, sa_column=Column(ARRAY(DateTime(timezone=True)), nullable=False)
    )
    daily_count: int = 0
    last_reset_date: str  # YYYY-MM-DD in the quota timezone


class RateLimits(BaseModel):
    per_minute: int = PydanticField(..., gt=0)
    per_day: int = PydanticField(..., gt=0)


class AdmissionResult(BaseModel):
    allowed: bool
    reason: Optional[DenialReason] = None
    retry_after: Optional[int] = None
