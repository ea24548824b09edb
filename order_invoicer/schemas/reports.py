from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field


class DailyCount(BaseModel):
    date: str
    count: int


class DigestReport(BaseModel):
    """Summary of orders processed during a day or a week."""

    kind: str = Field(..., description="'daily' or 'weekly'")
    period: str
    orders: List[str] = Field(default_factory=list)
    total: int = 0
    daily_breakdown: Optional[List[DailyCount]] = None
    generated_at: str


class CycleReport(BaseModel):
    """Outcome of one fetch -> filter -> process cycle."""

    started_at: str
    finished_at: Optional[str] = None
    fetched: int = 0
    skipped: int = 0
    processed: List[str] = Field(default_factory=list)
    failed: List[str] = Field(default_factory=list)
    print_failures: List[str] = Field(default_factory=list)
    fetch_error: Optional[str] = None
