from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

HealthStatus = Literal["healthy", "warning", "unhealthy"]


class ComponentHealth(BaseModel):
    status: HealthStatus
    last_check: str
    error: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)


class DiagnosticsReport(BaseModel):
    """Answer to the operator question "can this process do its job?"."""

    timestamp: str
    overall: HealthStatus = "healthy"
    api_reachable: bool = False
    printer_present: bool = False
    directories_present: bool = False
    config_present: bool = False
    components: Dict[str, ComponentHealth] = Field(default_factory=dict)
    errors: List[str] = Field(default_factory=list)
