"""
Cron run summary schemas.

WHY: The cron runner logs these bodies; typed summaries keep the two jobs'
output stable and documented in OpenAPI.
"""

from typing import Any, Dict, List

from pydantic import BaseModel, Field


class PendingChangesRunResponse(BaseModel):
    """Summary of one pending seat change run."""

    success: bool
    message: str
    timestamp: str
    correlation_id: str
    window_start: str
    window_end: str
    processed: int = Field(description="Changes pushed and marked synced")
    failed: int = Field(description="Changes that failed or have an unknown outcome")
    results: List[Dict[str, Any]] = Field(default_factory=list)
    errors: List[Dict[str, Any]] = Field(default_factory=list)


class ReconciliationRunResponse(BaseModel):
    """Summary of one reconciliation run."""

    success: bool
    message: str
    timestamp: str
    correlation_id: str
    checked: int
    matches: int
    mismatches: int
    errors: int
    results: List[Dict[str, Any]] = Field(
        default_factory=list, description="Subscriptions whose seat counts disagree"
    )
    error_details: List[Dict[str, Any]] = Field(default_factory=list)

