"""
Pydantic schemas for service output models.

These schemas define the structure of the cap table summary for serialization.
"""

from .captable import (
    CapTableRow,
    CapTableSection,
    CapTableSummary,
    CapTableTotals,
    FounderPreferred,
    PlanRow,
    PlanSection,
)

__all__ = [
    "CapTableRow", "CapTableSection", "CapTableSummary", "CapTableTotals",
    "FounderPreferred", "PlanRow", "PlanSection",
]
