"""Type definitions for database rows."""

# Database record types
from app.types.database import (
    ApplicationRowTD,
    CompletionRowTD,
    LeadRowTD,
    TaskRowTD,
)

__all__ = [
    "ApplicationRowTD",
    "CompletionRowTD",
    "LeadRowTD",
    "TaskRowTD",
]
