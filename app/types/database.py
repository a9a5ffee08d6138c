"""Database record type definitions.

NOTE: This file must track database/schema.sql manually.
Only rows the postgres repository reads back are typed here.
"""

from datetime import datetime
from typing import TypedDict


class ApplicationRowTD(TypedDict):
    """Row from applications table.

    Used in: storage/postgres.py (_application_from_row)
    """

    application_id: str
    applicant_email: str
    status: str
    document: str
    version: int
    submitted_at: datetime
    updated_at: datetime


class LeadRowTD(TypedDict):
    """Row from leads table."""

    lead_id: str
    application_id: str
    email: str
    status: str
    document: str
    version: int


class TaskRowTD(TypedDict):
    """Row from tasks table; document excludes the completion ledger."""

    task_id: str
    type: str
    status: str
    is_active: bool
    document: str
    version: int


class CompletionRowTD(TypedDict):
    """Row from task_completions table."""

    task_id: str
    lead_id: str
    status: str
    document: str
    removed_at: datetime | None
