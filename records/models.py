"""
records/models.py -- Domain dataclasses for the listed entities.

These are pure data containers with zero logic. Persistence and the
transactional forum-post and check-in-note workflows live in records/store.py.

Soft deletion: every entity except CheckInNote carries deleted_at. A non-None value hides the
row from every listing; nothing here ever removes a row physically.
"""

from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional


@dataclass
class Budget:
    """A grant-funded budget for one department and fiscal year.

    fiscal_year_start is the first day of the fiscal year; the allocations
    listing filters on its calendar year (?fiscal_year=YYYY). user_id is the
    budget owner, which scopes the allocation report for read:own_allocation_data.
    """

    name: str
    fiscal_year_start: date
    grant_id: Optional[int] = None
    department_id: Optional[int] = None
    user_id: Optional[int] = None
    id: Optional[int] = None
    deleted_at: Optional[str] = None


@dataclass
class Allocation:
    """A single spend against a budget."""

    budget_id: int
    transaction_date: date
    amount: float
    description: Optional[str] = None
    created_by_user_id: Optional[int] = None
    id: Optional[int] = None
    created_at: str = ""  # ISO 8601, set by store on insert
    deleted_at: Optional[str] = None


@dataclass
class ForumTopic:
    title: str
    is_locked: bool = False
    id: Optional[int] = None
    last_post_at: Optional[str] = None
    last_post_user_id: Optional[int] = None
    created_at: str = ""
    deleted_at: Optional[str] = None


@dataclass
class ForumPost:
    """A post in a topic. Posts made through the API have user_id None and
    carry the creating key in created_by_api_key_id."""

    topic_id: int
    content: str
    user_id: Optional[int] = None
    created_by_api_key_id: Optional[int] = None
    id: Optional[int] = None
    created_at: str = ""
    deleted_at: Optional[str] = None


@dataclass
class CheckIn:
    """A visitor check-in at a site. client_email is optional at the kiosk."""

    site_id: int
    first_name: str
    last_name: str
    check_in_time: datetime
    client_email: Optional[str] = None
    notified_staff_id: Optional[int] = None
    id: Optional[int] = None
    created_at: str = ""
    deleted_at: Optional[str] = None


@dataclass
class CheckInNote:
    """Free-text note attached to a check-in by an API key."""

    check_in_id: int
    note_text: str
    created_by_api_key_id: Optional[int] = None
    id: Optional[int] = None
    created_at: str = ""
