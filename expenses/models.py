"""
expenses/models.py -- Domain dataclasses for expense records.

Pure data containers with zero logic. Status transitions and aggregation live
in expenses/store.py; who may trigger them is decided in auth/access.py.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class ExpenseStatus(str, Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"


class ExpenseCategory(str, Enum):
    travel = "Travel"
    meals = "Meals"
    accommodation = "Accommodation"
    office_supplies = "Office Supplies"
    equipment = "Equipment"
    other = "Other"


@dataclass
class Expense:
    """One reimbursement claim.

    user_id is the submitter and the owner for access checks. receipt is a
    reference to wherever the receipt file was stored; storing the file
    itself is not this service's job.

    id is None before the record is written to the database.
    """

    user_id: int
    title: str
    description: str
    amount: float
    category: ExpenseCategory
    date: str  # YYYY-MM-DD
    status: ExpenseStatus = ExpenseStatus.pending
    receipt: Optional[str] = None
    reviewed_by: Optional[int] = None
    reviewed_at: Optional[str] = None  # ISO 8601
    created_at: str = ""  # ISO 8601, set by store on insert
    id: Optional[int] = None
