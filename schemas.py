# schemas.py

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel


# User Schemas
class UserCreate(BaseModel):
    display_name: str
    device_id: Optional[str] = None
    avatar_url: Optional[str] = None


class UserUpdate(BaseModel):
    display_name: str


class User(BaseModel):
    id: str
    display_name: str
    device_id: Optional[str] = None
    avatar_url: Optional[str] = None

    class Config:
        from_attributes = True


class Member(BaseModel):
    """A trip participant as the balance calculator sees it."""
    id: str
    display_name: str
    role: Optional[str] = None


# Trip Schemas
class TripCreate(BaseModel):
    name: str
    created_by: str
    description: Optional[str] = None


class TripJoin(BaseModel):
    code: str
    user_id: str


class Trip(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    join_code: str
    created_by: str
    created_at: datetime

    class Config:
        from_attributes = True


class TripSummary(Trip):
    member_count: int = 0


class TripDetail(Trip):
    """A trip with its roster."""
    members: List[Member] = []


# Expense Schemas
class ExpenseFields(BaseModel):
    """Fields the ledger persists for a new expense."""
    description: str
    amount: float
    paid_by: str
    split_type: str = "equal"
    currency: Optional[str] = None


class ExpenseCreate(ExpenseFields):
    split_among: List[str]


class Expense(BaseModel):
    id: str
    trip_id: str
    description: str
    amount: float
    currency: str
    paid_by: str
    split_type: str
    created_at: datetime

    class Config:
        from_attributes = True


class ExpenseSplit(BaseModel):
    id: str
    expense_id: str
    user_id: str
    amount: float
    is_settled: bool
    settled_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ExpenseDetail(Expense):
    """An expense with its splits and the paying member."""
    paid_by_user: Optional[User] = None
    splits: List[ExpenseSplit] = []


class BalanceSummary(BaseModel):
    """Net balance of one member. Positive means owed, negative means owes."""
    user_id: str
    user_name: str
    balance: float


# Change feed
class ChangeEvent(BaseModel):
    type: Optional[str] = None
    eventType: Optional[str] = None
    table: str
    record: Optional[dict] = None
    old_record: Optional[dict] = None
    new: Optional[dict] = None
    old: Optional[dict] = None
