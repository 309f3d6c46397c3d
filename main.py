# main.py

import math
import secrets
from typing import List

from fastapi import FastAPI, Depends, HTTPException, status
from sqlalchemy import func
from sqlalchemy.orm import Session

# Import models, schemas, and the database session dependency
import models, schemas
from config import settings
from database import engine, get_db
from dependencies import LedgerRegistry, get_registry
from ledger import EXPENSE_NOT_FOUND, SPLIT_NOT_FOUND, ExpenseLedger
from logger import get_logger

logger = get_logger(__name__)

STORE_ERROR_DETAIL = "Something went wrong talking to the database. Please try again."

# Create all database tables on startup
models.Base.metadata.create_all(bind=engine)

app = FastAPI(title=settings.APP_NAME)


def generate_join_code(db: Session) -> str:
    for _ in range(10):
        code = "".join(secrets.choice(settings.JOIN_CODE_ALPHABET) for _ in range(settings.JOIN_CODE_LENGTH))
        if not db.query(models.Trip).filter(models.Trip.join_code == code).first():
            return code
    raise HTTPException(status_code=500, detail="Could not allocate a join code, please try again")


def get_trip_or_404(trip_id: str, db: Session) -> models.Trip:
    trip = db.query(models.Trip).filter(models.Trip.id == trip_id).first()
    if not trip:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Trip not found")
    return trip


def get_roster(trip_id: str, db: Session) -> List[schemas.Member]:
    rows = (
        db.query(models.TripMember, models.User)
        .join(models.User, models.TripMember.user_id == models.User.id)
        .filter(models.TripMember.trip_id == trip_id)
        .order_by(models.TripMember.joined_at)
        .all()
    )
    return [schemas.Member(id=user.id, display_name=user.display_name, role=member.role) for member, user in rows]


def raise_ledger_error(ledger: ExpenseLedger):
    if ledger.error in (EXPENSE_NOT_FOUND, SPLIT_NOT_FOUND):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=ledger.error)
    # The raw store message is already logged by the ledger
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=STORE_ERROR_DETAIL)


@app.get("/")
def read_root():
    return {"message": "Welcome to the Trip Ledger API"}

# --- User Endpoints ---
@app.post("/users/", response_model=schemas.User, status_code=status.HTTP_201_CREATED)
def create_user(user: schemas.UserCreate, db: Session = Depends(get_db)):
    if not user.display_name.strip():
        raise HTTPException(status_code=400, detail="Display name is required")
    if user.device_id:
        existing = db.query(models.User).filter(models.User.device_id == user.device_id).first()
        if existing:
            raise HTTPException(status_code=400, detail="Device already registered")
    new_user = models.User(display_name=user.display_name.strip(), device_id=user.device_id, avatar_url=user.avatar_url)
    db.add(new_user)
    db.commit()
    db.refresh(new_user)
    return new_user

@app.get("/users/", response_model=List[schemas.User])
def get_all_users(db: Session = Depends(get_db)):
    return db.query(models.User).all()

@app.get("/users/by-device/{device_id}", response_model=schemas.User)
def get_user_by_device(device_id: str, db: Session = Depends(get_db)):
    user = db.query(models.User).filter(models.User.device_id == device_id).first()
    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return user

@app.patch("/users/{user_id}", response_model=schemas.User)
def update_user(user_id: str, update: schemas.UserUpdate, db: Session = Depends(get_db)):
    if not update.display_name.strip():
        raise HTTPException(status_code=400, detail="Display name is required")
    user = db.query(models.User).filter(models.User.id == user_id).first()
    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    user.display_name = update.display_name.strip()
    db.commit()
    db.refresh(user)
    logger.info(f"Renamed user: {user_id}")
    return user

@app.get("/users/{user_id}/trips", response_model=List[schemas.TripSummary])
def get_user_trips(user_id: str, db: Session = Depends(get_db)):
    """Trips the user belongs to, most recently updated first."""
    trip_ids = [row.trip_id for row in db.query(models.TripMember.trip_id).filter(models.TripMember.user_id == user_id)]
    if not trip_ids:
        return []

    trips = (
        db.query(models.Trip)
        .filter(models.Trip.id.in_(trip_ids))
        .order_by(models.Trip.updated_at.desc())
        .all()
    )
    counts = dict(
        db.query(models.TripMember.trip_id, func.count(models.TripMember.id))
        .filter(models.TripMember.trip_id.in_(trip_ids))
        .group_by(models.TripMember.trip_id)
        .all()
    )
    return [
        schemas.TripSummary(**schemas.Trip.model_validate(trip).model_dump(), member_count=counts.get(trip.id, 0))
        for trip in trips
    ]

# --- Trip Endpoints ---
@app.post("/trips/", response_model=schemas.Trip, status_code=status.HTTP_201_CREATED)
def create_trip(trip: schemas.TripCreate, db: Session = Depends(get_db)):
    if not trip.name.strip():
        raise HTTPException(status_code=400, detail="Trip name is required")
    creator = db.query(models.User).filter(models.User.id == trip.created_by).first()
    if not creator:
        raise HTTPException(status_code=404, detail="User not found")

    new_trip = models.Trip(
        name=trip.name.strip(),
        description=trip.description,
        created_by=creator.id,
        join_code=generate_join_code(db),
    )
    # The creator owns the trip
    new_trip.members.append(models.TripMember(user_id=creator.id, role="owner"))
    db.add(new_trip)
    db.commit()
    db.refresh(new_trip)
    logger.info(f"Created trip: {new_trip.id} with code {new_trip.join_code}")
    return new_trip

@app.post("/trips/join", response_model=schemas.Trip)
def join_trip(join: schemas.TripJoin, db: Session = Depends(get_db)):
    code = join.code.upper().strip()
    trip = db.query(models.Trip).filter(models.Trip.join_code == code).first()
    if not trip:
        raise HTTPException(status_code=404, detail="Trip not found. Check the code and try again.")
    if not db.query(models.User).filter(models.User.id == join.user_id).first():
        raise HTTPException(status_code=404, detail="User not found")

    existing = db.query(models.TripMember).filter(
        models.TripMember.trip_id == trip.id,
        models.TripMember.user_id == join.user_id
    ).first()
    if existing:
        raise HTTPException(status_code=400, detail="You're already a member of this trip!")

    db.add(models.TripMember(trip_id=trip.id, user_id=join.user_id, role="editor"))
    db.commit()
    db.refresh(trip)
    logger.info(f"User {join.user_id} joined trip {trip.id}")
    return trip

@app.get("/trips/{trip_id}", response_model=schemas.TripDetail)
def get_trip(trip_id: str, db: Session = Depends(get_db)):
    trip = get_trip_or_404(trip_id, db)
    return schemas.TripDetail(**schemas.Trip.model_validate(trip).model_dump(), members=get_roster(trip_id, db))

@app.get("/trips/{trip_id}/members", response_model=List[schemas.Member])
def get_trip_members(trip_id: str, db: Session = Depends(get_db)):
    get_trip_or_404(trip_id, db)
    return get_roster(trip_id, db)

# --- Expense Endpoints ---
@app.get("/trips/{trip_id}/expenses", response_model=List[schemas.ExpenseDetail])
async def get_expenses(trip_id: str, db: Session = Depends(get_db),
                       registry: LedgerRegistry = Depends(get_registry)):
    get_trip_or_404(trip_id, db)
    ledger = registry.ledger(trip_id)
    if await ledger.fetch_expenses(trip_id) is None:
        raise_ledger_error(ledger)
    return ledger.expenses

@app.post("/trips/{trip_id}/expenses", response_model=schemas.Expense, status_code=status.HTTP_201_CREATED)
async def create_expense(trip_id: str, expense: schemas.ExpenseCreate, db: Session = Depends(get_db),
                         registry: LedgerRegistry = Depends(get_registry)):
    get_trip_or_404(trip_id, db)

    if not expense.description.strip():
        raise HTTPException(status_code=400, detail="Description is required")
    if not math.isfinite(expense.amount) or expense.amount <= 0:
        raise HTTPException(status_code=400, detail="Please enter a valid amount")
    if not expense.split_among:
        raise HTTPException(status_code=400, detail="Expense must be split among at least one member.")

    member_ids = {member.id for member in get_roster(trip_id, db)}
    if expense.paid_by not in member_ids:
        raise HTTPException(status_code=400, detail="Payer is not a member of this trip")
    if not set(expense.split_among) <= member_ids:
        raise HTTPException(status_code=400, detail="One or more members are not part of this trip")

    fields = schemas.ExpenseFields(
        description=expense.description.strip(),
        amount=expense.amount,
        paid_by=expense.paid_by,
        split_type=expense.split_type,
        currency=expense.currency,
    )
    # de-duplicate while keeping order
    split_among = list(dict.fromkeys(expense.split_among))

    ledger = registry.ledger(trip_id)
    created = await ledger.add_expense(trip_id, fields, split_among)
    if created is None:
        raise_ledger_error(ledger)
    return created

@app.delete("/trips/{trip_id}/expenses/{expense_id}")
async def delete_expense(trip_id: str, expense_id: str, registry: LedgerRegistry = Depends(get_registry)):
    ledger = registry.ledger(trip_id)
    if not await ledger.delete_expense(expense_id):
        raise_ledger_error(ledger)
    return {"message": "Expense deleted successfully"}

@app.post("/trips/{trip_id}/splits/{split_id}/settle", response_model=List[schemas.ExpenseDetail])
async def settle_split(trip_id: str, split_id: str, registry: LedgerRegistry = Depends(get_registry)):
    ledger = registry.ledger(trip_id)
    if not await ledger.settle_expense(split_id):
        raise_ledger_error(ledger)
    return ledger.expenses

@app.get("/trips/{trip_id}/balances", response_model=List[schemas.BalanceSummary])
async def get_balances(trip_id: str, db: Session = Depends(get_db),
                       registry: LedgerRegistry = Depends(get_registry)):
    """
    Net balance for every member of the trip.
    A positive balance means the member is owed money.
    A negative balance means the member owes money.
    """
    get_trip_or_404(trip_id, db)
    members = get_roster(trip_id, db)

    ledger = registry.ledger(trip_id)
    if await ledger.fetch_expenses(trip_id) is None:
        raise_ledger_error(ledger)
    return ledger.calculate_balances(members)

# --- Change feed ---
@app.post("/trips/{trip_id}/changes")
async def receive_change(trip_id: str, event: schemas.ChangeEvent,
                         registry: LedgerRegistry = Depends(get_registry)):
    listener = registry.change_listener(trip_id)
    reloaded = await listener.handle(event.model_dump(exclude_none=True))
    if reloaded and listener.ledger.error:
        raise_ledger_error(listener.ledger)
    return {"reloaded": reloaded}
