import os
import sys

# Keep the module-level engine off disk during tests
os.environ.setdefault("DATABASE_URL", "sqlite://")

# Add the project root to the path
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import models
from database import Base
from ledger import ExpenseLedger


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def trip(session_factory):
    """A trip with Alice (owner), Bob and Carol."""
    with session_factory() as db:
        alice = models.User(display_name="Alice")
        bob = models.User(display_name="Bob")
        carol = models.User(display_name="Carol")
        db.add_all([alice, bob, carol])
        db.flush()

        trip = models.Trip(name="Lisbon", join_code="ABC234", created_by=alice.id)
        trip.members.append(models.TripMember(user_id=alice.id, role="owner"))
        trip.members.append(models.TripMember(user_id=bob.id))
        trip.members.append(models.TripMember(user_id=carol.id))
        db.add(trip)
        db.commit()

        return {
            "id": trip.id,
            "alice": alice.id,
            "bob": bob.id,
            "carol": carol.id,
        }


@pytest.fixture
def ledger(session_factory, trip):
    return ExpenseLedger(session_factory, trip_id=trip["id"], atomic_inserts=True)


@pytest.fixture
def broken_session_factory():
    """Sessions against a database without any tables."""
    engine = create_engine("sqlite://", poolclass=StaticPool, connect_args={"check_same_thread": False})
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()
