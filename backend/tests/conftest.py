from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from homebids.database import Base
from homebids.models import Bid, Project, User
from homebids.realtime import InMemoryBroker
from homebids.storage import LocalBlobStore

T0 = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


def at(minutes: int) -> datetime:
    return T0 + timedelta(minutes=minutes)


@pytest.fixture
def engine(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'homebids-test.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def blob_store(tmp_path):
    return LocalBlobStore(root=tmp_path / "blobs", base_url="/files")


@pytest.fixture
def broker():
    return InMemoryBroker()


def make_user(db, *, role: str = "contractor", name: str | None = None) -> User:
    user = User(
        email=f"{uuid4().hex[:12]}@example.com",
        password_hash="not-a-real-hash",
        full_name=name,
        role=role,
    )
    db.add(user)
    db.commit()
    return user


def make_project(db, owner: User, *, title: str = "Bathroom remodel") -> Project:
    project = Project(owner_id=owner.id, title=title, status="bidding")
    db.add(project)
    db.commit()
    return project


def make_bid(db, project: Project, contractor: User, *, created_at=None, status: str = "pending") -> Bid:
    bid = Bid(
        project_id=project.id,
        contractor_id=contractor.id,
        amount=Decimal("1000.00"),
        status=status,
        created_at=created_at or datetime.now(timezone.utc),
    )
    db.add(bid)
    db.commit()
    return bid
