from __future__ import annotations

from datetime import UTC, datetime, timedelta
from types import SimpleNamespace

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from db.base import Base
from db.models import Batch, Persona, Project, Script, UserAccount


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    yield factory
    engine.dispose()


@pytest.fixture
def seeded(session_factory):
    with session_factory() as session:
        user = UserAccount(email="creator@example.com", plan="free")
        session.add(user)
        session.flush()
        project = Project(
            user_id=user.id,
            name="Lash Lab",
            product_description="Smudge-proof lengthening mascara",
            offer="20% off the first order",
            brand_voice="Playful, honest",
            forbidden_claims=["cures", "guaranteed results"],
            language="en",
        )
        session.add(project)
        session.flush()
        persona = Persona(
            project_id=project.id,
            name="Busy mom",
            description="Has five minutes for makeup",
            pain_points=["smudging by noon"],
            desires=["look awake"],
        )
        session.add(persona)
        session.commit()
        return SimpleNamespace(user_id=user.id, project_id=project.id, persona_id=persona.id)


@pytest.fixture
def make_batch(session_factory, seeded):
    def _make(**overrides):
        values = {
            "project_id": seeded.project_id,
            "user_id": seeded.user_id,
            "requested_count": 3,
            "platform": "tiktok",
            "angles": ["pain_agitation", "social_proof"],
            "durations": [30],
            "quality": "standard",
            "status": "pending",
        }
        values.update(overrides)
        with session_factory() as session:
            batch = Batch(**values)
            session.add(batch)
            session.commit()
            return batch.id

    return _make


@pytest.fixture
def make_script(session_factory):
    def _make(batch_id, **overrides):
        now = datetime.now(UTC)
        values = {
            "batch_id": batch_id,
            "status": "completed",
            "angle": "pain_agitation",
            "duration": 30,
            "hook": "Stop scrolling if you've tried 5 mascaras that smudge?",
            "storyboard": [
                {"t": "0-3s", "shot": "Close-up of lashes", "onScreen": "No smudge", "spoken": "Finally"},
                {"t": "3-8s", "shot": "Show the wand", "onScreen": "Easy", "spoken": "So easy"},
                {"t": "8-14s", "shot": "Hold the tube", "onScreen": "All day", "spoken": "Lasts all day"},
            ],
            "cta_variants": ["Shop now"],
            "filming_checklist": ["Ring light"],
            "warnings": [],
            "score": 70,
            "created_at": now,
            "updated_at": now,
        }
        values.update(overrides)
        with session_factory() as session:
            script = Script(**values)
            session.add(script)
            session.commit()
            return script.id

    return _make


@pytest.fixture
def clock():
    """Settable clock for ledger tests."""
    state = SimpleNamespace(now=datetime(2026, 3, 15, 12, 0, tzinfo=UTC))

    def _advance(**kwargs):
        state.now = state.now + timedelta(**kwargs)

    state.advance = _advance
    return state


@pytest.fixture
def ledger(session_factory, clock):
    from credits.ledger import CreditLedger

    return CreditLedger(session_factory, clock=lambda: clock.now)
