"""
Shared fixtures: a throwaway SQLite database per test, workflow and
submission factories, and an HTTP client wired to that database.
"""
import uuid
from datetime import datetime, timezone

import pytest
from httpx import ASGITransport, AsyncClient

from app.core.security import create_access_token
from app.database import build_engine, build_session_factory, get_db, init_db
from app.models.workflow import InspectionWorkflow
from app.schemas.inspection import InspectionSubmit
from app.services.inspection_events import RecordingEventSink


# Monday 2026-03-02 10:30 UTC
SUBMITTED_AT = datetime(2026, 3, 2, 10, 30, tzinfo=timezone.utc)

PHOTO = "https://files.example.com/inspections/photo-1.jpg"


@pytest.fixture
async def engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'inspections.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def event_sink():
    return RecordingEventSink()


@pytest.fixture
def make_workflow(db):
    """Persist a workflow; auto-approval on, meter reading between 0 and 100."""
    async def _make(**overrides) -> InspectionWorkflow:
        rules = {
            "time_range_start": "00:00",
            "time_range_end": "23:59",
            "value_field": "meterReading",
            "min_value": 0,
            "max_value": 100,
            "require_photo": True,
            "frequency_limit": None,
            "frequency_period": "day",
        }
        rules.update(overrides.pop("rules", {}))
        data = dict(
            id=uuid.uuid4(),
            organization_id=uuid.uuid4(),
            name="Generator weekly check",
            category="Maintenance",
            steps=[
                {"id": "reading", "title": "Meter reading", "instructions": "", "media_required": False},
                {"id": "panel", "title": "Control panel", "instructions": "", "media_required": False},
            ],
            auto_approval_enabled=True,
            auto_approval_rules=rules,
            consensus_policy="PARALLEL",
        )
        data.update(overrides)
        workflow = InspectionWorkflow(**data)
        db.add(workflow)
        await db.commit()
        return workflow

    return _make


@pytest.fixture
def make_submission():
    """Build a validated InspectionSubmit."""
    def _make(workflow, approvers, reading="45", media=True, **overrides) -> InspectionSubmit:
        data = {
            "workflow_id": workflow.id,
            "filled_steps": [
                {
                    "step_id": "reading",
                    "step_title": "Meter reading",
                    "response_text": reading,
                    "media_urls": [PHOTO] if media else [],
                },
                {
                    "step_id": "panel",
                    "step_title": "Control panel",
                    "response_text": "No alarms",
                    "media_urls": [],
                },
            ],
            "approvers": [
                a if isinstance(a, dict) else {"approver_id": a} for a in approvers
            ],
            "inspection_date": SUBMITTED_AT,
        }
        data.update(overrides)
        return InspectionSubmit.model_validate(data)

    return _make


@pytest.fixture
def auth_headers():
    def _headers(user_id: uuid.UUID, role: str) -> dict:
        return {"Authorization": f"Bearer {create_access_token(user_id, role)}"}

    return _headers


@pytest.fixture
async def client(session_factory, event_sink):
    from app.api.deps import get_event_sink
    from app.main import app

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_event_sink] = lambda: event_sink

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
