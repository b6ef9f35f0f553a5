"""
Shared pytest fixtures for the Grievance Lifecycle Engine test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - organization / other_organization: tenant rows
    - steward_ctx / admin_ctx / viewer_ctx: ActorContext per role
    - agreement: collective agreement with a 3-step default procedure
    - complaint, grievance: ready-made case records
    - fake_gateway / fake_retriever: scripted guidance collaborators
"""

import time

import pytest

from grievance_engine import create_app
from grievance_engine.ai.discipline_cache import discipline_cache
from grievance_engine.core.context import ROLE_ADMIN, ROLE_STEWARD, ROLE_VIEWER, ActorContext
from grievance_engine.models import db as _db
from grievance_engine.models.agreement import AgreementStepTemplate, CollectiveAgreement
from grievance_engine.models.complaint import Complaint
from grievance_engine.models.grievance import Grievance
from grievance_engine.models.organization import Organization
from grievance_engine.services import grievance_events
from grievance_engine.services.grievance_lifecycle import file_grievance
from grievance_engine.services.step_registry import step_registry


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    return create_app("testing")


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        # Tables are recreated per test and ids are reused; drop cached
        # agreement procedures and event subscribers from earlier tests.
        step_registry.invalidate()
        grievance_events.clear_subscribers()
        discipline_cache.reset_stats()
        yield
        step_registry.invalidate()
        grievance_events.clear_subscribers()
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Organizations & actors ───────────────────────────────────────────────


@pytest.fixture()
def organization():
    org = Organization(name="Local 1234", slug="local-1234")
    _db.session.add(org)
    _db.session.commit()
    return org


@pytest.fixture()
def other_organization():
    org = Organization(name="Local 999", slug="local-999")
    _db.session.add(org)
    _db.session.commit()
    return org


@pytest.fixture()
def steward_ctx(organization):
    return ActorContext(organization_id=organization.id, user_id="steward-1", role=ROLE_STEWARD)


@pytest.fixture()
def admin_ctx(organization):
    return ActorContext(organization_id=organization.id, user_id="admin-1", role=ROLE_ADMIN)


@pytest.fixture()
def viewer_ctx(organization):
    return ActorContext(organization_id=organization.id, user_id="viewer-1", role=ROLE_VIEWER)


def actor_headers(organization_id, role=ROLE_STEWARD, user_id="steward-1"):
    return {
        "X-Organization-ID": str(organization_id),
        "X-User-ID": user_id,
        "X-Actor-Role": role,
    }


@pytest.fixture()
def headers(organization):
    return actor_headers(organization.id)


# ── Agreement procedure ──────────────────────────────────────────────────

THREE_STEPS = [
    # step, name, stage, days, calendar
    (1, "Step 1: Informal discussion", "INFORMAL", 10, False),
    (2, "Step 2: Formal grievance meeting", "FORMAL", 15, True),
    (3, "Step 3: Arbitration referral", "ARBITRATION", 0, False),
]


def add_templates(agreement, steps, grievance_type=None):
    for number, name, stage, days, calendar in steps:
        _db.session.add(AgreementStepTemplate(
            agreement_id=agreement.id,
            grievance_type=grievance_type,
            step_number=number,
            name=name,
            stage=stage,
            time_limit_days=days,
            is_calendar_days=calendar,
            required_participants=["steward", "grievor"],
            required_documents=["grievance form"] if number == 1 else [],
        ))
    _db.session.commit()


@pytest.fixture()
def agreement(organization):
    a = CollectiveAgreement(organization_id=organization.id, name="Master Agreement 2024-2027")
    _db.session.add(a)
    _db.session.commit()
    add_templates(a, THREE_STEPS)
    return a


@pytest.fixture()
def complaint(organization, agreement):
    c = Complaint(
        organization_id=organization.id,
        agreement_id=agreement.id,
        complaint_number="C-2025-001",
        type="INDIVIDUAL",
        category="Discipline",
        issue="Employee was suspended for three days without just cause.",
        settlement_desired="Rescind the suspension and make the grievor whole.",
        articles_violated=["Art. 12.01", "Art. 12.04"],
        complainant_first_name="Dana",
        complainant_last_name="Reyes",
        complainant_email="dana.reyes@example.org",
        complainant_position="Line cook",
        complainant_department="Kitchen",
        complainant_supervisor="P. Hall",
    )
    _db.session.add(c)
    _db.session.commit()
    return c


@pytest.fixture()
def grievance(steward_ctx, agreement):
    result = file_grievance(
        steward_ctx,
        agreement.id,
        statement="The grievor was terminated following an attendance dispute.",
        category="Discipline",
        articles_violated=["Art. 12.01"],
        settlement_desired="Reinstatement with full back pay.",
    )
    _db.session.commit()
    return _db.session.get(Grievance, result["grievance_id"])


# ── Guidance collaborators ───────────────────────────────────────────────


class FakeRetriever:
    """Scripted retrieval collaborator."""

    def __init__(self, reference="## Just cause\n(Brown & Beatty 7:4400)\n\nSuspension requires just cause.",
                 error=None, delay=0):
        self.reference = reference
        self.error = error
        self.delay = delay
        self.calls = []

    def retrieve(self, statement, articles):
        self.calls.append((statement, list(articles)))
        if self.delay:
            time.sleep(self.delay)
        if self.error:
            raise self.error
        return self.reference


class FakeGateway:
    """Scripted text-generation collaborator."""

    def __init__(self, content="## Just cause\nSuspension and termination require just cause (Brown & Beatty 7:4400).",
                 error=None, delay=0):
        self.content = content
        self.error = error
        self.delay = delay
        self.calls = []

    def chat(self, messages, model=None, **kwargs):
        self.calls.append({"messages": messages, "model": model, **kwargs})
        if self.delay:
            time.sleep(self.delay)
        if self.error:
            raise self.error
        return {"content": self.content, "prompt_tokens": 10, "completion_tokens": 5, "model": "fake"}


@pytest.fixture()
def fake_retriever():
    return FakeRetriever()


@pytest.fixture()
def fake_gateway():
    return FakeGateway()


@pytest.fixture()
def make_retriever():
    return FakeRetriever


@pytest.fixture()
def make_gateway():
    return FakeGateway


@pytest.fixture()
def headers_for():
    return actor_headers


@pytest.fixture()
def add_step_templates():
    return add_templates
