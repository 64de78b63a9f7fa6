"""
Shared pytest fixtures for the proposal workflow test suite.

Provides:
    - app: Flask application (session-scoped)
    - service: fresh in-memory WorkflowService per test (autouse)
    - client: Flask test client (function-scoped)
    - engine / store / event_log / dispatcher: the service's collaborators
    - therapist / coordinator / admin / inactive_admin: acting users
    - make_proposal: factory for proposals in an arbitrary starting status
"""

from datetime import datetime, timezone

import pytest

from proposal_workflow import create_app
from proposal_workflow.blueprints import EXTENSION_KEY
from proposal_workflow.models.proposal import Proposal, ProposalStatus, User, UserRole
from proposal_workflow.services.workflow_service import WorkflowService

T0 = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


# ── App & service fixtures ───────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    return create_app("testing")


@pytest.fixture(autouse=True)
def service(app):
    """Per-test: replace the service graph so no state leaks between tests."""
    svc = WorkflowService.build(app.config)
    app.extensions[EXTENSION_KEY] = svc
    with app.app_context():
        yield svc


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def engine(service):
    return service.engine


@pytest.fixture()
def store(service):
    return service.store


@pytest.fixture()
def event_log(service):
    return service.event_log


@pytest.fixture()
def dispatcher(service):
    return service.dispatcher


# ── Users ────────────────────────────────────────────────────────────────


@pytest.fixture()
def therapist(service):
    return service.directory.register(
        User(id="u-ther", name="Dana Therapist", role=UserRole.THERAPIST, email="dana@clinic.test"))


@pytest.fixture()
def coordinator(service):
    return service.directory.register(
        User(id="u-coord", name="Sam Coordinator", role=UserRole.COORDINATOR, email="sam@clinic.test"))


@pytest.fixture()
def admin(service):
    return service.directory.register(
        User(id="u-admin", name="Alex Admin", role=UserRole.ADMIN, email="alex@clinic.test"))


@pytest.fixture()
def inactive_admin(service):
    return service.directory.register(
        User(id="u-gone", name="Former Admin", role=UserRole.ADMIN, is_active=False))


# ── Proposal factory ─────────────────────────────────────────────────────


@pytest.fixture()
def make_proposal(service):
    """Store a proposal directly in the repository, bypassing the API."""
    counter = {"n": 0}

    def _make(status=ProposalStatus.DRAFT, *, created_at=None, **fields):
        counter["n"] += 1
        created = created_at or T0
        proposal = Proposal(
            id=fields.pop("id", f"prop-{counter['n']}"),
            patient_id=fields.pop("patient_id", "patient-1"),
            therapist_id=fields.pop("therapist_id", "u-ther"),
            status=ProposalStatus(status),
            estimated_cost=fields.pop("estimated_cost", 1200.0),
            total_sessions=fields.pop("total_sessions", 12),
            created_at=created,
            updated_at=fields.pop("updated_at", created),
            **fields,
        )
        return service.repository.add(proposal)

    return _make

