from datetime import datetime, timedelta

import pytest

from fris.app import create_app
from fris.db.session import build_engine, build_session_factory
from fris.models import Base, Declaration
from fris.workflow import HoldStopWorkflowManager, Notifier

T0 = datetime(2025, 11, 3, 9, 0, 0)


class FakeClock:
    def __init__(self, start=T0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, minutes):
        self.now = self.now + timedelta(minutes=minutes)
        return self.now


class RecordingNotifier(Notifier):
    def __init__(self):
        self.events = []
        self.warnings = []

    def notify(self, workflow, event_type):
        self.events.append((workflow.id, event_type))

    def sla_warning(self, workflow, sla_percent, threshold):
        self.warnings.append((workflow.id, threshold))


@pytest.fixture()
def app():
    app = create_app({"DATABASE_URL": "sqlite://", "TESTING": True, "SWEEP_ENABLED": False})
    yield app
    Base.metadata.drop_all(bind=app.extensions["fris"]["db_engine"])


@pytest.fixture()
def client(app):
    with app.test_client() as client:
        yield client


@pytest.fixture()
def session_factory():
    engine = build_engine("sqlite://")
    Base.metadata.create_all(bind=engine)
    yield build_session_factory(engine)
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def notifier():
    return RecordingNotifier()


@pytest.fixture()
def manager(session_factory, clock, notifier):
    return HoldStopWorkflowManager(session_factory, notifier=notifier, clock=clock)


@pytest.fixture()
def add_declaration(session_factory):
    def _add(declaration_id="DEC-1", **fields):
        session = session_factory()
        try:
            declaration = Declaration(
                declaration_id=declaration_id,
                items=fields.pop("items", [{"declared_hs": "8703", "invoice_value_usd": 5000}]),
                risk_scores=fields.pop("risk_scores", {}),
                **fields,
            )
            session.add(declaration)
            session.commit()
            return declaration
        finally:
            session.close()

    return _add
