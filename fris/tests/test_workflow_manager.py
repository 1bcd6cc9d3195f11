from datetime import timedelta

import pytest
from sqlalchemy.orm.exc import StaleDataError

from fris.db.session import build_engine, build_session_factory
from fris.models import Base, Declaration, PolicyDecision
from fris.services.declaration_service import get_declaration
from fris.workflow import (
    HoldStopWorkflow,
    HoldStopWorkflowManager,
    IllegalTransitionError,
    WorkflowAction,
    WorkflowNotFoundError,
)

from conftest import T0, FakeClock, RecordingNotifier


def _hold(manager, declaration_id="DEC-1", **kwargs):
    kwargs.setdefault("priority", "MEDIUM")
    return manager.create_workflow(declaration_id, "HOLD", "undervaluation", "officer-1", **kwargs)


def _action_types(manager, workflow_id):
    return [a.action_type for a in manager.list_actions(workflow_id)]


def test_stop_requires_review_and_hold_does_not(manager):
    stop = manager.create_workflow("DEC-1", "STOP", "forgery", "officer-1", priority="CRITICAL")
    hold = _hold(manager)
    assert stop.review_required is True
    assert hold.review_required is False
    assert stop.status == "ACTIVE"
    assert stop.id.startswith("workflow_")


def test_low_priority_hold_uses_configured_sla(manager):
    workflow = _hold(manager, priority="LOW")
    assert workflow.sla_minutes == 240
    assert workflow.created_at == T0
    assert workflow.expires_at == workflow.created_at + timedelta(minutes=240)


def test_explicit_sla_overrides_table(manager):
    workflow = _hold(manager, sla_minutes=30)
    assert workflow.sla_minutes == 30
    assert workflow.expires_at == T0 + timedelta(minutes=30)


def test_unconfigured_combination_falls_back_to_default_sla(manager):
    workflow = manager.create_workflow("DEC-1", "STOP", "forgery", "officer-1", priority="LOW")
    assert workflow.sla_minutes == 480


@pytest.mark.parametrize(
    "kwargs",
    [
        {"action_type": "SEIZE", "priority": "MEDIUM"},
        {"action_type": "HOLD", "priority": "URGENT"},
        {"action_type": "HOLD", "priority": "MEDIUM", "sla_minutes": 0},
    ],
)
def test_create_rejects_invalid_arguments(manager, kwargs):
    with pytest.raises(ValueError):
        manager.create_workflow("DEC-1", reason="r", created_by="officer-1", **kwargs)


def test_create_logs_action_and_notifies(manager, notifier):
    workflow = _hold(manager)
    actions = manager.list_actions(workflow.id)
    assert [a.action_type for a in actions] == ["CREATE"]
    assert actions[0].performed_by == "officer-1"
    assert actions[0].event_id.startswith(f"{workflow.id}_CREATE_")
    assert notifier.events == [(workflow.id, "created")]


def test_release_succeeds_exactly_once(manager):
    workflow = _hold(manager)
    released = manager.release_workflow(workflow.id, "supervisor", "cleared")
    assert released.status == "RELEASED"
    assert released.release_authorized_by == "supervisor"
    assert released.release_authorized_at == T0

    with pytest.raises(IllegalTransitionError):
        manager.release_workflow(workflow.id, "supervisor", "cleared again")
    assert _action_types(manager, workflow.id) == ["CREATE", "RELEASE"]


def test_release_updates_tracked_declaration(manager, add_declaration, session_factory):
    add_declaration("DEC-1", status="HELD", channel="YELLOW")
    workflow = _hold(manager)
    manager.release_workflow(workflow.id, "supervisor", "cleared")

    session = session_factory()
    try:
        declaration = get_declaration(session, "DEC-1")
        assert declaration.status == "RELEASED"
        assert declaration.released_at is not None
    finally:
        session.close()


def test_release_of_unknown_declaration_still_succeeds(manager):
    workflow = _hold(manager, declaration_id="EXTERNAL-9")
    assert manager.release_workflow(workflow.id, "supervisor", "cleared").status == "RELEASED"


def test_unknown_workflow_raises_not_found(manager):
    with pytest.raises(WorkflowNotFoundError):
        manager.release_workflow("workflow_missing", "supervisor", "cleared")
    with pytest.raises(WorkflowNotFoundError):
        manager.escalate_workflow("workflow_missing", "supervisor", "why")
    with pytest.raises(WorkflowNotFoundError):
        manager.review_workflow("workflow_missing", "supervisor", "APPROVED", "")
    with pytest.raises(WorkflowNotFoundError):
        manager.get_workflow("workflow_missing")


def test_escalation_level_increments(manager, notifier):
    workflow = _hold(manager)
    first = manager.escalate_workflow(workflow.id, "officer-1", "needs valuation")
    assert first.status == "ESCALATED"
    assert first.escalation_level == 1

    # escalate is only legal from ACTIVE
    with pytest.raises(IllegalTransitionError):
        manager.escalate_workflow(workflow.id, "officer-1", "again")

    manager.review_workflow(workflow.id, "supervisor", "APPROVED", "keep holding")
    second = manager.escalate_workflow(workflow.id, "officer-1", "needs manager")
    assert second.escalation_level == 2
    assert (workflow.id, "escalated") in notifier.events


def test_escalate_to_explicit_level(manager):
    workflow = _hold(manager)
    escalated = manager.escalate_workflow(workflow.id, "officer-1", "straight to director", level=4)
    assert escalated.escalation_level == 4
    details = manager.list_actions(workflow.id)[-1].details
    assert details == {"escalation_level": 4, "escalated_to": "MANAGER"}


def test_escalate_rejects_non_positive_level(manager):
    workflow = _hold(manager)
    with pytest.raises(ValueError):
        manager.escalate_workflow(workflow.id, "officer-1", "bad", level=0)


def test_review_rejected_releases_workflow(manager):
    workflow = manager.create_workflow("DEC-1", "STOP", "forgery", "officer-1", priority="CRITICAL")
    reviewed = manager.review_workflow(workflow.id, "supervisor", "REJECTED", "documents genuine")
    assert reviewed.status == "RELEASED"
    assert reviewed.reviewed_by == "supervisor"
    assert reviewed.review_notes == "documents genuine"
    assert reviewed.release_authorized_by == "supervisor"
    assert reviewed.release_authorized_at == T0
    assert _action_types(manager, workflow.id) == ["CREATE", "REVIEW"]


def test_review_needs_more_info_keeps_status(manager):
    workflow = _hold(manager)
    manager.escalate_workflow(workflow.id, "officer-1", "unclear")
    reviewed = manager.review_workflow(workflow.id, "supervisor", "NEEDS_MORE_INFO", "send invoices")
    assert reviewed.status == "ESCALATED"
    assert reviewed.reviewed_at == T0


def test_review_of_terminal_workflow_is_illegal(manager):
    workflow = _hold(manager)
    manager.release_workflow(workflow.id, "supervisor", "cleared")
    with pytest.raises(IllegalTransitionError):
        manager.review_workflow(workflow.id, "supervisor", "APPROVED", "")


def test_review_rejects_unknown_outcome(manager):
    workflow = _hold(manager)
    with pytest.raises(ValueError):
        manager.review_workflow(workflow.id, "supervisor", "MAYBE", "")


def test_sla_warning_at_51_percent(manager, notifier):
    workflow = _hold(manager)
    result = manager.check_expired_workflows(now=T0 + timedelta(minutes=480 * 0.51))
    assert result.warnings == [(workflow.id, 50)]
    assert notifier.warnings == [(workflow.id, 50)]
    assert result.expired == []


def test_no_sla_warning_at_60_percent(manager, notifier):
    _hold(manager)
    result = manager.check_expired_workflows(now=T0 + timedelta(minutes=480 * 0.60))
    assert result.warnings == []
    assert notifier.warnings == []


def test_expired_hold_without_findings_is_auto_released(manager, clock, notifier, add_declaration, session_factory):
    add_declaration("DEC-1", status="HELD", channel="YELLOW")
    workflow = _hold(manager, priority="LOW")
    clock.advance(241)

    result = manager.check_expired_workflows()
    assert result.expired == [workflow.id]
    assert result.auto_released == [workflow.id]

    stored = manager.get_workflow(workflow.id)
    assert stored.status == "RELEASED"
    assert stored.release_authorized_by == "system"
    assert _action_types(manager, workflow.id) == ["CREATE", "EXPIRE", "RELEASE"]
    assert notifier.events[-2:] == [(workflow.id, "expired"), (workflow.id, "released")]

    session = session_factory()
    try:
        assert get_declaration(session, "DEC-1").status == "RELEASED"
    finally:
        session.close()


def test_sweep_at_explicit_time_stamps_that_time(manager):
    workflow = _hold(manager)
    sweep_at = T0 + timedelta(minutes=600)

    result = manager.check_expired_workflows(now=sweep_at)
    assert result.auto_released == [workflow.id]

    stored = manager.get_workflow(workflow.id)
    assert stored.release_authorized_at == sweep_at
    assert stored.updated_at == sweep_at
    stamps = {a.action_type: a.performed_at for a in manager.list_actions(workflow.id)}
    assert stamps == {"CREATE": T0, "EXPIRE": sweep_at, "RELEASE": sweep_at}


def test_expired_stop_is_not_auto_released(manager, clock):
    workflow = manager.create_workflow("DEC-1", "STOP", "forgery", "officer-1", priority="CRITICAL")
    clock.advance(1441)
    result = manager.check_expired_workflows()
    assert result.expired == [workflow.id]
    assert result.auto_released == []
    assert manager.get_workflow(workflow.id).status == "EXPIRED"


def test_escalation_history_blocks_auto_release(manager, clock):
    workflow = _hold(manager)
    manager.escalate_workflow(workflow.id, "officer-1", "suspicious")
    manager.review_workflow(workflow.id, "supervisor", "APPROVED", "continue hold")
    clock.advance(481)
    result = manager.check_expired_workflows()
    assert result.expired == [workflow.id]
    assert result.auto_released == []
    assert manager.get_workflow(workflow.id).status == "EXPIRED"


def test_unlinked_adverse_decision_blocks_auto_release(manager, clock, session_factory):
    session = session_factory()
    try:
        session.add(PolicyDecision(declaration_id="DEC-1", action="STOP", policy_version="v1", confidence=1.0))
        session.commit()
    finally:
        session.close()

    workflow = _hold(manager)
    clock.advance(481)
    result = manager.check_expired_workflows()
    assert result.auto_released == []
    assert manager.get_workflow(workflow.id).status == "EXPIRED"


def test_sweep_is_idempotent(manager, clock):
    workflow = _hold(manager, priority="LOW")
    clock.advance(300)
    first = manager.check_expired_workflows()
    second = manager.check_expired_workflows()
    assert first.expired == [workflow.id]
    assert second.expired == []
    assert second.auto_released == []
    assert _action_types(manager, workflow.id) == ["CREATE", "EXPIRE", "RELEASE"]


def test_sweep_ignores_escalated_and_released(manager, clock):
    escalated = _hold(manager)
    manager.escalate_workflow(escalated.id, "officer-1", "suspicious")
    released = _hold(manager, declaration_id="DEC-2")
    manager.release_workflow(released.id, "supervisor", "cleared")
    clock.advance(10000)

    result = manager.check_expired_workflows()
    assert result.expired == []
    assert manager.get_workflow(escalated.id).status == "ESCALATED"
    assert manager.get_workflow(released.id).status == "RELEASED"


def test_notifier_failure_does_not_fail_transition(session_factory, clock):
    class BrokenNotifier(RecordingNotifier):
        def notify(self, workflow, event_type):
            raise RuntimeError("channel down")

    manager = HoldStopWorkflowManager(session_factory, notifier=BrokenNotifier(), clock=clock)
    workflow = _hold(manager)
    assert manager.release_workflow(workflow.id, "supervisor", "cleared").status == "RELEASED"


def test_list_workflows_filters(manager):
    first = _hold(manager)
    second = _hold(manager, declaration_id="DEC-2")
    manager.release_workflow(second.id, "supervisor", "cleared")

    assert [w.id for w in manager.list_workflows(status="ACTIVE")] == [first.id]
    assert [w.id for w in manager.list_workflows(declaration_id="DEC-2")] == [second.id]
    assert len(manager.list_workflows()) == 2
    with pytest.raises(ValueError):
        manager.list_workflows(status="DONE")


def test_workflow_stats(manager):
    hold = _hold(manager, priority="LOW")
    manager.create_workflow("DEC-2", "STOP", "forgery", "officer-1", priority="CRITICAL")
    manager.release_workflow(hold.id, "supervisor", "cleared")

    stats = manager.get_workflow_stats(T0 - timedelta(days=1), T0 + timedelta(days=1))
    assert stats["total_workflows"] == 2
    assert stats["active_workflows"] == 1
    assert stats["released_workflows"] == 1
    assert stats["average_sla_compliance"] == 100.0
    assert stats["by_action_type"]["HOLD"] == {"total": 1, "released": 1, "expired": 0}
    assert stats["by_priority"]["CRITICAL"]["total"] == 1


def test_workflow_actions_are_append_only(manager, session_factory):
    workflow = _hold(manager)
    session = session_factory()
    try:
        action = session.query(WorkflowAction).filter_by(workflow_id=workflow.id).one()
        action.notes = "rewritten"
        with pytest.raises(ValueError):
            session.commit()
        session.rollback()

        action = session.query(WorkflowAction).filter_by(workflow_id=workflow.id).one()
        session.delete(action)
        with pytest.raises(ValueError):
            session.commit()
    finally:
        session.rollback()
        session.close()


@pytest.fixture()
def file_session_factory(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'fris.db'}")
    Base.metadata.create_all(bind=engine)
    yield build_session_factory(engine)
    engine.dispose()


def test_stale_workflow_write_is_rejected(file_session_factory):
    manager = HoldStopWorkflowManager(file_session_factory, notifier=RecordingNotifier(), clock=FakeClock())
    workflow = _hold(manager)

    stale = file_session_factory()
    try:
        row = stale.get(HoldStopWorkflow, workflow.id)
        manager.release_workflow(workflow.id, "supervisor", "cleared")
        row.assigned_to = "officer-2"
        with pytest.raises(StaleDataError):
            stale.commit()
    finally:
        stale.rollback()
        stale.close()


def test_sweep_skips_workflow_released_concurrently(file_session_factory):
    clock = FakeClock()

    def release_during_sweep(session, workflow):
        manager.release_workflow(workflow.id, "supervisor", "released while sweeping")
        return False

    manager = HoldStopWorkflowManager(
        file_session_factory,
        notifier=RecordingNotifier(),
        adverse_findings_check=release_during_sweep,
        clock=clock,
    )
    workflow = _hold(manager, priority="LOW")
    clock.advance(300)

    result = manager.check_expired_workflows()
    assert result.conflicts == [workflow.id]
    assert result.expired == []

    stored = manager.get_workflow(workflow.id)
    assert stored.status == "RELEASED"
    assert stored.release_authorized_by == "supervisor"
    assert _action_types(manager, workflow.id) == ["CREATE", "RELEASE"]
