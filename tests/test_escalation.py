from datetime import date, timedelta

from kpi_portal.core.clock import utcnow
from kpi_portal.models.kpi import KpiDefinition, KpiStatus
from kpi_portal.models.notification import Notification
from kpi_portal.services.escalation import EscalationService


def _types_for(db, user):
    return [n.type for n in db.query(Notification).filter(Notification.user_id == user.id)]


def test_fresh_approvals_are_left_alone(workflow, staff, make_kpi):
    kpi = make_kpi()
    workflow.submit_for_approval("KPI", kpi.id, staff)
    summary = EscalationService(workflow).escalate_overdue_approvals(utcnow() + timedelta(days=3))
    assert summary == {"reminders": 0, "escalations": 0}


def test_reminder_after_sla(db_session, workflow, staff, line_manager, manager, make_kpi):
    kpi = make_kpi()
    workflow.submit_for_approval("KPI", kpi.id, staff)

    summary = EscalationService(workflow).escalate_overdue_approvals(utcnow() + timedelta(days=4))
    assert summary == {"reminders": 1, "escalations": 0}
    assert "REMINDER" in _types_for(db_session, line_manager)
    assert "SYSTEM" not in _types_for(db_session, manager)


def test_escalation_to_approvers_manager(db_session, workflow, staff, line_manager, manager, make_kpi):
    kpi = make_kpi()
    workflow.submit_for_approval("KPI", kpi.id, staff)

    summary = EscalationService(workflow).escalate_overdue_approvals(utcnow() + timedelta(days=7))
    assert summary == {"reminders": 1, "escalations": 1}
    escalation = db_session.query(Notification).filter(
        Notification.user_id == manager.id, Notification.type == "SYSTEM"
    ).one()
    assert escalation.payload["escalation"] is True
    assert escalation.payload["approver_id"] == line_manager.id


def test_repeat_sweeps_do_not_repeat_reminders(db_session, workflow, staff, line_manager, manager, make_kpi):
    kpi = make_kpi()
    workflow.submit_for_approval("KPI", kpi.id, staff)
    service = EscalationService(workflow)
    later = utcnow() + timedelta(days=7)

    assert service.escalate_overdue_approvals(later) == {"reminders": 1, "escalations": 1}
    assert service.escalate_overdue_approvals(later + timedelta(hours=4)) == {"reminders": 0, "escalations": 0}
    assert _types_for(db_session, line_manager).count("REMINDER") == 1
    assert _types_for(db_session, manager).count("SYSTEM") == 1

    # Next day pending is a new reminder
    assert service.escalate_overdue_approvals(later + timedelta(days=1)) == {"reminders": 1, "escalations": 1}


def test_sweep_never_decides(db_session, workflow, staff, make_kpi):
    kpi = make_kpi()
    workflow.submit_for_approval("KPI", kpi.id, staff)
    EscalationService(workflow).escalate_overdue_approvals(utcnow() + timedelta(days=30))
    db_session.expire_all()
    assert workflow.store.pending_approval("KPI", kpi.id, 1) is not None


def test_cycle_closing_soon_once_per_day(db_session, workflow, staff, line_manager, manager, admin_user,
                                         active_cycle):
    active_cycle.period_end = date.today() + timedelta(days=5)
    db_session.commit()
    service = EscalationService(workflow)

    assert service.send_cycle_reminders() == {"notified": 3}
    assert "CYCLE_CLOSING_SOON" in _types_for(db_session, staff)
    assert _types_for(db_session, admin_user) == []

    assert service.send_cycle_reminders() == {"notified": 0}


def test_cycle_far_from_end_gets_no_reminder(workflow, staff, active_cycle):
    assert EscalationService(workflow).send_cycle_reminders() == {"notified": 0}


def test_sweep_runs_leftover_tasks(db_session, workflow, make_kpi):
    kpi = make_kpi(status=KpiStatus.APPROVED)
    workflow.tasks.enqueue("lock_kpi_goals", {"kpi_id": kpi.id})
    db_session.commit()

    summary = EscalationService(workflow).run()
    assert summary["tasks_run"] == 1
    db_session.expire_all()
    assert db_session.get(KpiDefinition, kpi.id).status == "LOCKED_GOALS"


def test_escalate_endpoint_is_admin_only(client, admin_user, staff, auth_headers):
    assert client.post("/api/approvals/escalate", headers=auth_headers(staff)).status_code == 403
    response = client.post("/api/approvals/escalate", headers=auth_headers(admin_user))
    assert response.status_code == 200
    assert set(response.json()["data"]) == {"reminders", "escalations", "notified", "tasks_run"}
