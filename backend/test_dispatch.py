from datetime import timedelta
from unittest.mock import MagicMock

from core.dispatch import ReminderTarget, build_notification, run_reminder_batch
from core.reminders import RequestStatus, UrgencyLevel, plan_reminder
from models import RecommendationRequest
from conftest import NOW


def make_target(request_id, days_left=2, email="prof@university.edu", **kwargs):
    deadline = NOW + timedelta(days=days_left)
    request = RecommendationRequest(
        id=request_id,
        student_id="user_test_123",
        recipient_id="recipient_1",
        title="PhD Application Letter",
        description="Letter for the PhD program",
        deadline=deadline,
        reminder_intervals=[7, 3, 1],
        next_reminder_date=deadline - timedelta(days=7),
        **kwargs
    )
    return ReminderTarget(
        request=request,
        recipient_email=email,
        recipient_name="Dr. Smith",
        student_name="Test User",
        portal_url=f"http://localhost:3000/recommendation/{request_id}",
    )


class TestBuildNotification:
    def test_notification_carries_plan_details(self):
        target = make_target("rec_1", days_left=2)
        plan = plan_reminder(target.request, NOW)

        notification = build_notification(target, plan)

        assert notification.recipient_email == "prof@university.edu"
        assert notification.request_title == "PhD Application Letter"
        assert notification.days_until_deadline == 2
        assert notification.reminder_number == 2
        assert notification.urgency_level == UrgencyLevel.HIGH
        assert "due in 2 days" in notification.urgency_message
        assert notification.portal_url.endswith("/recommendation/rec_1")


class TestRunReminderBatch:
    def test_sends_due_reminders(self):
        notifier = MagicMock()
        updated = []
        targets = [make_target("rec_1"), make_target("rec_2", days_left=1)]

        result = run_reminder_batch(targets, notifier, NOW, on_update=updated.append)

        assert result.checked == 2
        assert result.sent == 2
        assert result.errors == 0
        assert notifier.send_reminder.call_count == 2
        assert [r.id for r in updated] == ["rec_1", "rec_2"]
        assert all(t.request.status == RequestStatus.SENT for t in targets)
        assert [d.outcome for d in result.details] == ["sent", "sent"]
        assert result.details[1].urgency_level == UrgencyLevel.CRITICAL

    def test_failure_does_not_stop_the_batch(self):
        notifier = MagicMock()
        notifier.send_reminder.side_effect = [None, Exception("SMTP down"), None]
        targets = [make_target("rec_1"), make_target("rec_2"), make_target("rec_3")]
        failed_schedule = targets[1].request.next_reminder_date

        result = run_reminder_batch(targets, notifier, NOW)

        assert result.sent == 2
        assert result.errors == 1
        assert notifier.send_reminder.call_count == 3
        failed = targets[1].request
        assert failed.status == RequestStatus.PENDING
        assert failed.last_reminder_sent is None
        assert failed.next_reminder_date == failed_schedule
        assert result.details[1].outcome == "error"
        assert result.details[1].error == "SMTP down"

    def test_missing_recipient_email_is_an_error(self):
        notifier = MagicMock()
        target = make_target("rec_1", email=None)

        result = run_reminder_batch([target], notifier, NOW)

        assert result.errors == 1
        assert result.sent == 0
        notifier.send_reminder.assert_not_called()
        assert target.request.status == RequestStatus.PENDING

    def test_requests_not_due_are_skipped(self):
        notifier = MagicMock()
        target = make_target("rec_1", status=RequestStatus.CANCELLED)

        result = run_reminder_batch([target], notifier, NOW)

        assert result.checked == 1
        assert result.skipped == 1
        assert result.details == []
        notifier.send_reminder.assert_not_called()

    def test_request_outside_every_interval_waits_for_first_reminder(self):
        notifier = MagicMock()
        updated = []
        target = make_target("rec_1", days_left=10)
        target.request.next_reminder_date = NOW - timedelta(hours=1)

        result = run_reminder_batch([target], notifier, NOW, on_update=updated.append)

        assert result.skipped == 1
        assert result.sent == 0
        notifier.send_reminder.assert_not_called()
        assert target.request.next_reminder_date == target.request.deadline - timedelta(days=7)
        assert updated == [target.request]

        second = run_reminder_batch([target], notifier, NOW + timedelta(hours=6), on_update=updated.append)

        assert second.skipped == 1
        assert second.details == []
        assert updated == [target.request]

    def test_failed_update_on_skipped_request_does_not_stop_the_batch(self):
        notifier = MagicMock()
        early = make_target("rec_early", days_left=10)
        early.request.next_reminder_date = NOW - timedelta(hours=1)
        due = make_target("rec_due")
        saved = []

        def persist(request):
            if request.id == "rec_early":
                raise RuntimeError("database is locked")
            saved.append(request.id)

        result = run_reminder_batch([early, due], notifier, NOW, on_update=persist)

        assert result.errors == 1
        assert result.sent == 1
        assert result.details[0].outcome == "error"
        assert result.details[0].error == "database is locked"
        assert saved == ["rec_due"]
        notifier.send_reminder.assert_called_once()

    def test_same_tick_twice_sends_once(self):
        notifier = MagicMock()
        targets = [make_target("rec_1")]

        first = run_reminder_batch(targets, notifier, NOW)
        second = run_reminder_batch(targets, notifier, NOW)

        assert first.sent == 1
        assert second.sent == 0
        assert notifier.send_reminder.call_count == 1
