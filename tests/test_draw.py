import random
import unittest

from eventlottery.draw import DrawOrchestrator, DrawOutcome, DrawRequest, DrawSelector
from eventlottery.errors import (
    CapacityExceeded,
    DataUnavailable,
    EmptyWaitlist,
    InvalidRequest,
    InvalidTransition,
    NotFound,
)
from eventlottery.lifecycle import LifecycleManager
from eventlottery.models import EntrantStatus, EventStatus, NotificationType
from eventlottery.notifications import NotificationDispatcher

from tests.fakes import InMemoryEntrantRepository, RecordingSink, unavailable


class DrawTestBase(unittest.TestCase):
    def setUp(self):
        self.repo = InMemoryEntrantRepository()
        self.sink = RecordingSink()
        self.dispatcher = NotificationDispatcher(self.sink)
        self.orchestrator = DrawOrchestrator(
            self.repo,
            self.dispatcher,
            selector=DrawSelector(random.Random(7)),
        )

    def statuses(self, event_id):
        return {
            uid: entrant.status
            for (eid, uid), entrant in self.repo.entrants.items()
            if eid == event_id
        }


class RunDrawTestCase(DrawTestBase):
    def test_draw_clamped_to_capacity(self):
        event = self.repo.add_event(name="Yoga", capacity=2)
        for user_id in ("A", "B", "C"):
            self.repo.add_entrant(event.id, user_id)

        result = self.orchestrator.run_draw(event.id, 5)

        self.assertEqual(result.actual_count, 2)
        self.assertEqual(result.requested, 5)
        self.assertTrue(result.clamped)
        self.assertEqual(result.outcome, DrawOutcome.DRAWN)
        self.assertEqual(result.remaining_capacity, 2)
        self.assertTrue(result.winners <= {"A", "B", "C"})
        statuses = self.statuses(event.id)
        invited = {uid for uid, s in statuses.items() if s == EntrantStatus.INVITED}
        self.assertEqual(invited, set(result.winners))
        self.assertEqual(list(statuses.values()).count(EntrantStatus.WAITING), 1)

    def test_winners_get_one_invite_each(self):
        event = self.repo.add_event(name="Yoga", capacity=10, organizer_id="org-9")
        for i in range(4):
            self.repo.add_entrant(event.id, f"user-{i}")

        result = self.orchestrator.run_draw(event.id, 3)

        self.assertEqual(result.notification_failures, ())
        self.assertEqual(len(self.sink.sent), 3)
        self.assertEqual({m.recipient_id for m in self.sink.sent}, set(result.winners))
        for message in self.sink.sent:
            self.assertEqual(message.type, NotificationType.INVITE)
            self.assertEqual(message.sender_id, "org-9")
            self.assertIn("Yoga", message.text)

    def test_draw_counts_invited_against_capacity(self):
        event = self.repo.add_event(name="Yoga", capacity=3)
        self.repo.add_entrant(event.id, "held-1", EntrantStatus.ACCEPTED)
        self.repo.add_entrant(event.id, "held-2", EntrantStatus.INVITED)
        for i in range(5):
            self.repo.add_entrant(event.id, f"user-{i}")

        result = self.orchestrator.run_draw(event.id, 5)

        self.assertEqual(result.remaining_capacity, 1)
        self.assertEqual(result.actual_count, 1)

    def test_unbounded_event_limited_by_waiting_list(self):
        event = self.repo.add_event(name="Open day")
        for i in range(3):
            self.repo.add_entrant(event.id, f"user-{i}")

        result = self.orchestrator.run_draw(event.id, 10)

        self.assertIsNone(result.remaining_capacity)
        self.assertEqual(result.actual_count, 3)

    def test_capacity_never_exceeded_over_repeated_draws(self):
        event = self.repo.add_event(name="Yoga", capacity=4)
        for i in range(12):
            self.repo.add_entrant(event.id, f"user-{i}")

        for requested in (3, 3, 3):
            self.orchestrator.run_draw(event.id, requested)
            counts = self.repo.aggregate_counts(event.id)
            self.assertLessEqual(
                counts[EntrantStatus.INVITED] + counts[EntrantStatus.ACCEPTED], 4
            )

    def test_full_event_gives_empty_selection(self):
        event = self.repo.add_event(name="Yoga", capacity=1)
        self.repo.add_entrant(event.id, "held", EntrantStatus.ACCEPTED)
        self.repo.add_entrant(event.id, "waiting")

        result = self.orchestrator.run_draw(event.id, 2)

        self.assertEqual(result.outcome, DrawOutcome.EMPTY_SELECTION)
        self.assertEqual(result.actual_count, 0)
        self.assertEqual(self.repo.batch_calls, [])
        self.assertEqual(self.sink.sent, [])

    def test_zero_capacity_event_selects_nobody(self):
        event = self.repo.add_event(name="Yoga", capacity=0)
        self.repo.add_entrant(event.id, "waiting")

        result = self.orchestrator.run_draw(event.id, 1)

        self.assertEqual(result.outcome, DrawOutcome.EMPTY_SELECTION)
        self.assertEqual(self.repo.status_of(event.id, "waiting"), EntrantStatus.WAITING)

    def test_empty_waitlist(self):
        event = self.repo.add_event(name="Yoga", capacity=5)
        self.repo.add_entrant(event.id, "held", EntrantStatus.ACCEPTED)

        with self.assertRaises(EmptyWaitlist):
            self.orchestrator.run_draw(event.id, 2)
        self.assertEqual(self.repo.batch_calls, [])
        self.assertEqual(self.sink.sent, [])

    def test_non_positive_request_rejected_before_any_read(self):
        event = self.repo.add_event(name="Yoga", capacity=2)
        self.repo.add_entrant(event.id, "A")
        self.repo.fail_on["get_event"] = AssertionError("event was read")

        for requested in (0, -3):
            with self.subTest(requested=requested):
                with self.assertRaises(InvalidRequest) as ctx:
                    self.orchestrator.run_draw(event.id, requested)
                self.assertEqual(ctx.exception.event_id, event.id)
                self.assertEqual(ctx.exception.transition, "draw")

        self.assertEqual(self.repo.status_of(event.id, "A"), EntrantStatus.WAITING)
        self.assertEqual(self.sink.sent, [])

    def test_unknown_event(self):
        with self.assertRaises(NotFound):
            self.orchestrator.run_draw("missing", 1)

    def test_closed_event_rejected(self):
        event = self.repo.add_event(name="Yoga", capacity=2, status=EventStatus.FINALIZED)
        self.repo.add_entrant(event.id, "A")
        with self.assertRaises(InvalidTransition):
            self.orchestrator.run_draw(event.id, 1)
        self.assertEqual(self.repo.status_of(event.id, "A"), EntrantStatus.WAITING)

    def test_draw_request_object(self):
        event = self.repo.add_event(name="Yoga", capacity=2)
        self.repo.add_entrant(event.id, "A")
        request = DrawRequest(event_id=event.id, number_requested=1)

        result = self.orchestrator.run(request)

        self.assertEqual(result.winners, frozenset({"A"}))
        self.assertIsNotNone(request.timestamp.tzinfo)

    def test_stream_mode_matches_bounds(self):
        event = self.repo.add_event(name="Yoga", capacity=3)
        for i in range(20):
            self.repo.add_entrant(event.id, f"user-{i}")

        result = self.orchestrator.run_draw(event.id, 10, stream=True)

        self.assertEqual(result.actual_count, 3)
        invited = [s for s in self.statuses(event.id).values() if s == EntrantStatus.INVITED]
        self.assertEqual(len(invited), 3)

    def test_stream_mode_empty_waitlist(self):
        event = self.repo.add_event(name="Yoga", capacity=3)
        with self.assertRaises(EmptyWaitlist):
            self.orchestrator.run_draw(event.id, 1, stream=True)


class DrawFailureTestCase(DrawTestBase):
    def setUp(self):
        super().setUp()
        self.event = self.repo.add_event(name="Yoga", capacity=2)
        for user_id in ("A", "B", "C"):
            self.repo.add_entrant(self.event.id, user_id)

    def test_batch_failure_leaves_everyone_waiting(self):
        self.repo.fail_on["batch_update_status"] = unavailable("batch_update_status")

        with self.assertRaises(DataUnavailable):
            self.orchestrator.run_draw(self.event.id, 2)

        self.assertEqual(
            set(self.statuses(self.event.id).values()), {EntrantStatus.WAITING}
        )
        self.assertEqual(self.sink.sent, [])

    def test_read_failure_is_not_treated_as_empty(self):
        self.repo.fail_on["aggregate_counts"] = unavailable("aggregate_counts")
        with self.assertRaises(DataUnavailable):
            self.orchestrator.run_draw(self.event.id, 1)

    def test_concurrent_commit_detected_before_commit(self):
        def concurrent_accept(repo):
            # Another writer fills the remaining slot between selection and commit.
            repo.add_entrant(self.event.id, "late", EntrantStatus.ACCEPTED)

        self.repo.after_batch = concurrent_accept

        with self.assertRaises(CapacityExceeded):
            self.orchestrator.run_draw(self.event.id, 2)

        self.assertEqual(
            {uid: s for uid, s in self.statuses(self.event.id).items()},
            {
                "A": EntrantStatus.WAITING,
                "B": EntrantStatus.WAITING,
                "C": EntrantStatus.WAITING,
            },
        )
        self.assertEqual(self.sink.sent, [])

    def test_status_changed_under_draw(self):
        real_list = self.repo.list_by_status

        def stale_snapshot(event_id, status):
            rows = real_list(event_id, status)
            # Everyone leaves the waiting list after the snapshot was taken.
            for row in rows:
                row.status = EntrantStatus.DECLINED
            return rows

        self.repo.list_by_status = stale_snapshot

        with self.assertRaises(InvalidTransition):
            self.orchestrator.run_draw(self.event.id, 2)

        self.assertEqual(
            set(self.statuses(self.event.id).values()), {EntrantStatus.WAITING}
        )
        self.assertEqual(self.sink.sent, [])

    def test_notification_failure_is_not_fatal(self):
        self.sink.fail_for = {"A", "B", "C"}

        with self.assertLogs("eventlottery.notifications.dispatcher", level="WARNING") as logs:
            result = self.orchestrator.run_draw(self.event.id, 2)

        self.assertEqual(result.actual_count, 2)
        self.assertEqual(set(result.notification_failures), set(result.winners))
        self.assertEqual(len(logs.records), 2)
        for user_id in result.winners:
            self.assertEqual(
                self.repo.status_of(self.event.id, user_id), EntrantStatus.INVITED
            )


class ScenarioTestCase(DrawTestBase):
    def setUp(self):
        super().setUp()
        self.lifecycle = LifecycleManager(self.repo, self.dispatcher)

    def test_declined_entrant_is_never_redrawn(self):
        event = self.repo.add_event(name="Yoga", capacity=1)
        self.repo.add_entrant(event.id, "alice", EntrantStatus.INVITED)
        for i in range(5):
            self.repo.add_entrant(event.id, f"user-{i}")

        self.lifecycle.decline(event.id, "alice")
        self.assertEqual(self.repo.status_of(event.id, "alice"), EntrantStatus.DECLINED)

        # The declined slot is free again but nothing is drawn automatically.
        self.assertEqual(self.repo.batch_calls, [])
        for _ in range(5):
            result = self.orchestrator.run_draw(event.id, 1)
            self.assertNotIn("alice", result.winners)
            self.lifecycle.decline(event.id, next(iter(result.winners)))
        self.assertEqual(self.repo.status_of(event.id, "alice"), EntrantStatus.DECLINED)

    def test_cancel_invite_returns_to_waiting_with_single_withdrawal(self):
        event = self.repo.add_event(name="Yoga", capacity=1)
        self.repo.add_entrant(event.id, "A")
        result = self.orchestrator.run_draw(event.id, 1)
        self.assertEqual(result.winners, frozenset({"A"}))
        self.sink.sent.clear()

        self.lifecycle.withdraw(event.id, "A")

        self.assertEqual(self.repo.status_of(event.id, "A"), EntrantStatus.WAITING)
        self.assertEqual(len(self.sink.sent), 1)
        self.assertEqual(self.sink.sent[0].type, NotificationType.WITHDRAWAL)


class CancelLotteryTestCase(DrawTestBase):
    def test_all_invited_return_to_waiting(self):
        event = self.repo.add_event(name="Yoga", capacity=5)
        self.repo.add_entrant(event.id, "kept", EntrantStatus.ACCEPTED)
        for user_id in ("A", "B"):
            self.repo.add_entrant(event.id, user_id, EntrantStatus.INVITED)
        self.repo.add_entrant(event.id, "C")

        result = self.orchestrator.cancel_lottery(event.id)

        self.assertEqual(result.withdrawn, frozenset({"A", "B"}))
        statuses = self.statuses(event.id)
        self.assertEqual(statuses["A"], EntrantStatus.WAITING)
        self.assertEqual(statuses["B"], EntrantStatus.WAITING)
        self.assertEqual(statuses["kept"], EntrantStatus.ACCEPTED)
        self.assertEqual(
            sorted(m.recipient_id for m in self.sink.sent), ["A", "B"]
        )
        self.assertTrue(
            all(m.type == NotificationType.WITHDRAWAL for m in self.sink.sent)
        )

    def test_nothing_to_cancel(self):
        event = self.repo.add_event(name="Yoga", capacity=5)
        result = self.orchestrator.cancel_lottery(event.id)
        self.assertEqual(result.withdrawn, frozenset())
        self.assertEqual(self.sink.sent, [])

    def test_unknown_event(self):
        with self.assertRaises(NotFound):
            self.orchestrator.cancel_lottery("missing")


if __name__ == "__main__":
    unittest.main()
