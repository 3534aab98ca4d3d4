import random
import tempfile
import unittest
from datetime import datetime, timedelta, timezone
from pathlib import Path

from eventlottery.db.engine import get_sessionmaker, make_engine
from eventlottery.draw import DrawOutcome
from eventlottery.errors import (
    InvalidRequest,
    InvalidTransition,
    NotFound,
    RegistrationClosed,
)
from eventlottery.models import Base, EntrantStatus, EventStatus, NotificationType
from eventlottery.notifications import NotificationDispatcher
from eventlottery.workflows import (
    cancel_event,
    cancel_invite,
    cancel_lottery,
    create_event,
    event_metrics,
    finalize_event,
    join_waitlist,
    leave_waitlist,
    list_entrants,
    list_notifications,
    list_organizer_events,
    mark_notification_seen,
    notifications_for_event,
    notify_entrant,
    notify_entrants_by_status,
    registration_history,
    respond_to_invite,
    revoke_entrant,
    run_draw,
)

from tests.fakes import RecordingSink


class WorkflowTestBase(unittest.TestCase):
    def setUp(self):
        self.engine = make_engine("sqlite+pysqlite:///:memory:")
        Base.metadata.create_all(self.engine)
        self.Session = get_sessionmaker(self.engine)
        self.session = self.Session()

    def tearDown(self):
        self.session.close()
        self.engine.dispose()

    def make_event(self, **kwargs):
        kwargs.setdefault("organizer_id", "org-1")
        return create_event(self.session, kwargs.pop("name", "Swim Lessons"), **kwargs)

    def fill(self, event, *user_ids):
        for user_id in user_ids:
            join_waitlist(self.session, event.id, user_id)


class CreateEventTestCase(WorkflowTestBase):
    def test_create_event_persists_open_event(self):
        event = self.make_event(capacity=10, waiting_list_limit=50, location="Pool")
        self.assertEqual(event.status, EventStatus.OPEN)
        self.assertEqual(
            [e.id for e in list_organizer_events(self.session, "org-1")], [event.id]
        )
        self.assertEqual(list_organizer_events(self.session, "someone-else"), [])

    def test_create_event_validation(self):
        now = datetime(2025, 5, 1, tzinfo=timezone.utc)
        day = timedelta(days=1)
        invalid = [
            {"name": "  "},
            {"registration_start": now},
            {"registration_start": now, "registration_end": now},
            {"registration_start": now + day, "registration_end": now},
            {"event_start": now + day, "event_end": now},
            {
                "registration_start": now,
                "registration_end": now + 2 * day,
                "event_start": now + day,
            },
            {"capacity": -1},
            {"waiting_list_limit": 5},
            {"capacity": 5, "waiting_list_limit": 0},
            {"capacity": 5, "waiting_list_limit": 4},
        ]
        for kwargs in invalid:
            with self.subTest(kwargs=kwargs):
                with self.assertRaises(InvalidRequest):
                    self.make_event(**kwargs)
        self.assertEqual(list_organizer_events(self.session, "org-1"), [])

    def test_valid_windows_and_limits(self):
        now = datetime(2025, 5, 1, tzinfo=timezone.utc)
        event = self.make_event(
            capacity=0,
            waiting_list_limit=1,
            registration_start=now,
            registration_end=now + timedelta(days=1),
            event_start=now + timedelta(days=1),
            event_end=now + timedelta(days=2),
        )
        self.assertEqual(event.capacity, 0)

    def test_finalize_and_cancel(self):
        event = self.make_event()
        finalize_event(self.session, event.id)
        with self.assertRaises(InvalidTransition):
            finalize_event(self.session, event.id)
        with self.assertRaises(InvalidTransition):
            cancel_event(self.session, event.id)

        other = self.make_event(name="Diving")
        self.assertEqual(cancel_event(self.session, other.id).status, EventStatus.CANCELLED)
        with self.assertRaises(NotFound):
            cancel_event(self.session, "missing")


class LotteryFlowTestCase(WorkflowTestBase):
    def test_draw_scenario_with_inbox(self):
        event = self.make_event(capacity=2)
        self.fill(event, "A", "B", "C")

        result = run_draw(self.session, event.id, 5, rng=random.Random(3))

        self.assertEqual(result.actual_count, 2)
        self.assertEqual(result.outcome, DrawOutcome.DRAWN)
        metrics = event_metrics(self.session, event.id)
        self.assertEqual(metrics["invited"], 2)
        self.assertEqual(metrics["waiting"], 1)
        self.assertEqual(metrics["available"], 0)

        for user_id in result.winners:
            inbox = list_notifications(self.session, user_id)
            self.assertEqual(len(inbox), 1)
            self.assertEqual(inbox[0].type, NotificationType.INVITE)
            self.assertEqual(inbox[0].title, "Congratulations!")
            self.assertEqual(inbox[0].sender_id, "org-1")
        (loser,) = {"A", "B", "C"} - set(result.winners)
        self.assertEqual(list_notifications(self.session, loser), [])

    def test_stream_draw(self):
        event = self.make_event(capacity=3)
        self.fill(event, *[f"user-{i}" for i in range(8)])

        result = run_draw(self.session, event.id, 10, stream=True)

        self.assertEqual(result.actual_count, 3)
        invited = list_entrants(self.session, event.id, EntrantStatus.INVITED)
        self.assertEqual({e.user_id for e in invited}, set(result.winners))

    def test_respond_and_redraw(self):
        event = self.make_event(capacity=1)
        self.fill(event, "A", "B")
        (winner,) = run_draw(self.session, event.id, 1).winners

        respond_to_invite(self.session, event.id, winner, accept=False)
        self.assertEqual(event_metrics(self.session, event.id)["available"], 1)

        (second,) = run_draw(self.session, event.id, 1).winners
        self.assertNotEqual(second, winner)
        respond_to_invite(self.session, event.id, second, accept=True)

        metrics = event_metrics(self.session, event.id)
        self.assertEqual((metrics["accepted"], metrics["declined"], metrics["available"]), (1, 1, 0))

    def test_accept_after_finalize_rejected(self):
        event = self.make_event(capacity=1)
        self.fill(event, "A")
        run_draw(self.session, event.id, 1)
        finalize_event(self.session, event.id)

        with self.assertRaises(InvalidTransition):
            respond_to_invite(self.session, event.id, "A", accept=True)
        with self.assertRaises(InvalidTransition):
            run_draw(self.session, event.id, 1)
        with self.assertRaises(RegistrationClosed):
            join_waitlist(self.session, event.id, "B")

    def test_cancel_invite_sends_one_withdrawal(self):
        event = self.make_event(name="Choir", capacity=1)
        self.fill(event, "A")
        run_draw(self.session, event.id, 1)

        result = cancel_invite(self.session, event.id, "A")

        self.assertEqual(result.new_status, EntrantStatus.WAITING)
        withdrawals = [
            n for n in list_notifications(self.session, "A")
            if n.type == NotificationType.WITHDRAWAL
        ]
        self.assertEqual(len(withdrawals), 1)
        self.assertEqual(
            withdrawals[0].message, "Your invitation to the event Choir has been withdrawn."
        )

    def test_revoke_entrant(self):
        event = self.make_event(capacity=1)
        self.fill(event, "A")
        run_draw(self.session, event.id, 1)
        respond_to_invite(self.session, event.id, "A", accept=True)

        result = revoke_entrant(self.session, event.id, "A")

        self.assertEqual(result.new_status, EntrantStatus.CANCELLED)
        self.assertEqual(event_metrics(self.session, event.id)["available"], 1)

    def test_cancel_lottery(self):
        event = self.make_event(capacity=3)
        self.fill(event, "A", "B", "C", "D")
        run_draw(self.session, event.id, 3)

        result = cancel_lottery(self.session, event.id)

        self.assertEqual(len(result.withdrawn), 3)
        metrics = event_metrics(self.session, event.id)
        self.assertEqual((metrics["waiting"], metrics["invited"]), (4, 0))
        kinds = [n.type for n in notifications_for_event(self.session, event.id)]
        self.assertEqual(kinds.count(NotificationType.INVITE), 3)
        self.assertEqual(kinds.count(NotificationType.WITHDRAWAL), 3)

    def test_leave_twice(self):
        event = self.make_event()
        self.fill(event, "A")
        leave_waitlist(self.session, event.id, "A")
        with self.assertRaises(NotFound):
            leave_waitlist(self.session, event.id, "A")
        self.assertEqual(list_entrants(self.session, event.id), [])

    def test_failed_dispatch_keeps_invitations(self):
        event = self.make_event(capacity=2)
        self.fill(event, "A", "B")
        sink = RecordingSink(fail_for={"A"})

        with self.assertLogs("eventlottery.notifications.dispatcher", level="WARNING"):
            result = run_draw(
                self.session, event.id, 2, dispatcher=NotificationDispatcher(sink)
            )

        self.assertEqual(result.notification_failures, ("A",))
        self.assertEqual([m.recipient_id for m in sink.sent], ["B"])
        self.assertEqual(event_metrics(self.session, event.id)["invited"], 2)

    def test_unbounded_metrics(self):
        event = self.make_event()
        self.fill(event, "A")
        self.assertIsNone(event_metrics(self.session, event.id)["available"])
        with self.assertRaises(NotFound):
            event_metrics(self.session, "missing")


class EntrantQueriesTestCase(WorkflowTestBase):
    def test_list_entrants_and_history(self):
        t0 = datetime(2025, 6, 1, 9, 0, tzinfo=timezone.utc)
        first = self.make_event(name="Ceramics", capacity=1)
        second = self.make_event(name="Painting")
        join_waitlist(self.session, first.id, "zoe", now=t0)
        join_waitlist(self.session, first.id, "amy", now=t0 + timedelta(minutes=5))
        join_waitlist(self.session, second.id, "zoe", now=t0 + timedelta(hours=1))
        run_draw(self.session, first.id, 1, rng=random.Random(0))

        entrants = list_entrants(self.session, first.id)
        self.assertEqual([e.user_id for e in entrants], ["zoe", "amy"])

        history = registration_history(self.session, "zoe")
        self.assertEqual([e.event.name for e in history], ["Painting", "Ceramics"])
        self.assertEqual(history[0].status, EntrantStatus.WAITING)

    def test_join_with_location(self):
        event = self.make_event(geolocation_required=True)
        with self.assertRaises(InvalidRequest):
            join_waitlist(self.session, event.id, "A")
        entrant = join_waitlist(self.session, event.id, "A", latitude=1.5, longitude=2.5)
        self.assertEqual(entrant.to_json()["geolocation"], {"latitude": 1.5, "longitude": 2.5})


class InboxTestCase(WorkflowTestBase):
    def test_custom_messages_and_seen_flag(self):
        event = self.make_event(name="Book Club", capacity=5)
        self.fill(event, "A", "B", "C")
        run_draw(self.session, event.id, 1, rng=random.Random(1))

        failures = notify_entrants_by_status(
            self.session, event.id, EntrantStatus.WAITING, "Another draw is coming Friday"
        )
        self.assertEqual(failures, [])
        self.assertTrue(
            notify_entrant(self.session, event.id, "A", "See you soon", title="Reminder")
        )
        with self.assertRaises(NotFound):
            notify_entrant(self.session, event.id, "stranger", "Hello")
        with self.assertRaises(InvalidRequest):
            notify_entrant(self.session, event.id, "A", "  ")

        customs = [
            n for n in notifications_for_event(self.session, event.id)
            if n.type == NotificationType.CUSTOM
        ]
        self.assertEqual(len(customs), 3)
        reminder = [n for n in customs if n.title == "Reminder"]
        self.assertEqual([n.recipient_id for n in reminder], ["A"])

        inbox = list_notifications(self.session, "A", unseen_only=True)
        self.assertTrue(inbox)
        seen = mark_notification_seen(self.session, inbox[0].id, user_id="A")
        self.assertTrue(seen.seen)
        self.assertEqual(
            len(list_notifications(self.session, "A", unseen_only=True)), len(inbox) - 1
        )

        with self.assertRaises(NotFound):
            mark_notification_seen(self.session, inbox[0].id, user_id="B")
        with self.assertRaises(NotFound):
            mark_notification_seen(self.session, 9999)


class CommittedWritesTestCase(unittest.TestCase):
    """Each workflow leaves the session idle, so its writes survive the session."""

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        url = f"sqlite+pysqlite:///{Path(self.tmpdir.name) / 'lottery.db'}"
        self.engine = make_engine(url)
        Base.metadata.create_all(self.engine)
        self.Session = get_sessionmaker(self.engine)
        self.session = self.Session()
        self.event = create_event(self.session, "Pottery", organizer_id="org-1", capacity=2)
        for user_id in ("A", "B", "C"):
            join_waitlist(self.session, self.event.id, user_id)

    def tearDown(self):
        self.session.close()
        self.engine.dispose()
        self.tmpdir.cleanup()

    def statuses(self):
        with self.Session() as other:
            return {
                e.user_id: e.status for e in list_entrants(other, self.event.id)
            }

    def test_reads_leave_session_idle(self):
        reads = [
            lambda s: event_metrics(s, self.event.id),
            lambda s: list_entrants(s, self.event.id),
            lambda s: registration_history(s, "A"),
            lambda s: list_organizer_events(s, "org-1"),
            lambda s: list_notifications(s, "A"),
            lambda s: notifications_for_event(s, self.event.id),
        ]
        for read in reads:
            read(self.session)
            self.assertFalse(self.session.in_transaction())

    def test_draw_after_read_is_committed(self):
        event_metrics(self.session, self.event.id)
        sink = RecordingSink()

        result = run_draw(
            self.session, self.event.id, 2, dispatcher=NotificationDispatcher(sink)
        )
        self.session.close()

        statuses = self.statuses()
        self.assertEqual(len(sink.sent), 2)
        for user_id in result.winners:
            self.assertEqual(statuses[user_id], EntrantStatus.INVITED)
        self.assertEqual(list(statuses.values()).count(EntrantStatus.INVITED), 2)

    def test_cancel_invite_after_read_is_committed(self):
        run_draw(self.session, self.event.id, 1, rng=random.Random(5))
        (winner,) = [
            e.user_id for e in list_entrants(self.session, self.event.id, EntrantStatus.INVITED)
        ]

        cancel_invite(self.session, self.event.id, winner)
        self.session.close()

        self.assertEqual(self.statuses()[winner], EntrantStatus.WAITING)
        with self.Session() as other:
            kinds = [n.type for n in list_notifications(other, winner)]
        self.assertEqual(kinds, [NotificationType.WITHDRAWAL, NotificationType.INVITE])

    def test_notify_entrant_inbox_row_is_committed(self):
        self.assertTrue(notify_entrant(self.session, self.event.id, "A", "hello"))
        failures = notify_entrants_by_status(
            self.session, self.event.id, EntrantStatus.WAITING, "draw on Friday"
        )
        self.assertEqual(failures, [])
        self.session.close()

        with self.Session() as other:
            texts = [n.message for n in list_notifications(other, "A")]
            self.assertEqual(sorted(texts), ["draw on Friday", "hello"])
            self.assertEqual(len(notifications_for_event(other, self.event.id)), 4)


class ErrorContextTestCase(WorkflowTestBase):
    def test_errors_carry_event_and_operation(self):
        with self.assertRaises(NotFound) as ctx:
            event_metrics(self.session, "missing")
        self.assertEqual((ctx.exception.event_id, ctx.exception.transition), ("missing", "metrics"))

        event = self.make_event()
        self.fill(event, "A")
        with self.assertRaises(InvalidRequest) as ctx:
            notify_entrant(self.session, event.id, "A", " ")
        self.assertEqual(
            (ctx.exception.event_id, ctx.exception.user_id, ctx.exception.transition),
            (event.id, "A", "notify"),
        )

        notify_entrant(self.session, event.id, "A", "hi")
        (notification,) = list_notifications(self.session, "A")
        with self.assertRaises(NotFound) as ctx:
            mark_notification_seen(self.session, notification.id, user_id="B")
        self.assertEqual(
            (ctx.exception.event_id, ctx.exception.transition), (event.id, "mark_seen")
        )


if __name__ == "__main__":
    unittest.main()
