import logging
import random
from datetime import datetime, timedelta, timezone

from eventlottery.db.engine import get_sessionmaker, make_engine
from eventlottery.models import Base
from eventlottery.workflows import (
    create_event,
    event_metrics,
    join_waitlist,
    respond_to_invite,
    run_draw,
)


def main() -> None:
    """Reset the development database and seed a demo lottery.

    Creates one capped event, fills its waiting list, runs a draw and has the
    first winner accept, so every status except ``cancelled`` is represented.
    """
    logging.basicConfig(level=logging.INFO, format="%(levelname)s [%(name)s] %(message)s")

    engine = make_engine()
    Base.metadata.drop_all(engine)
    Base.metadata.create_all(engine)
    Session = get_sessionmaker(engine)

    now = datetime.now(timezone.utc)

    with Session() as session:
        event = create_event(
            session,
            "Swimming Lessons for Beginners",
            organizer_id="organizer_01",
            organizer_name="Community Pool",
            description="Six weekly lessons. Spots are drawn by lottery.",
            location="Community Pool, Lane 3",
            capacity=5,
            waiting_list_limit=20,
            registration_start=now - timedelta(days=1),
            registration_end=now + timedelta(days=6),
            event_start=now + timedelta(days=7),
            event_end=now + timedelta(days=49),
        )
        create_event(
            session,
            "Open Studio Night",
            organizer_id="organizer_01",
            organizer_name="Community Pool",
            location="Studio B",
        )

        for i in range(1, 13):
            join_waitlist(session, event.id, f"user_{i:02d}", user_name=f"Entrant {i:02d}")

        result = run_draw(session, event.id, 3, rng=random.Random(2024))
        winners = sorted(result.winners)
        respond_to_invite(session, event.id, winners[0], accept=True)
        respond_to_invite(session, event.id, winners[1], accept=False)

        print("Development database seeded:", event_metrics(session, event.id))

    engine.dispose()


if __name__ == "__main__":
    main()
