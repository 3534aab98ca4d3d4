from contextlib import contextmanager
from pathlib import Path
from datetime import datetime
from typing import Iterator, Optional

from sqlalchemy.orm import Session


def resolve_sqlite_url(url: str, project_root: Path) -> str:
    """Resolve 'sqlite:///./relative/path' to an absolute sqlite:/// URL.

    Keeps other URL forms unchanged.
    """
    prefix = "sqlite:///./"
    if not url.startswith(prefix):
        return url
    rel = url[len(prefix) :]
    return f"sqlite:///{(project_root / rel).resolve()}"


def dt_iso(dt: Optional[datetime]) -> Optional[str]:
    """Convert a datetime to an ISO 8601 string in UTC, or return None.

    Naive datetimes (as returned by SQLite) are assumed to already be UTC.
    """
    from datetime import timezone

    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat()


@contextmanager
def transaction_scope(session: Session) -> Iterator[Session]:
    """Run the block in its own unit of work on ``session``.

    A fresh transaction is opened and committed when the session is idle.
    When the caller already holds a transaction a SAVEPOINT is used instead,
    so a failure inside the block rolls back only the block's writes and the
    caller stays in control of the outer commit.
    """
    if session.in_transaction():
        with session.begin_nested():
            yield session
    else:
        with session.begin():
            yield session
