from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Callable, Iterator, Optional
import logging

from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from ..core.config import Settings, settings as default_settings
from ..core.exceptions import Busy, SessionNotFound
from ..models.session import ClinicSession

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    """Naive UTC timestamp, the form stored in DateTime columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# PostgreSQL lock_not_available, raised when lock_timeout expires
PG_LOCK_NOT_AVAILABLE = "55P03"


def is_lock_timeout(exc: OperationalError) -> bool:
    """True when the database gave up waiting for a lock, not for any other failure."""
    if getattr(exc.orig, "pgcode", None) == PG_LOCK_NOT_AVAILABLE:
        return True
    return "database is locked" in str(exc.orig)


class SchedulingService:
    """Shared plumbing for services that write session or appointment state."""

    def __init__(
        self,
        db: Session,
        locks,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utcnow
    ):
        self.db = db
        self.locks = locks
        self.settings = settings or default_settings
        self.clock = clock

    @contextmanager
    def _critical_section(self, session_id: str) -> Iterator[None]:
        """Hold the session lock for one transaction; roll back on any failure."""
        with self.locks.hold(session_id):
            try:
                yield
            except OperationalError as exc:
                self.db.rollback()
                if not is_lock_timeout(exc):
                    raise
                logger.warning(f"Row lock on session {session_id} not granted: {exc}")
                raise Busy(session_id) from exc
            except Exception:
                self.db.rollback()
                raise

    def _load_session_for_update(self, session_id: str) -> ClinicSession:
        """Read the current committed session row, locking it where supported."""
        if self.db.get_bind().dialect.name == "postgresql":
            timeout_ms = int(self.settings.SESSION_LOCK_TIMEOUT_SECONDS * 1000)
            self.db.execute(text(f"SET LOCAL lock_timeout = {timeout_ms}"))

        clinic_session = (
            self.db.query(ClinicSession)
            .filter(ClinicSession.id == session_id)
            .with_for_update()
            .populate_existing()
            .first()
        )
        if not clinic_session:
            raise SessionNotFound(session_id)
        return clinic_session
