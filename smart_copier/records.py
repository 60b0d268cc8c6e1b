"""
Copy ledger for Smart Copier.

One row per ``(fingerprint, source_root)`` pair, persisted in SQLite through
SQLAlchemy. The unique constraint on that pair is what keeps two scanners
from recording the same content twice; no application-level locking is
layered on top.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from pathlib import Path

from sqlalchemy import Integer, String, Text, UniqueConstraint, create_engine, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker

from smart_copier.models import FileStatus

logger = logging.getLogger(__name__)

INTERRUPTED_MESSAGE = "Interrupted by restart"


def utc_now() -> str:
    """Return the current UTC time as an ISO-8601 string."""
    return datetime.now(UTC).isoformat()


class Base(DeclarativeBase):
    pass


class FileRecord(Base):
    """Ledger entry for one piece of content seen under one source root."""

    __tablename__ = "files"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    fingerprint: Mapped[str] = mapped_column(Text, nullable=False)
    filename: Mapped[str] = mapped_column(Text, nullable=False)
    source_path: Mapped[str] = mapped_column(Text, nullable=False)
    source_root: Mapped[str] = mapped_column(Text, nullable=False)
    destination_path: Mapped[str | None] = mapped_column(Text, nullable=True)
    size: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, default=FileStatus.PENDING.value)
    first_seen_at: Mapped[str] = mapped_column(Text, nullable=False)
    copied_at: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (UniqueConstraint("fingerprint", "source_root"),)

    @property
    def file_status(self) -> FileStatus:
        return FileStatus(self.status)

    def to_dict(self) -> dict[str, object]:
        return {
            "fingerprint": self.fingerprint,
            "filename": self.filename,
            "source_path": self.source_path,
            "source_root": self.source_root,
            "destination_path": self.destination_path,
            "size": self.size,
            "status": self.status,
            "first_seen_at": self.first_seen_at,
            "copied_at": self.copied_at,
            "error_message": self.error_message,
        }


class InvalidTransitionError(ValueError):
    """Raised when a ledger status change is not allowed."""


class FileRecordStore:
    """
    Thread-safe access to the copy ledger.

    Every method opens its own short-lived session, so the store can be
    shared between the scan loops and the copy worker.

    Parameters
    ----------
    database_url : str
        SQLAlchemy URL, e.g. ``sqlite:////var/lib/smart-copier.db``.
    """

    def __init__(self, database_url: str, echo: bool = False):
        connect_args = {"check_same_thread": False} if database_url.startswith("sqlite") else {}
        self._engine = create_engine(database_url, echo=echo, connect_args=connect_args)
        self._session_factory = sessionmaker(self._engine, expire_on_commit=False)
        Base.metadata.create_all(self._engine)

    @classmethod
    def from_path(cls, path: str | Path) -> FileRecordStore:
        """Open (creating if needed) the SQLite ledger at *path*."""
        db_path = Path(path)
        db_path.parent.mkdir(parents=True, exist_ok=True)
        return cls(f"sqlite:///{db_path}")

    def close(self) -> None:
        self._engine.dispose()

    # ---- queries ----

    def find_by_fingerprint(self, fingerprint: str, source_root: str) -> FileRecord | None:
        """Return the ledger entry for *fingerprint* under *source_root*, if any."""
        stmt = select(FileRecord).where(
            FileRecord.fingerprint == fingerprint,
            FileRecord.source_root == source_root,
        )
        with self._session_factory() as session:
            return session.scalars(stmt).first()

    def list_history(self, limit: int = 200) -> list[FileRecord]:
        """Return the most recently seen entries, newest first."""
        stmt = (
            select(FileRecord)
            .order_by(FileRecord.first_seen_at.desc(), FileRecord.id.desc())
            .limit(limit)
        )
        with self._session_factory() as session:
            return list(session.scalars(stmt))

    # ---- mutations ----

    def insert_pending(
        self,
        *,
        fingerprint: str,
        filename: str,
        source_path: str,
        source_root: str,
        destination_path: str,
        size: int,
        first_seen_at: str | None = None,
    ) -> bool:
        """
        Record newly seen content as PENDING.

        Returns False when another writer already inserted the same
        ``(fingerprint, source_root)`` pair.
        """
        record = FileRecord(
            fingerprint=fingerprint,
            filename=filename,
            source_path=source_path,
            source_root=source_root,
            destination_path=destination_path,
            size=size,
            status=FileStatus.PENDING.value,
            first_seen_at=first_seen_at or utc_now(),
        )
        with self._session_factory() as session:
            session.add(record)
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                logger.debug("Ledger entry already exists for %s under %s", fingerprint, source_root)
                return False
        return True

    def mark_copying(self, fingerprint: str, source_root: str) -> None:
        self._transition(fingerprint, source_root, FileStatus.COPYING, error_message=None)

    def mark_copied(
        self,
        fingerprint: str,
        source_root: str,
        destination_path: str,
        copied_at: str | None = None,
    ) -> None:
        self._transition(
            fingerprint,
            source_root,
            FileStatus.COPIED,
            destination_path=destination_path,
            copied_at=copied_at or utc_now(),
            error_message=None,
        )

    def mark_failed(self, fingerprint: str, source_root: str, error_message: str) -> None:
        self._transition(
            fingerprint, source_root, FileStatus.FAILED, error_message=error_message
        )

    def fail_in_progress(self) -> int:
        """
        Mark every COPYING entry FAILED.

        Called once at start-up, before any scan, to reconcile copies that
        were cut short by a crash or shutdown. Returns the number of rows.
        """
        stmt = (
            update(FileRecord)
            .where(FileRecord.status == FileStatus.COPYING.value)
            .values(status=FileStatus.FAILED.value, error_message=INTERRUPTED_MESSAGE)
        )
        with self._session_factory() as session:
            result = session.execute(stmt)
            session.commit()
        count = result.rowcount or 0
        if count:
            logger.warning("Marked %d interrupted copy(ies) as failed.", count)
        return count

    def _transition(
        self, fingerprint: str, source_root: str, target: FileStatus, **fields: object
    ) -> None:
        stmt = select(FileRecord).where(
            FileRecord.fingerprint == fingerprint,
            FileRecord.source_root == source_root,
        )
        with self._session_factory() as session:
            record = session.scalars(stmt).first()
            if record is None:
                raise LookupError(f"No ledger entry for {fingerprint} under {source_root}")
            if not record.file_status.can_become(target):
                raise InvalidTransitionError(
                    f"Cannot move {fingerprint} from {record.status} to {target.value}"
                )
            record.status = target.value
            for name, value in fields.items():
                setattr(record, name, value)
            session.commit()
