"""SQLite pairing store adapter.

Implements the core PairingStorePort using a simple SQLite database. Every
claim runs inside a ``BEGIN IMMEDIATE`` transaction, which takes SQLite's
write lock before the candidate is selected, so no two callers (threads or
processes) can claim the same waiting submission.
"""

from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime, timezone
from typing import Iterator, Optional

from sensus.core.errors import PairingStoreError
from sensus.core.models import ContentType, Submission, SubmissionStatus

_COLUMNS = "id, content_type, content, emotional_vector, session_token, status, matched_with, created_at"


def _format_ts(value: datetime) -> str:
    # Fixed-width UTC text so ORDER BY on the column is chronological.
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f+00:00")


def _row_to_submission(row: sqlite3.Row) -> Submission:
    return Submission(
        id=row["id"],
        content_type=ContentType(row["content_type"]),
        content=row["content"],
        emotional_vector=tuple(json.loads(row["emotional_vector"])),
        session_token=row["session_token"],
        status=SubmissionStatus(row["status"]),
        matched_with=row["matched_with"],
        created_at=datetime.fromisoformat(row["created_at"]),
    )


class SQLitePairingStore:
    """Thin SQLite wrapper that satisfies the PairingStorePort contract."""

    def __init__(self, db_path: str, busy_timeout: float = 30.0) -> None:
        self._db_path = db_path
        self._busy_timeout = busy_timeout

    def _connect(self) -> sqlite3.Connection:
        # Autocommit mode; transactions are opened explicitly below.
        conn = sqlite3.connect(self._db_path, timeout=self._busy_timeout, isolation_level=None)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = self._connect()
        except sqlite3.Error as exc:
            raise PairingStoreError(f"Cannot open pairing store: {exc}") from exc
        try:
            conn.execute("BEGIN IMMEDIATE")
            yield conn
            conn.execute("COMMIT")
        except sqlite3.Error as exc:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise PairingStoreError(str(exc)) from exc
        except BaseException:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        finally:
            conn.close()

    @contextmanager
    def _reader(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = self._connect()
        except sqlite3.Error as exc:
            raise PairingStoreError(f"Cannot open pairing store: {exc}") from exc
        try:
            yield conn
        except sqlite3.Error as exc:
            raise PairingStoreError(str(exc)) from exc
        finally:
            conn.close()

    def init_db(self) -> None:
        """Create tables if they do not exist.

        Tables:
        - submissions: one row per submission with its pairing state
        - submission_keywords: keyword index used by the overlap predicate
        """

        with self._transaction() as conn:
            # submissions holds the pairing state machine.
            # Fields:
            # - id: opaque hex id (PRIMARY KEY)
            # - content_type: text | image | audio
            # - content: raw text or a media URL/path
            # - emotional_vector: JSON array of keywords, in classifier order
            # - session_token: submitter token used by the 24h throttle
            # - status: unmatched | matched
            # - matched_with: id of the counterpart once matched, never cleared
            # - created_at: fixed-width UTC timestamp, newest wins ties
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS submissions (
                    id TEXT PRIMARY KEY,
                    content_type TEXT NOT NULL,
                    content TEXT NOT NULL,
                    emotional_vector TEXT NOT NULL,
                    session_token TEXT,
                    status TEXT NOT NULL DEFAULT 'unmatched',
                    matched_with TEXT,
                    created_at TEXT NOT NULL
                )
                """
            )
            # submission_keywords mirrors emotional_vector as a set so the
            # shared-keyword lookup can use an index instead of scanning JSON.
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS submission_keywords (
                    keyword TEXT NOT NULL,
                    submission_id TEXT NOT NULL REFERENCES submissions(id),
                    PRIMARY KEY (keyword, submission_id)
                )
                """
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_submissions_status_created "
                "ON submissions(status, created_at DESC)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_submissions_session_created "
                "ON submissions(session_token, created_at DESC)"
            )

    def _claim(self, conn: sqlite3.Connection, submission: Submission) -> Optional[Submission]:
        """Select and mark the newest overlapping waiting submission.

        Must run inside an open write transaction.
        """

        if not submission.emotional_vector:
            raise ValueError("Submission must be classified before matching")

        keywords = sorted(set(submission.emotional_vector))
        placeholders = ", ".join("?" for _ in keywords)
        row = conn.execute(
            f"""
            SELECT {_COLUMNS} FROM submissions AS s
            WHERE s.status = ?
              AND s.id != ?
              AND EXISTS (
                  SELECT 1 FROM submission_keywords AS k
                  WHERE k.submission_id = s.id AND k.keyword IN ({placeholders})
              )
            ORDER BY s.created_at DESC, s.rowid DESC
            LIMIT 1
            """,
            (SubmissionStatus.UNMATCHED.value, submission.id, *keywords),
        ).fetchone()
        if row is None:
            return None

        cur = conn.execute(
            "UPDATE submissions SET status = ?, matched_with = ? WHERE id = ? AND status = ?",
            (
                SubmissionStatus.MATCHED.value,
                submission.id,
                row["id"],
                SubmissionStatus.UNMATCHED.value,
            ),
        )
        if cur.rowcount != 1:
            # Cannot happen while the write lock is held.
            raise PairingStoreError(f"Lost claim on submission {row['id']}")

        candidate = _row_to_submission(row)
        return replace(candidate, status=SubmissionStatus.MATCHED, matched_with=submission.id)

    def _upsert(self, conn: sqlite3.Connection, submission: Submission) -> None:
        # Only a waiting row may change; a matched row is final.
        cursor = conn.execute(
            f"""
            INSERT INTO submissions ({_COLUMNS})
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                status = excluded.status,
                matched_with = excluded.matched_with
            WHERE submissions.status = 'unmatched'
            """,
            (
                submission.id,
                submission.content_type.value,
                submission.content,
                json.dumps(list(submission.emotional_vector)),
                submission.session_token,
                submission.status.value,
                submission.matched_with,
                _format_ts(submission.created_at),
            ),
        )
        if cursor.rowcount == 0:
            row = conn.execute(
                "SELECT status, matched_with FROM submissions WHERE id = ?",
                (submission.id,),
            ).fetchone()
            if (row["status"], row["matched_with"]) != (submission.status.value, submission.matched_with):
                raise PairingStoreError(
                    f"Submission {submission.id} is already matched with {row['matched_with']}"
                )
        conn.executemany(
            "INSERT OR IGNORE INTO submission_keywords (keyword, submission_id) VALUES (?, ?)",
            [(keyword, submission.id) for keyword in set(submission.emotional_vector)],
        )

    def find_and_pair(self, submission: Submission) -> Optional[Submission]:
        """Atomically claim a waiting counterpart for ``submission``.

        Returns the claimed counterpart (already marked matched, pointing at
        ``submission``) or None, in which case nothing was written. The caller
        still has to ``save`` the new submission; until it does, the
        counterpart references an id that is not stored yet.
        """

        with self._transaction() as conn:
            return self._claim(conn, submission)

    def pair_or_enqueue(self, submission: Submission) -> tuple[Submission, Optional[Submission]]:
        """Claim a counterpart and persist ``submission`` in one transaction.

        Returns ``(stored_submission, counterpart_or_none)``. Both sides of a
        pair become visible together, and two overlapping submissions that
        race each other are serialized, so they cannot both end up waiting.
        """

        with self._transaction() as conn:
            counterpart = self._claim(conn, submission)
            stored = submission.paired_with(counterpart.id) if counterpart else submission
            self._upsert(conn, stored)
        return stored, counterpart

    def save(self, submission: Submission) -> None:
        """Insert a submission, or update the pairing state of an existing one.

        Raises PairingStoreError when the stored row is already matched and
        ``submission`` would change its pairing.
        """

        with self._transaction() as conn:
            self._upsert(conn, submission)

    def get(self, submission_id: str) -> Optional[Submission]:
        with self._reader() as conn:
            row = conn.execute(
                f"SELECT {_COLUMNS} FROM submissions WHERE id = ?",
                (submission_id,),
            ).fetchone()
        return _row_to_submission(row) if row else None

    def latest_for_session(self, session_token: str) -> Optional[Submission]:
        """Return the most recent submission made with ``session_token``."""

        with self._reader() as conn:
            row = conn.execute(
                f"""
                SELECT {_COLUMNS} FROM submissions
                WHERE session_token = ?
                ORDER BY created_at DESC, rowid DESC
                LIMIT 1
                """,
                (session_token,),
            ).fetchone()
        return _row_to_submission(row) if row else None

    def count_by_status(self) -> dict[str, int]:
        """Return submission counts keyed by status, for startup logging."""

        with self._reader() as conn:
            rows = conn.execute(
                "SELECT status, COUNT(*) AS total FROM submissions GROUP BY status"
            ).fetchall()
        return {row["status"]: int(row["total"]) for row in rows}
