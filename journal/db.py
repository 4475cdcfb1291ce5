from __future__ import annotations

import os
import time
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterator, Optional, Sequence
from uuid import uuid4

import psycopg
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb

from journal.errors import NotFoundError, StoreError


MIGRATIONS_DIR = Path(__file__).resolve().parent / "migrations"


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class Database:
    dsn: str

    def connect(self):
        return psycopg.connect(self.dsn, row_factory=dict_row, autocommit=True)

    @contextmanager
    def _cursor(self) -> Iterator[psycopg.Cursor]:
        try:
            with self.connect() as conn:
                with conn.cursor() as cur:
                    yield cur
        except psycopg.Error as exc:
            raise StoreError(str(exc)) from exc

    def healthcheck(self) -> None:
        with self._cursor() as cur:
            cur.execute("select 1;")
            cur.fetchone()

    def migrate(self) -> list[str]:
        """Apply pending migrations in name order and return the ids applied."""
        migrations = sorted(MIGRATIONS_DIR.glob("*.sql"))
        if not migrations:
            return []
        applied_now: list[str] = []
        with self._cursor() as cur:
            cur.execute(
                """
                create table if not exists schema_migrations (
                    id text primary key,
                    applied_at timestamptz not null default now()
                );
                """
            )
            cur.execute("select id from schema_migrations order by id;")
            applied = {row["id"] for row in cur.fetchall()}
            for migration in migrations:
                migration_id = migration.name
                if migration_id in applied:
                    continue
                sql = migration.read_text(encoding="utf-8")
                cur.execute(sql)
                cur.execute(
                    "insert into schema_migrations (id) values (%s);",
                    (migration_id,),
                )
                applied_now.append(migration_id)
        return applied_now

    def list_tables(self) -> list[str]:
        with self._cursor() as cur:
            cur.execute(
                """
                select table_name
                from information_schema.tables
                where table_schema = current_schema()
                order by table_name;
                """
            )
            return [row["table_name"] for row in cur.fetchall()]

    # =========================================================================
    # Audios
    # =========================================================================

    def insert_audio(self, payload: Dict[str, Any], *, created_at_ms: Optional[int] = None) -> str:
        audio_id = str(uuid4())
        row = {
            "id": audio_id,
            "member": payload["member"],
            "day": payload["day"],
            "month": payload["month"],
            "year": payload["year"],
            "file_path": payload["file_path"],
            "timestamp_ms": created_at_ms if created_at_ms is not None else _now_ms(),
            "duration": payload.get("duration"),
        }
        with self._cursor() as cur:
            cur.execute(
                """
                insert into audios (
                    id, member, day, month, year, file_path, timestamp_ms, duration, count
                ) values (
                    %(id)s, %(member)s, %(day)s, %(month)s, %(year)s,
                    %(file_path)s, %(timestamp_ms)s, %(duration)s, 1
                );
                """,
                row,
            )
        return audio_id

    def fetch_audios_by_date(self, year: int, month: int, day: int) -> list[Dict[str, Any]]:
        with self._cursor() as cur:
            cur.execute(
                """
                select * from audios
                where year = %s and month = %s and day = %s
                order by timestamp_ms asc;
                """,
                (year, month, day),
            )
            return cur.fetchall()

    def delete_audio(self, audio_id: str) -> str:
        """Delete one audio row and return its blob name."""
        with self._cursor() as cur:
            cur.execute("delete from audios where id = %s returning file_path;", (audio_id,))
            row = cur.fetchone()
        if not row:
            raise NotFoundError(f"Audio {audio_id} not found.")
        return row["file_path"]

    def increment_audio_count(self, audio_id: str) -> None:
        with self._cursor() as cur:
            cur.execute("update audios set count = count + 1 where id = %s;", (audio_id,))
            updated = cur.rowcount
        if updated == 0:
            raise NotFoundError(f"Audio {audio_id} not found.")

    def fetch_audios_older_than(self, cutoff_ms: int) -> list[Dict[str, Any]]:
        with self._cursor() as cur:
            cur.execute(
                "select id, file_path from audios where timestamp_ms < %s order by timestamp_ms;",
                (cutoff_ms,),
            )
            return cur.fetchall()

    def delete_audios_by_ids(self, audio_ids: Sequence[str]) -> int:
        ids = list(audio_ids)
        if not ids:
            return 0
        with self._cursor() as cur:
            cur.execute("delete from audios where id = any(%s);", (ids,))
            return cur.rowcount

    # =========================================================================
    # Settings
    # =========================================================================

    def fetch_settings(self) -> Optional[Dict[str, Any]]:
        with self._cursor() as cur:
            cur.execute("select * from settings where id = 1;")
            return cur.fetchone()

    def save_settings(self, payload: Dict[str, Any]) -> None:
        with self._cursor() as cur:
            cur.execute(
                """
                insert into settings (id, global_book_title, members, last_login_mode)
                values (1, %(global_book_title)s, %(members)s, %(last_login_mode)s)
                on conflict (id) do update set
                    global_book_title = excluded.global_book_title,
                    members = excluded.members,
                    last_login_mode = excluded.last_login_mode;
                """,
                {
                    "global_book_title": payload.get("global_book_title"),
                    "members": Jsonb(list(payload.get("members") or [])),
                    "last_login_mode": payload.get("last_login_mode"),
                },
            )

    # =========================================================================
    # Daily readings
    # =========================================================================

    def upsert_daily_reading(self, date_key: str, payload: Dict[str, Any]) -> None:
        with self._cursor() as cur:
            cur.execute(
                """
                insert into daily_readings (date_key, book_title, start_date, end_date)
                values (%(date_key)s, %(book_title)s, %(start_date)s, %(end_date)s)
                on conflict (date_key) do update set
                    book_title = excluded.book_title,
                    start_date = excluded.start_date,
                    end_date = excluded.end_date;
                """,
                {
                    "date_key": date_key,
                    "book_title": payload.get("book_title"),
                    "start_date": payload.get("start_date"),
                    "end_date": payload.get("end_date"),
                },
            )

    def fetch_daily_reading(self, date_key: str) -> Optional[Dict[str, Any]]:
        with self._cursor() as cur:
            cur.execute(
                "select book_title, start_date, end_date from daily_readings where date_key = %s;",
                (date_key,),
            )
            return cur.fetchone()


def get_database() -> Database:
    dsn = os.getenv("DATABASE_URL")
    if not dsn:
        raise RuntimeError("DATABASE_URL must be set for database access.")
    return Database(dsn=dsn)
