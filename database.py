import asyncio
import json
import logging
import re
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, AsyncIterator

import aiosqlite

from errors import EditConflictError, QueryTimeoutError, RecordNotFoundError, StorageError
from models import Filters, Metadata, Movie, calculate_metadata

logger = logging.getLogger(__name__)

DB_PATH = Path("data/movies.db")
DEFAULT_TIMEOUT = 3.0

_WORD_RX = re.compile(r"[^\W_]+")

SCHEMA = """
CREATE TABLE IF NOT EXISTS movies (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    created_at  TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now')),
    title       TEXT NOT NULL,
    year        INTEGER NOT NULL CHECK (year >= 1888),
    runtime     INTEGER NOT NULL CHECK (runtime >= 0),
    genres      TEXT NOT NULL CHECK (json_array_length(genres) BETWEEN 1 AND 5),
    version     INTEGER NOT NULL DEFAULT 1
);

-- Title search index.
CREATE VIRTUAL TABLE IF NOT EXISTS movies_fts USING fts5(
    title,
    content='movies',
    content_rowid='id'
);

-- Containment lookups on genres.
CREATE TABLE IF NOT EXISTS movie_genres (
    genre     TEXT NOT NULL,
    movie_id  INTEGER NOT NULL,
    PRIMARY KEY (genre, movie_id)
) WITHOUT ROWID;

CREATE INDEX IF NOT EXISTS movie_genres_movie_id_idx ON movie_genres (movie_id);

CREATE TRIGGER IF NOT EXISTS movies_after_insert AFTER INSERT ON movies BEGIN
    INSERT INTO movies_fts (rowid, title) VALUES (new.id, new.title);
    INSERT OR IGNORE INTO movie_genres (genre, movie_id)
        SELECT value, new.id FROM json_each(new.genres);
END;

CREATE TRIGGER IF NOT EXISTS movies_after_update AFTER UPDATE ON movies BEGIN
    INSERT INTO movies_fts (movies_fts, rowid, title) VALUES ('delete', old.id, old.title);
    INSERT INTO movies_fts (rowid, title) VALUES (new.id, new.title);
    DELETE FROM movie_genres WHERE movie_id = old.id;
    INSERT OR IGNORE INTO movie_genres (genre, movie_id)
        SELECT value, new.id FROM json_each(new.genres);
END;

CREATE TRIGGER IF NOT EXISTS movies_after_delete AFTER DELETE ON movies BEGIN
    INSERT INTO movies_fts (movies_fts, rowid, title) VALUES ('delete', old.id, old.title);
    DELETE FROM movie_genres WHERE movie_id = old.id;
END;
"""


async def init_db(db_path: Path = DB_PATH) -> None:
    db_path.parent.mkdir(parents=True, exist_ok=True)
    async with aiosqlite.connect(db_path) as db:
        await db.executescript(SCHEMA)
        await db.commit()


class MovieStore:
    """The only component that issues SQL against the movies table.

    Every operation opens its own connection and runs under a deadline of
    ``timeout`` seconds. Database failures come back as ``StorageError``
    (``QueryTimeoutError`` when the deadline passed); lookups of missing rows
    raise ``RecordNotFoundError`` and lost compare-and-swap updates raise
    ``EditConflictError``. Nothing is retried here.
    """

    def __init__(self, db_path: Path = DB_PATH, timeout: float = DEFAULT_TIMEOUT) -> None:
        self.db_path = db_path
        self.timeout = timeout

    @asynccontextmanager
    async def _session(self, operation: str) -> AsyncIterator[aiosqlite.Connection]:
        try:
            # IMMEDIATE: writers take the write lock before reading, so a
            # losing update waits and then sees the new version.
            async with aiosqlite.connect(
                self.db_path, timeout=self.timeout, isolation_level="IMMEDIATE"
            ) as db:
                db.row_factory = aiosqlite.Row
                try:
                    async with asyncio.timeout(self.timeout):
                        yield db
                except (TimeoutError, asyncio.CancelledError):
                    # Abort the statement still running on the connection
                    # thread; otherwise close() waits for it to finish.
                    await db.interrupt()
                    raise
        except TimeoutError as exc:
            logger.warning("%s on movies exceeded its %ss deadline", operation, self.timeout)
            raise QueryTimeoutError(f"{operation} exceeded {self.timeout}s deadline") from exc
        except aiosqlite.Error as exc:
            logger.error("%s on movies failed: %s", operation, exc)
            raise StorageError(f"{operation} failed: {exc}") from exc

    async def insert(self, movie: Movie) -> None:
        """Store a new movie and write the assigned id, created_at and version back onto it."""
        query = """
            INSERT INTO movies (title, year, runtime, genres)
            VALUES (?, ?, ?, ?)
            RETURNING id, created_at, version
        """
        args = (movie.title, movie.year, movie.runtime, json.dumps(movie.genres or []))

        async with self._session("insert") as db:
            async with db.execute(query, args) as cursor:
                row = await cursor.fetchone()
            await db.commit()

        movie.id = row["id"]
        movie.created_at = datetime.fromisoformat(row["created_at"])
        movie.version = row["version"]

    async def get(self, movie_id: int) -> Movie:
        # AUTOINCREMENT keys start at 1.
        if movie_id < 1:
            raise RecordNotFoundError()

        query = """
            SELECT id, created_at, title, year, runtime, genres, version
            FROM movies
            WHERE id = ?
        """
        async with self._session("get") as db:
            async with db.execute(query, (movie_id,)) as cursor:
                row = await cursor.fetchone()

        if row is None:
            raise RecordNotFoundError()
        return _row_to_movie(row)

    async def update(self, movie: Movie) -> None:
        """Write the movie back only if its stored version still equals ``movie.version``.

        On success ``movie.version`` is bumped to the new stored value. If the
        row was deleted or another writer got there first, nothing is written
        and ``EditConflictError`` is raised.
        """
        query = """
            UPDATE movies
            SET title = ?, year = ?, runtime = ?, genres = ?, version = version + 1
            WHERE id = ? AND version = ?
            RETURNING version
        """
        args = (
            movie.title,
            movie.year,
            movie.runtime,
            json.dumps(movie.genres or []),
            movie.id,
            movie.version,
        )

        async with self._session("update") as db:
            async with db.execute(query, args) as cursor:
                row = await cursor.fetchone()
            await db.commit()

        if row is None:
            raise EditConflictError()
        movie.version = row["version"]

    async def delete(self, movie_id: int) -> None:
        if movie_id < 1:
            raise RecordNotFoundError()

        async with self._session("delete") as db:
            async with db.execute("DELETE FROM movies WHERE id = ?", (movie_id,)) as cursor:
                rows_affected = cursor.rowcount
            await db.commit()

        if rows_affected == 0:
            raise RecordNotFoundError()

    async def get_all(
        self, title: str, genres: list[str], filters: Filters
    ) -> tuple[list[Movie], Metadata]:
        """Return one page of movies matching the title words and containing all genres.

        An empty ``title`` or ``genres`` leaves that condition out. Rows are
        ordered by the filter's sort column with ``id`` as tie-break, and the
        metadata counts every matching row, not just this page.
        """
        order_by = f"{filters.sort_column()} {filters.sort_direction()}, id ASC"

        conditions: list[str] = []
        params: dict[str, Any] = {"limit": filters.limit(), "offset": filters.offset()}

        if title:
            terms = _WORD_RX.findall(title)
            if not terms:
                return [], Metadata()
            conditions.append("id IN (SELECT rowid FROM movies_fts WHERE movies_fts MATCH :title)")
            params["title"] = " ".join(f'"{term}"' for term in terms)

        wanted = list(dict.fromkeys(genres))
        if wanted:
            conditions.append(
                "id IN (SELECT movie_id FROM movie_genres"
                " WHERE genre IN (SELECT value FROM json_each(:genres))"
                " GROUP BY movie_id HAVING count(*) = :genre_count)"
            )
            params["genres"] = json.dumps(wanted)
            params["genre_count"] = len(wanted)

        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        query = f"""
            SELECT count(*) OVER() AS total_records,
                   id, created_at, title, year, runtime, genres, version
            FROM movies
            {where}
            ORDER BY {order_by}
            LIMIT :limit OFFSET :offset
        """

        total_records = 0
        movies: list[Movie] = []
        async with self._session("get_all") as db:
            async with db.execute(query, params) as cursor:
                async for row in cursor:
                    total_records = row["total_records"]
                    movies.append(_row_to_movie(row))

        return movies, calculate_metadata(total_records, filters.page, filters.page_size)


def _row_to_movie(row: aiosqlite.Row) -> Movie:
    return Movie(
        id=row["id"],
        created_at=datetime.fromisoformat(row["created_at"]),
        title=row["title"],
        year=row["year"],
        runtime=row["runtime"],
        genres=json.loads(row["genres"]),
        version=row["version"],
    )
