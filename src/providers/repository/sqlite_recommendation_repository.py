"""SQLite-backed recommendation repository.

Persists the catalog, likes, play history, precomputed similarity tables,
taste profiles and Daily Mixes in a local SQLite database at
``data/recommendations.db``.  Uses ``aiosqlite`` for async I/O; every
``aiosqlite.Error`` surfaces as :class:`~src.utils.errors.RepositoryError`.

Similarity tables and taste profiles are computed upstream and written
through the ``set_*`` / ``import_catalog`` helpers; this module only serves
them back in the order the interface promises.
"""

from __future__ import annotations

import datetime
import json
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Callable

import aiosqlite
import structlog

from src.interfaces.recommendation_repository import IRecommendationRepository
from src.models.recommendation import (
    AudioFeatures,
    DailyMix,
    RecommendationContext,
    SongProfile,
    TimeOfDay,
    UserActivityContext,
    UserTasteProfile,
)
from src.utils.audio_similarity import rank_by_similarity
from src.utils.errors import RepositoryError

logger = structlog.get_logger(logger_name=__name__)

_DEFAULT_DB_PATH = Path("data/recommendations.db")

# Upper bound on plays read back for time-of-day patterns.
_PATTERN_HISTORY_LIMIT = 1000

_CREATE_TABLES_SQL = [
    """\
CREATE TABLE IF NOT EXISTS songs (
    song_id        INTEGER PRIMARY KEY,
    title          TEXT    NOT NULL DEFAULT '',
    artist_id      INTEGER NOT NULL,
    genre          TEXT,
    popularity     REAL    NOT NULL DEFAULT 0.0,
    release_date   TEXT,
    audio_features TEXT
);
""",
    """\
CREATE TABLE IF NOT EXISTS likes (
    user_id   INTEGER NOT NULL,
    song_id   INTEGER NOT NULL,
    liked_at  TEXT    NOT NULL,
    PRIMARY KEY (user_id, song_id)
);
""",
    """\
CREATE TABLE IF NOT EXISTS listening_history (
    id           INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id      INTEGER NOT NULL,
    song_id      INTEGER NOT NULL,
    time_of_day  TEXT    NOT NULL,
    day_of_week  TEXT    NOT NULL,
    activity     TEXT,
    mood         TEXT,
    played_at    TEXT    NOT NULL
);
""",
    """\
CREATE TABLE IF NOT EXISTS song_similarity (
    song_id         INTEGER NOT NULL,
    similar_song_id INTEGER NOT NULL,
    similarity      REAL    NOT NULL,
    PRIMARY KEY (song_id, similar_song_id)
);
""",
    """\
CREATE TABLE IF NOT EXISTS artist_similarity (
    artist_id         INTEGER NOT NULL,
    similar_artist_id INTEGER NOT NULL,
    similarity        REAL    NOT NULL,
    PRIMARY KEY (artist_id, similar_artist_id)
);
""",
    """\
CREATE TABLE IF NOT EXISTS user_similarity (
    user_id         INTEGER NOT NULL,
    similar_user_id INTEGER NOT NULL,
    similarity      REAL    NOT NULL,
    PRIMARY KEY (user_id, similar_user_id)
);
""",
    """\
CREATE TABLE IF NOT EXISTS activity_songs (
    activity  TEXT    NOT NULL,
    song_id   INTEGER NOT NULL,
    fit       REAL    NOT NULL DEFAULT 1.0,
    PRIMARY KEY (activity, song_id)
);
""",
    """\
CREATE TABLE IF NOT EXISTS taste_profiles (
    user_id     INTEGER PRIMARY KEY,
    profile     TEXT    NOT NULL,
    updated_at  TEXT    NOT NULL
);
""",
    """\
CREATE TABLE IF NOT EXISTS daily_mixes (
    mix_id      TEXT    PRIMARY KEY,
    user_id     INTEGER NOT NULL,
    payload     TEXT    NOT NULL,
    expires_at  TEXT    NOT NULL
);
""",
]

_CREATE_INDICES_SQL = [
    "CREATE INDEX IF NOT EXISTS idx_songs_genre ON songs(genre, popularity);",
    "CREATE INDEX IF NOT EXISTS idx_songs_artist ON songs(artist_id, popularity);",
    "CREATE INDEX IF NOT EXISTS idx_songs_release ON songs(release_date);",
    "CREATE INDEX IF NOT EXISTS idx_history_user ON listening_history(user_id, played_at);",
    "CREATE INDEX IF NOT EXISTS idx_history_played ON listening_history(played_at);",
    "CREATE INDEX IF NOT EXISTS idx_daily_mixes_user ON daily_mixes(user_id);",
]

_UPSERT_SONG_SQL = """\
INSERT OR REPLACE INTO songs
    (song_id, title, artist_id, genre, popularity, release_date, audio_features)
VALUES (?, ?, ?, ?, ?, ?, ?);
"""

_SELECT_SONG_SQL = """\
SELECT song_id, title, artist_id, genre, popularity, audio_features
FROM songs
WHERE song_id = ?;
"""

_INSERT_LIKE_SQL = """\
INSERT OR REPLACE INTO likes (user_id, song_id, liked_at)
VALUES (?, ?, ?);
"""

_INSERT_PLAY_SQL = """\
INSERT INTO listening_history
    (user_id, song_id, time_of_day, day_of_week, activity, mood, played_at)
VALUES (?, ?, ?, ?, ?, ?, ?);
"""

_SELECT_PATTERNS_SQL = """\
SELECT time_of_day, song_id
FROM listening_history
WHERE user_id = ?
ORDER BY played_at DESC, id DESC
LIMIT ?;
"""

_SELECT_SIMILAR_SONGS_SQL = """\
SELECT similar_song_id AS other_id, similarity
FROM song_similarity
WHERE song_id = ?
ORDER BY similarity DESC, similar_song_id
LIMIT ?;
"""

_SELECT_SIMILAR_ARTISTS_SQL = """\
SELECT similar_artist_id AS other_id, similarity
FROM artist_similarity
WHERE artist_id = ?
ORDER BY similarity DESC, similar_artist_id
LIMIT ?;
"""

_SELECT_SIMILAR_USERS_SQL = """\
SELECT similar_user_id AS other_id, similarity
FROM user_similarity
WHERE user_id = ? AND similar_user_id != user_id
ORDER BY similarity DESC, similar_user_id
LIMIT ?;
"""

_SELECT_LIKED_BY_USERS_SQL = """\
SELECT l.song_id
FROM likes l
WHERE l.user_id IN ({placeholders})
  AND l.song_id NOT IN (SELECT song_id FROM likes WHERE user_id = ?)
ORDER BY l.liked_at DESC, l.song_id
LIMIT ?;
"""

_SELECT_TRENDING_SQL = """\
SELECT song_id, COUNT(*) AS plays
FROM listening_history
WHERE played_at >= ?
GROUP BY song_id
ORDER BY plays DESC, song_id
LIMIT ?;
"""

_SELECT_POPULAR_IN_GENRE_SQL = """\
SELECT song_id
FROM songs
WHERE genre = ?
ORDER BY popularity DESC, song_id
LIMIT ?;
"""

_SELECT_NEW_RELEASES_SQL = """\
SELECT song_id
FROM songs
WHERE release_date IS NOT NULL AND release_date >= ?
ORDER BY release_date DESC, song_id
LIMIT ?;
"""

_SELECT_AUDIO_FEATURES_SQL = "SELECT audio_features FROM songs WHERE song_id = ?;"

_SELECT_ALL_AUDIO_FEATURES_SQL = """\
SELECT song_id, audio_features
FROM songs
WHERE audio_features IS NOT NULL;
"""

_SELECT_ACTIVITY_SONGS_SQL = """\
SELECT song_id
FROM activity_songs
WHERE activity = ?
ORDER BY fit DESC, song_id
LIMIT ?;
"""

_SELECT_SONGS_BY_ARTIST_SQL = """\
SELECT song_id
FROM songs
WHERE artist_id = ?
ORDER BY popularity DESC, song_id
LIMIT ?;
"""

_UPSERT_PROFILE_SQL = """\
INSERT OR REPLACE INTO taste_profiles (user_id, profile, updated_at)
VALUES (?, ?, ?);
"""

_SELECT_PROFILE_SQL = "SELECT profile FROM taste_profiles WHERE user_id = ?;"

_UPSERT_DAILY_MIX_SQL = """\
INSERT OR REPLACE INTO daily_mixes (mix_id, user_id, payload, expires_at)
VALUES (?, ?, ?, ?);
"""

_SELECT_DAILY_MIXES_SQL = """\
SELECT payload
FROM daily_mixes
WHERE user_id = ?
ORDER BY mix_id;
"""


def _timestamp(value: datetime.datetime) -> str:
    return value.isoformat(timespec="seconds")


class SQLiteRecommendationRepository(IRecommendationRepository):
    """SQLite-backed recommendation data access.

    Parameters
    ----------
    db_path:
        Database file; parent directories are created on ``initialize``.
    clock:
        Returns "now"; trending and new-release windows are measured from it.
    """

    def __init__(
        self,
        db_path: str | Path = _DEFAULT_DB_PATH,
        clock: Callable[[], datetime.datetime] = datetime.datetime.now,
    ) -> None:
        self._db_path = Path(db_path)
        self._clock = clock

    @asynccontextmanager
    async def _connect(self) -> AsyncIterator[aiosqlite.Connection]:
        try:
            async with aiosqlite.connect(str(self._db_path)) as db:
                db.row_factory = aiosqlite.Row
                yield db
        except aiosqlite.Error as exc:
            logger.error("sqlite_query_failed", path=str(self._db_path), error=str(exc))
            raise RepositoryError(message=str(exc), component="sqlite") from exc

    async def initialize(self) -> None:
        """Create all tables and indices if they don't exist."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        async with self._connect() as db:
            for table_sql in _CREATE_TABLES_SQL:
                await db.execute(table_sql)
            for idx_sql in _CREATE_INDICES_SQL:
                await db.execute(idx_sql)
            await db.commit()
        logger.info("recommendation_db_initialized", path=str(self._db_path))

    # ------------------------------------------------------------------
    # Write helpers (catalog loading, upstream batch jobs, tests)
    # ------------------------------------------------------------------

    async def add_song(
        self,
        song: SongProfile,
        release_date: datetime.date | None = None,
    ) -> None:
        features = song.audio_features.model_dump_json() if song.audio_features else None
        async with self._connect() as db:
            await db.execute(
                _UPSERT_SONG_SQL,
                (
                    song.song_id,
                    song.title,
                    song.artist_id,
                    song.genre,
                    song.popularity,
                    release_date.isoformat() if release_date else None,
                    features,
                ),
            )
            await db.commit()

    async def add_like(
        self,
        user_id: int,
        song_id: int,
        liked_at: datetime.datetime | None = None,
    ) -> None:
        async with self._connect() as db:
            await db.execute(
                _INSERT_LIKE_SQL,
                (user_id, song_id, _timestamp(liked_at or self._clock())),
            )
            await db.commit()

    async def record_play(
        self,
        user_id: int,
        song_id: int,
        context: RecommendationContext,
        played_at: datetime.datetime | None = None,
    ) -> None:
        """Append one play to the listening history."""
        async with self._connect() as db:
            await db.execute(
                _INSERT_PLAY_SQL,
                (
                    user_id,
                    song_id,
                    context.time_of_day.value,
                    context.day_of_week.value,
                    context.activity.value if context.activity else None,
                    context.mood.value if context.mood else None,
                    _timestamp(played_at or self._clock()),
                ),
            )
            await db.commit()

    async def set_song_similarity(
        self, song_id: int, similar_song_id: int, similarity: float
    ) -> None:
        await self._upsert_pair(
            "song_similarity", "song_id", "similar_song_id",
            song_id, similar_song_id, similarity,
        )

    async def set_artist_similarity(
        self, artist_id: int, similar_artist_id: int, similarity: float
    ) -> None:
        await self._upsert_pair(
            "artist_similarity", "artist_id", "similar_artist_id",
            artist_id, similar_artist_id, similarity,
        )

    async def set_user_similarity(
        self, user_id: int, similar_user_id: int, similarity: float
    ) -> None:
        await self._upsert_pair(
            "user_similarity", "user_id", "similar_user_id",
            user_id, similar_user_id, similarity,
        )

    async def _upsert_pair(
        self,
        table: str,
        left: str,
        right: str,
        left_id: int,
        right_id: int,
        similarity: float,
    ) -> None:
        # Table and column names come from fixed identifiers, never user input.
        query = (
            f"INSERT OR REPLACE INTO {table} ({left}, {right}, similarity) "  # noqa: S608
            "VALUES (?, ?, ?);"
        )
        async with self._connect() as db:
            await db.execute(query, (left_id, right_id, similarity))
            await db.commit()

    async def add_activity_song(
        self,
        activity: UserActivityContext,
        song_id: int,
        fit: float = 1.0,
    ) -> None:
        async with self._connect() as db:
            await db.execute(
                "INSERT OR REPLACE INTO activity_songs (activity, song_id, fit) VALUES (?, ?, ?);",
                (activity.value, song_id, fit),
            )
            await db.commit()

    async def import_catalog(self, payload: dict[str, Any]) -> dict[str, int]:
        """Bulk-load a catalog document.

        The document may hold any of the keys ``songs``, ``likes``, ``plays``,
        ``song_similarity``, ``artist_similarity``, ``user_similarity``,
        ``activity_songs`` and ``taste_profiles``; each is a list of objects
        whose fields mirror the table columns.  Returns the number of rows
        loaded per key.
        """
        now = self._clock()
        counts: dict[str, int] = {}

        song_rows = []
        for item in payload.get("songs", []):
            song = SongProfile.model_validate(item)
            features = song.audio_features.model_dump_json() if song.audio_features else None
            song_rows.append((
                song.song_id, song.title, song.artist_id, song.genre,
                song.popularity, item.get("release_date"), features,
            ))

        like_rows = [
            (item["user_id"], item["song_id"], item.get("liked_at") or _timestamp(now))
            for item in payload.get("likes", [])
        ]

        play_rows = []
        for item in payload.get("plays", []):
            played_at = (
                datetime.datetime.fromisoformat(item["played_at"])
                if item.get("played_at") else now
            )
            context = RecommendationContext.now(
                activity=item.get("activity"), mood=item.get("mood"), at=played_at,
            )
            play_rows.append((
                item["user_id"], item["song_id"], context.time_of_day.value,
                context.day_of_week.value,
                context.activity.value if context.activity else None,
                context.mood.value if context.mood else None,
                _timestamp(played_at),
            ))

        pair_tables = {
            "song_similarity": ("song_id", "similar_song_id"),
            "artist_similarity": ("artist_id", "similar_artist_id"),
            "user_similarity": ("user_id", "similar_user_id"),
        }

        async with self._connect() as db:
            await db.executemany(_UPSERT_SONG_SQL, song_rows)
            counts["songs"] = len(song_rows)
            await db.executemany(_INSERT_LIKE_SQL, like_rows)
            counts["likes"] = len(like_rows)
            await db.executemany(_INSERT_PLAY_SQL, play_rows)
            counts["plays"] = len(play_rows)

            for table, (left, right) in pair_tables.items():
                rows = [
                    (item[left], item[right], float(item["similarity"]))
                    for item in payload.get(table, [])
                ]
                await db.executemany(
                    f"INSERT OR REPLACE INTO {table} ({left}, {right}, similarity) "  # noqa: S608
                    "VALUES (?, ?, ?);",
                    rows,
                )
                counts[table] = len(rows)

            activity_rows = [
                (
                    UserActivityContext(item["activity"]).value,
                    item["song_id"],
                    float(item.get("fit", 1.0)),
                )
                for item in payload.get("activity_songs", [])
            ]
            await db.executemany(
                "INSERT OR REPLACE INTO activity_songs (activity, song_id, fit) VALUES (?, ?, ?);",
                activity_rows,
            )
            counts["activity_songs"] = len(activity_rows)

            profile_rows = []
            for item in payload.get("taste_profiles", []):
                profile = UserTasteProfile.model_validate(item)
                profile_rows.append(
                    (profile.user_id, profile.model_dump_json(), _timestamp(profile.last_updated))
                )
            await db.executemany(_UPSERT_PROFILE_SQL, profile_rows)
            counts["taste_profiles"] = len(profile_rows)

            await db.commit()

        logger.info("catalog_imported", path=str(self._db_path), **counts)
        return counts

    # ------------------------------------------------------------------
    # IRecommendationRepository implementation
    # ------------------------------------------------------------------

    async def get_user_taste_profile(self, user_id: int) -> UserTasteProfile | None:
        async with self._connect() as db:
            cursor = await db.execute(_SELECT_PROFILE_SQL, (user_id,))
            row = await cursor.fetchone()
        if row is None:
            return None
        return UserTasteProfile.model_validate_json(row["profile"])

    async def update_user_taste_profile(self, profile: UserTasteProfile) -> None:
        async with self._connect() as db:
            await db.execute(
                _UPSERT_PROFILE_SQL,
                (profile.user_id, profile.model_dump_json(), _timestamp(self._clock())),
            )
            await db.commit()
        logger.debug("taste_profile_stored", user_id=profile.user_id)

    async def get_similar_songs(self, song_id: int, limit: int = 10) -> list[tuple[int, float]]:
        return await self._fetch_pairs(_SELECT_SIMILAR_SONGS_SQL, song_id, limit)

    async def get_similar_artists(
        self, artist_id: int, limit: int = 10
    ) -> list[tuple[int, float]]:
        return await self._fetch_pairs(_SELECT_SIMILAR_ARTISTS_SQL, artist_id, limit)

    async def get_users_with_similar_taste(
        self, user_id: int, limit: int = 50
    ) -> list[tuple[int, float]]:
        return await self._fetch_pairs(_SELECT_SIMILAR_USERS_SQL, user_id, limit)

    async def _fetch_pairs(self, query: str, key: int, limit: int) -> list[tuple[int, float]]:
        async with self._connect() as db:
            cursor = await db.execute(query, (key, limit))
            rows = await cursor.fetchall()
        return [(row["other_id"], float(row["similarity"])) for row in rows]

    async def get_songs_liked_by_similar_users(
        self,
        user_id: int,
        similar_users: list[int],
        limit: int = 100,
    ) -> list[int]:
        if not similar_users:
            return []
        placeholders = ", ".join("?" for _ in similar_users)
        query = _SELECT_LIKED_BY_USERS_SQL.format(placeholders=placeholders)
        async with self._connect() as db:
            cursor = await db.execute(query, [*similar_users, user_id, limit])
            rows = await cursor.fetchall()
        return [row["song_id"] for row in rows]

    async def get_user_listening_patterns(self, user_id: int) -> dict[TimeOfDay, list[int]]:
        async with self._connect() as db:
            cursor = await db.execute(_SELECT_PATTERNS_SQL, (user_id, _PATTERN_HISTORY_LIMIT))
            rows = await cursor.fetchall()

        patterns: dict[TimeOfDay, list[int]] = {}
        for row in rows:
            patterns.setdefault(TimeOfDay(row["time_of_day"]), []).append(row["song_id"])
        return patterns

    async def store_listening_context(
        self,
        user_id: int,
        song_id: int,
        context: RecommendationContext,
    ) -> None:
        await self.record_play(user_id, song_id, context)

    async def get_daily_mixes(self, user_id: int) -> list[DailyMix]:
        async with self._connect() as db:
            cursor = await db.execute(_SELECT_DAILY_MIXES_SQL, (user_id,))
            rows = await cursor.fetchall()
        return [DailyMix.model_validate_json(row["payload"]) for row in rows]

    async def store_daily_mix(self, mix: DailyMix) -> None:
        async with self._connect() as db:
            await db.execute(
                _UPSERT_DAILY_MIX_SQL,
                (mix.id, mix.user_id, mix.model_dump_json(), _timestamp(mix.expires_at)),
            )
            await db.commit()
        logger.debug("daily_mix_stored", mix_id=mix.id, songs=len(mix.song_ids))

    async def get_trending_songs(
        self,
        limit: int = 50,
        time_window_hours: int = 24,
    ) -> list[tuple[int, float]]:
        cutoff = self._clock() - datetime.timedelta(hours=time_window_hours)
        async with self._connect() as db:
            cursor = await db.execute(_SELECT_TRENDING_SQL, (_timestamp(cutoff), limit))
            rows = await cursor.fetchall()
        if not rows:
            return []
        top = rows[0]["plays"]
        return [(row["song_id"], row["plays"] / top) for row in rows]

    async def get_popular_in_genre(self, genre: str, limit: int = 50) -> list[int]:
        return await self._fetch_ids(_SELECT_POPULAR_IN_GENRE_SQL, (genre, limit))

    async def get_new_releases(self, limit: int = 50, days_back: int = 7) -> list[int]:
        cutoff = (self._clock() - datetime.timedelta(days=days_back)).date()
        return await self._fetch_ids(_SELECT_NEW_RELEASES_SQL, (cutoff.isoformat(), limit))

    async def get_song_audio_features(self, song_id: int) -> AudioFeatures | None:
        async with self._connect() as db:
            cursor = await db.execute(_SELECT_AUDIO_FEATURES_SQL, (song_id,))
            row = await cursor.fetchone()
        if row is None or row["audio_features"] is None:
            return None
        return AudioFeatures.model_validate_json(row["audio_features"])

    async def get_songs_with_similar_audio_features(
        self,
        features: AudioFeatures,
        limit: int = 50,
    ) -> list[int]:
        async with self._connect() as db:
            cursor = await db.execute(_SELECT_ALL_AUDIO_FEATURES_SQL)
            rows = await cursor.fetchall()

        candidates = []
        for row in rows:
            if row["song_id"] == features.song_id:
                continue
            data = json.loads(row["audio_features"])
            data["song_id"] = row["song_id"]
            candidates.append(AudioFeatures.model_validate(data))

        return [song_id for song_id, _ in rank_by_similarity(features, candidates, limit)]

    async def get_songs_for_activity(
        self,
        activity: UserActivityContext,
        limit: int = 50,
    ) -> list[int]:
        return await self._fetch_ids(_SELECT_ACTIVITY_SONGS_SQL, (activity.value, limit))

    async def get_songs_by_artist(self, artist_id: int, limit: int = 10) -> list[int]:
        return await self._fetch_ids(_SELECT_SONGS_BY_ARTIST_SQL, (artist_id, limit))

    async def _fetch_ids(self, query: str, params: tuple[Any, ...]) -> list[int]:
        async with self._connect() as db:
            cursor = await db.execute(query, params)
            rows = await cursor.fetchall()
        return [row["song_id"] for row in rows]

    async def get_song(self, song_id: int) -> SongProfile | None:
        async with self._connect() as db:
            cursor = await db.execute(_SELECT_SONG_SQL, (song_id,))
            row = await cursor.fetchone()
        if row is None:
            return None
        features = None
        if row["audio_features"] is not None:
            data = json.loads(row["audio_features"])
            data["song_id"] = row["song_id"]
            features = AudioFeatures.model_validate(data)
        return SongProfile(
            song_id=row["song_id"],
            title=row["title"],
            artist_id=row["artist_id"],
            genre=row["genre"],
            popularity=row["popularity"],
            audio_features=features,
        )
