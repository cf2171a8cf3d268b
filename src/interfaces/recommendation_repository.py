"""Abstract base class for recommendation data access.

Defines the contract the strategies, the engine, and the learning service
use to read taste profiles, similarity tables, popularity pools and audio
features, and to persist Daily Mixes.  Correctness of the engine depends
only on the documented return semantics below ("similarity-ranked",
"already time-windowed"), never on how a backend stores its data.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from src.models.recommendation import (
    AudioFeatures,
    DailyMix,
    RecommendationContext,
    SongProfile,
    TimeOfDay,
    UserActivityContext,
    UserTasteProfile,
)


# Concrete implementation: SQLiteRecommendationRepository
# (src/providers/repository/).  Tests inject MagicMock(spec=...) instead.
class IRecommendationRepository(ABC):
    """Contract for recommendation data access.

    All operations are async.  Implementations raise
    :class:`~src.utils.errors.RepositoryError` when the backing store
    cannot serve a query; "nothing found" is an empty list or ``None``.
    """

    # -- Taste profiles ------------------------------------------------

    @abstractmethod
    async def get_user_taste_profile(self, user_id: int) -> UserTasteProfile | None:
        """Return the persisted taste profile, or ``None`` if never computed."""

    @abstractmethod
    async def update_user_taste_profile(self, profile: UserTasteProfile) -> None:
        """Insert or replace the taste profile for ``profile.user_id``."""

    # -- Similarity ----------------------------------------------------

    @abstractmethod
    async def get_similar_songs(self, song_id: int, limit: int = 10) -> list[tuple[int, float]]:
        """Return ``(song_id, similarity)`` pairs, most similar first.

        Parameters
        ----------
        song_id:
            The reference song.
        limit:
            Maximum number of pairs to return.
        """

    @abstractmethod
    async def get_similar_artists(
        self, artist_id: int, limit: int = 10
    ) -> list[tuple[int, float]]:
        """Return ``(artist_id, similarity)`` pairs, most similar first."""

    @abstractmethod
    async def get_users_with_similar_taste(
        self, user_id: int, limit: int = 50
    ) -> list[tuple[int, float]]:
        """Return ``(user_id, similarity)`` pairs, most similar first.

        The requesting user is never included.
        """

    @abstractmethod
    async def get_songs_liked_by_similar_users(
        self,
        user_id: int,
        similar_users: list[int],
        limit: int = 100,
    ) -> list[int]:
        """Return song IDs liked by any of *similar_users*.

        A song appears once per similar user who liked it, so the list may
        contain duplicates; callers count occurrences.  Songs the requesting
        user already liked are omitted.
        """

    # -- Listening patterns and context ----------------------------------

    @abstractmethod
    async def get_user_listening_patterns(self, user_id: int) -> dict[TimeOfDay, list[int]]:
        """Return the user's play history bucketed by time of day.

        Each list holds one entry per play (most recent first), so a song
        played three times in the evening appears three times under
        ``TimeOfDay.EVENING``.
        """

    @abstractmethod
    async def store_listening_context(
        self,
        user_id: int,
        song_id: int,
        context: RecommendationContext,
    ) -> None:
        """Record a play of *song_id* in the given listening context."""

    # -- Daily mixes ---------------------------------------------------

    @abstractmethod
    async def get_daily_mixes(self, user_id: int) -> list[DailyMix]:
        """Return every stored mix for the user, expired ones included."""

    @abstractmethod
    async def store_daily_mix(self, mix: DailyMix) -> None:
        """Insert or overwrite the mix stored under ``mix.id``."""

    # -- Popularity pools ----------------------------------------------

    @abstractmethod
    async def get_trending_songs(
        self,
        limit: int = 50,
        time_window_hours: int = 24,
    ) -> list[tuple[int, float]]:
        """Return ``(song_id, trending_score)`` pairs for the window.

        Scores are normalised to [0, 1] with the most-played song at 1.0.
        """

    @abstractmethod
    async def get_popular_in_genre(self, genre: str, limit: int = 50) -> list[int]:
        """Return the most popular song IDs in *genre*, most popular first."""

    @abstractmethod
    async def get_new_releases(self, limit: int = 50, days_back: int = 7) -> list[int]:
        """Return song IDs released within *days_back* days, newest first."""

    # -- Audio features ------------------------------------------------

    @abstractmethod
    async def get_song_audio_features(self, song_id: int) -> AudioFeatures | None:
        """Return precomputed audio features, or ``None`` if not analysed."""

    @abstractmethod
    async def get_songs_with_similar_audio_features(
        self,
        features: AudioFeatures,
        limit: int = 50,
    ) -> list[int]:
        """Return song IDs whose audio features are closest to *features*."""

    # -- Catalog -------------------------------------------------------

    @abstractmethod
    async def get_songs_for_activity(
        self,
        activity: UserActivityContext,
        limit: int = 50,
    ) -> list[int]:
        """Return song IDs curated for *activity*, best fit first."""

    @abstractmethod
    async def get_songs_by_artist(self, artist_id: int, limit: int = 10) -> list[int]:
        """Return the artist's song IDs, most popular first."""

    @abstractmethod
    async def get_song(self, song_id: int) -> SongProfile | None:
        """Return catalog facts for *song_id*, or ``None`` if unknown."""
