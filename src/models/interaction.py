"""Listener interaction events consumed by the real-time learning service.

Each :class:`MusicInteraction` is one thing a listener did to a song --
liked it, skipped it early, played it to the end.  The interaction type
carries a feedback strength and a polarity so the learning service can turn
it into a signed score nudge without a lookup table of its own.
"""

from __future__ import annotations

import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from src.models.recommendation import Mood, TimeOfDay, UserActivityContext


class FeedbackStrength(float, Enum):  # noqa: UP042
    """How much a single interaction should move a score."""

    VERY_WEAK = 0.01
    WEAK = 0.05
    MODERATE = 0.1
    STRONG = 0.2
    VERY_STRONG = 0.5


class InteractionType(str, Enum):  # noqa: UP042
    # Explicit feedback
    LIKED = "LIKED"
    DISLIKED = "DISLIKED"
    ADD_TO_PLAYLIST = "ADD_TO_PLAYLIST"
    REMOVE_FROM_PLAYLIST = "REMOVE_FROM_PLAYLIST"
    SHARE = "SHARE"

    # Implicit feedback
    PLAYED_FULL = "PLAYED_FULL"          # >80% played
    PLAYED_PARTIAL = "PLAYED_PARTIAL"    # 30-80% played
    SKIPPED_EARLY = "SKIPPED_EARLY"      # within the first 30 seconds
    SKIPPED_MID = "SKIPPED_MID"          # after 30 seconds
    REPEATED = "REPEATED"
    PAUSED = "PAUSED"
    RESUMED = "RESUMED"
    VOLUME_UP = "VOLUME_UP"
    VOLUME_DOWN = "VOLUME_DOWN"
    SEEK_FORWARD = "SEEK_FORWARD"
    SEEK_BACKWARD = "SEEK_BACKWARD"

    # Where the play came from
    PLAYED_IN_PLAYLIST = "PLAYED_IN_PLAYLIST"
    PLAYED_FROM_RADIO = "PLAYED_FROM_RADIO"
    PLAYED_FROM_SEARCH = "PLAYED_FROM_SEARCH"
    PLAYED_FROM_ALBUM = "PLAYED_FROM_ALBUM"

    @property
    def feedback_strength(self) -> float:
        return _FEEDBACK_STRENGTH.get(self, FeedbackStrength.VERY_WEAK).value

    @property
    def is_positive(self) -> bool:
        # Neutral interactions count as weakly positive.
        return self not in _NEGATIVE_TYPES

    @property
    def is_skip(self) -> bool:
        return self in (InteractionType.SKIPPED_EARLY, InteractionType.SKIPPED_MID)


_FEEDBACK_STRENGTH: dict[InteractionType, FeedbackStrength] = {
    InteractionType.LIKED: FeedbackStrength.VERY_STRONG,
    InteractionType.DISLIKED: FeedbackStrength.VERY_STRONG,
    InteractionType.ADD_TO_PLAYLIST: FeedbackStrength.VERY_STRONG,
    InteractionType.REMOVE_FROM_PLAYLIST: FeedbackStrength.STRONG,
    InteractionType.SHARE: FeedbackStrength.STRONG,
    InteractionType.REPEATED: FeedbackStrength.STRONG,
    InteractionType.PLAYED_FULL: FeedbackStrength.MODERATE,
    InteractionType.PLAYED_PARTIAL: FeedbackStrength.WEAK,
    InteractionType.SKIPPED_EARLY: FeedbackStrength.STRONG,
    InteractionType.SKIPPED_MID: FeedbackStrength.MODERATE,
    InteractionType.VOLUME_UP: FeedbackStrength.WEAK,
    InteractionType.VOLUME_DOWN: FeedbackStrength.VERY_WEAK,
}

_NEGATIVE_TYPES = frozenset({
    InteractionType.DISLIKED,
    InteractionType.REMOVE_FROM_PLAYLIST,
    InteractionType.SKIPPED_EARLY,
    InteractionType.VOLUME_DOWN,
})


class InteractionContext(BaseModel):
    """Where and how the interaction happened."""

    model_config = ConfigDict(frozen=True)

    session_id: str
    playlist_id: int | None = None
    # Position in the song when the interaction occurred (0-1).
    position: float | None = None
    play_duration_seconds: float | None = None
    device_type: str | None = None
    time_of_day: TimeOfDay | None = None
    activity: UserActivityContext | None = None
    mood: Mood | None = None


class MusicInteraction(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: int
    song_id: int
    type: InteractionType
    timestamp: datetime.datetime = Field(default_factory=datetime.datetime.now)
    context: InteractionContext | None = None
