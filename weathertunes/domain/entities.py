from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple

MAX_PLAYLIST_TRACKS = 30


@dataclass(frozen=True)
class SongHint:
    """Artist/title pair suggested by the hint generator."""

    artist: str
    title: str


@dataclass(frozen=True)
class TrackCandidate:
    """Track resolved from a search query. Identity is the uri."""

    id: str
    name: str
    artist: str
    uri: str
    popularity: int = 0
    source_query: str = ""

    def __post_init__(self):
        if self.popularity is None or self.popularity < 0:
            object.__setattr__(self, 'popularity', 0)


@dataclass(frozen=True)
class RankedPlaylist:
    """Ordered, uri-unique selection of at most 30 tracks."""

    tracks: Tuple[TrackCandidate, ...] = ()

    def __post_init__(self):
        tracks = tuple(self.tracks)
        if len(tracks) > MAX_PLAYLIST_TRACKS:
            raise ValueError(f"Ranked playlist holds at most {MAX_PLAYLIST_TRACKS} tracks, got {len(tracks)}")
        if len({t.uri for t in tracks}) != len(tracks):
            raise ValueError("Ranked playlist contains duplicate uris")
        object.__setattr__(self, 'tracks', tracks)

    @property
    def uris(self) -> List[str]:
        return [t.uri for t in self.tracks]

    def __len__(self) -> int:
        return len(self.tracks)


@dataclass
class CredentialState:
    """Process-wide Spotify credentials. Mutated in place on refresh."""

    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    expired: bool = False

    def clear(self) -> None:
        self.access_token = None
        self.refresh_token = None
        self.expired = False


@dataclass(frozen=True)
class CreatedPlaylist:
    """Playlist successfully created on the music service."""

    id: str
    name: str
    url: str
    track_count: int = 0


@dataclass(frozen=True)
class MoodContext:
    """Mood descriptor and genres derived from the current weather."""

    type: str
    genres: Tuple[str, ...] = ()
    suggestion: str = ""

    def __post_init__(self):
        object.__setattr__(self, 'genres', tuple(self.genres or ()))


class SessionStage(Enum):
    IDLE = "idle"
    COLLECTING = "collecting"
    SUPPLEMENTING = "supplementing"
    RANKING = "ranking"
    SUBMITTING = "submitting"
    CREATED = "created"
    FAILED = "failed"


@dataclass
class AssemblySession:
    """State of one playlist assembly, passed explicitly between stages."""

    hints: List[SongHint]
    mood: MoodContext
    language: str = "english"
    language_name: str = "English"
    location_name: str = ""
    condition: str = ""
    stage: SessionStage = SessionStage.IDLE
    collected: List[TrackCandidate] = field(default_factory=list)
    supplemental: List[TrackCandidate] = field(default_factory=list)
    ranked: Optional[RankedPlaylist] = None
    created: Optional[CreatedPlaylist] = None
    failure: Optional[Exception] = None

    @property
    def is_terminal(self) -> bool:
        return self.stage in (SessionStage.CREATED, SessionStage.FAILED)
