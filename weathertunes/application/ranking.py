import logging
import math
from typing import Dict, Iterable, List

from weathertunes.domain.entities import MAX_PLAYLIST_TRACKS, RankedPlaylist, TrackCandidate
from weathertunes.domain.errors import EmptyResult


logger = logging.getLogger(__name__)

POPULAR_SHARE = 0.7
POPULARITY_THRESHOLD = 20


def deduplicate(candidate_lists: Iterable[Iterable[TrackCandidate]]) -> List[TrackCandidate]:
    """Collapse candidates by uri. A later duplicate replaces the earlier one
    in place, so first-seen order is kept."""
    unique: Dict[str, TrackCandidate] = {}
    for candidates in candidate_lists:
        for candidate in candidates:
            unique[candidate.uri] = candidate
    return list(unique.values())


def is_popular(candidate: TrackCandidate) -> bool:
    return (candidate.popularity or 0) > POPULARITY_THRESHOLD


def merge(candidate_lists: Iterable[Iterable[TrackCandidate]],
          size: int = MAX_PLAYLIST_TRACKS) -> RankedPlaylist:
    """Merge candidate sources into a ranked playlist with the popularity quota.

    Up to 70% of the slots go to popular tracks (popularity > 20), the rest to
    lesser-known ones. Unfilled slots are backfilled from whatever remains,
    highest popularity first.

    Raises:
        EmptyResult: No candidates in any source
    """
    unique = deduplicate(candidate_lists)
    if not unique:
        raise EmptyResult("No tracks found. Please try again.")

    ranked = sorted(unique, key=lambda c: c.popularity or 0, reverse=True)
    popular = [c for c in ranked if is_popular(c)]
    other = [c for c in ranked if not is_popular(c)]

    popular_count = min(math.floor(size * POPULAR_SHARE), len(popular))
    variety_count = min(size - popular_count, len(other))

    selected = popular[:popular_count] + other[:variety_count]

    if len(selected) < size:
        chosen = {c.uri for c in selected}
        remaining = [c for c in ranked if c.uri not in chosen]
        selected.extend(remaining[:size - len(selected)])

    selected = selected[:size]
    logger.info(f"Ranked {len(unique)} unique candidates into {len(selected)} tracks "
                f"({popular_count} popular, {variety_count} variety)")
    return RankedPlaylist(tracks=tuple(selected))
