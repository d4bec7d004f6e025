import logging
import math
from typing import List, Optional, Sequence

from weathertunes.application.credentials import CredentialRefresher
from weathertunes.crosscutting.metrics import MetricsCollector
from weathertunes.domain.entities import MAX_PLAYLIST_TRACKS, TrackCandidate
from weathertunes.domain.errors import UpstreamError
from weathertunes.domain.ports import TrackSearch
from weathertunes.domain.vocabulary import supplemental_queries


logger = logging.getLogger(__name__)

TRACKS_PER_QUERY_ESTIMATE = 5
MAX_RESULTS_PER_QUERY = 20


class SupplementalQueryPlanner:
    """Fills the gap left by hint resolution with genre/mood searches."""

    def __init__(self,
                 search: TrackSearch,
                 refresher: CredentialRefresher,
                 target: int = MAX_PLAYLIST_TRACKS,
                 metrics: Optional[MetricsCollector] = None):
        self.search = search
        self.refresher = refresher
        self.target = target
        self.metrics = metrics

    def needed(self, collected_count: int) -> int:
        return max(0, self.target - collected_count)

    def plan(self, mood: str, genres: Sequence[str], language_term: str, collected_count: int) -> List[str]:
        """Queries to run for the current shortfall, in execution order."""
        needed = self.needed(collected_count)
        if needed == 0:
            return []
        query_count = math.ceil(needed / TRACKS_PER_QUERY_ESTIMATE)
        return supplemental_queries(mood, genres, language_term)[:query_count]

    def supplement(self,
                   mood: str,
                   genres: Sequence[str],
                   language_term: str,
                   collected_count: int) -> List[TrackCandidate]:
        """Run the planned queries one after another.

        Each query gets its own refresh-and-retry. A failed query is logged
        and skipped; SessionExpired propagates.
        """
        needed = self.needed(collected_count)
        queries = self.plan(mood, genres, language_term, collected_count)
        if not queries:
            return []

        limit = min(MAX_RESULTS_PER_QUERY, needed)
        logger.info(f"Supplementing {needed} missing tracks with {len(queries)} queries")

        found: List[TrackCandidate] = []
        for query in queries:
            if self.metrics:
                self.metrics.increment('supplemental_query_count')
            try:
                results = self.refresher.call_with_refresh(
                    lambda token, q=query: self.search.search(token, q, limit)
                )
            except UpstreamError as e:
                logger.warning(f"Supplemental search '{query}' failed: {e}")
                continue

            logger.debug(f"Supplemental search '{query}' returned {len(results)} tracks")
            found.extend(results)

        if self.metrics:
            self.metrics.increment('supplemental_candidate_count', len(found))
        return found
