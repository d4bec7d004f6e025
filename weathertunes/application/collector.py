import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import List, Optional, Sequence

from weathertunes.application.credentials import CredentialRefresher
from weathertunes.crosscutting.metrics import MetricsCollector
from weathertunes.domain.entities import MAX_PLAYLIST_TRACKS, SongHint, TrackCandidate
from weathertunes.domain.errors import CredentialExpired, SessionExpired, UpstreamError
from weathertunes.domain.ports import TrackSearch
from weathertunes.domain.vocabulary import hint_query


logger = logging.getLogger(__name__)


class CandidateCollector:
    """Resolves song hints to tracks with one concurrent search per hint."""

    def __init__(self,
                 search: TrackSearch,
                 refresher: CredentialRefresher,
                 max_workers: int = MAX_PLAYLIST_TRACKS,
                 metrics: Optional[MetricsCollector] = None):
        """Initialize candidate collector.

        Args:
            search: Track search capability
            refresher: Credential refresher holding the current token
            max_workers: Upper bound on concurrent search requests
            metrics: Optional session metrics collector
        """
        self.search = search
        self.refresher = refresher
        self.max_workers = max(1, max_workers)
        self.metrics = metrics

    def _record(self, name: str) -> None:
        if self.metrics:
            self.metrics.increment(name)

    def collect(self,
                hints: Sequence[SongHint],
                language_term: str = "",
                cap: int = MAX_PLAYLIST_TRACKS) -> List[TrackCandidate]:
        """Search the first `cap` hints concurrently, one best match each.

        Hints without a match are dropped. Expired-credential results are not
        retried; after the batch a single refresh is attempted and the gap is
        left for supplemental search to fill.

        Returns:
            Resolved candidates in completion order

        Raises:
            SessionExpired: A result reported expiry and the refresh failed
        """
        batch = list(hints)[:max(0, cap)]
        if not batch:
            return []

        token = self.refresher.access_token
        if not token:
            raise SessionExpired("No access token available. Please log in.")

        logger.info(f"Searching {len(batch)} hints concurrently...")

        candidates: List[TrackCandidate] = []
        expired = 0

        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(batch))) as executor:
            futures = {
                executor.submit(self.search.search, token, hint_query(hint, language_term), 1): hint
                for hint in batch
            }
            for future in as_completed(futures):
                hint = futures[future]
                self._record('hints_searched')
                try:
                    results = future.result()
                except CredentialExpired:
                    expired += 1
                    self._record('expired_in_batch_count')
                    continue
                except UpstreamError as e:
                    logger.warning(f"Search failed for '{hint.artist} - {hint.title}': {e}")
                    self._record('search_error_count')
                    continue

                if not results:
                    logger.debug(f"No match for '{hint.artist} - {hint.title}'")
                    self._record('no_match_count')
                    continue

                candidates.append(results[0])
                self._record('collected_count')

        if expired:
            logger.warning(f"{expired} hint searches hit an expired token; refreshing before supplemental search")
            self.refresher.refresh(token)

        logger.info(f"Resolved {len(candidates)}/{len(batch)} hints")
        return candidates
