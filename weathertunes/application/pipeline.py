import logging
import uuid
from typing import Optional

from weathertunes.application.collector import CandidateCollector
from weathertunes.application.credentials import CredentialRefresher
from weathertunes.application.ranking import merge
from weathertunes.application.submitter import PlaylistSubmitter
from weathertunes.application.supplemental import SupplementalQueryPlanner
from weathertunes.crosscutting.logging import (
    CorrelationContext, log_error, log_session_complete, log_session_start, log_with_fields
)
from weathertunes.crosscutting.metrics import MetricsCollector
from weathertunes.domain.entities import (
    MAX_PLAYLIST_TRACKS, AssemblySession, CreatedPlaylist, SessionStage
)
from weathertunes.domain.errors import AssemblyError, ValidationError
from weathertunes.domain.ports import MusicService
from weathertunes.domain.vocabulary import language_term, playlist_description, playlist_name


logger = logging.getLogger(__name__)


class AssemblyPipeline:
    """Turns an assembly session into a published playlist.

    Stages: collecting, supplementing (only when short of the target),
    ranking and submitting. Every failure ends the session in FAILED and is
    re-raised to the caller as the single terminal outcome.
    """

    def __init__(self,
                 service: MusicService,
                 refresher: CredentialRefresher,
                 max_workers: int = MAX_PLAYLIST_TRACKS,
                 target: int = MAX_PLAYLIST_TRACKS):
        """Initialize assembly pipeline.

        Args:
            service: Music service used for search and playlist creation
            refresher: Process-wide credential refresher
            max_workers: Concurrency bound for hint searches
            target: Number of tracks the playlist aims for
        """
        self.service = service
        self.refresher = refresher
        self.max_workers = max_workers
        self.target = target
        self.last_metrics: Optional[MetricsCollector] = None

    def _validate(self, session: AssemblySession) -> None:
        if not self.refresher.access_token:
            raise ValidationError("Please login with Spotify first")
        if session.mood is None or not session.mood.type:
            raise ValidationError("Mood type is required")
        if not session.hints and not session.mood.genres:
            raise ValidationError("No song hints or genres to search with")

    def _advance(self, session: AssemblySession, stage: SessionStage) -> None:
        logger.debug(f"Session stage {session.stage.value} -> {stage.value}")
        session.stage = stage

    def _fail(self, session: AssemblySession, session_id: str, metrics: MetricsCollector,
              error: Exception, unexpected: bool = False) -> None:
        failed_stage = session.stage.value
        session.failure = error
        self._advance(session, SessionStage.FAILED)
        metrics.end_session()
        message = 'Assembly session crashed' if unexpected else 'Assembly session failed'
        log_error(logger, message, error, stage=failed_stage)
        log_session_complete(logger, session_id, 'failed', error_type=type(error).__name__,
                             metrics=metrics.to_dict())

    def assemble(self, session: AssemblySession, session_id: Optional[str] = None) -> CreatedPlaylist:
        """Run one assembly session to a terminal outcome.

        Args:
            session: Session carrying hints, mood and naming context
            session_id: Correlation id for logs; generated when omitted

        Returns:
            The created playlist

        Raises:
            ValidationError, EmptyResult, SessionExpired, UpstreamError
        """
        session_id = session_id or uuid.uuid4().hex[:12]
        metrics = MetricsCollector(session_id)
        self.last_metrics = metrics
        metrics.start_session()

        with CorrelationContext(session_id=session_id):
            log_session_start(logger, session_id, len(session.hints), mood=session.mood.type if session.mood else None,
                              language=session.language)
            try:
                created = self._run(session, metrics)
            except AssemblyError as e:
                self._fail(session, session_id, metrics, e)
                raise
            except Exception as e:
                # Unexpected faults still end the session; the caller sees the original error
                self._fail(session, session_id, metrics, e, unexpected=True)
                raise

            session.created = created
            self._advance(session, SessionStage.CREATED)
            metrics.end_session()
            log_session_complete(logger, session_id, 'created', playlist_id=created.id,
                                 track_count=created.track_count, metrics=metrics.to_dict())
            return created

    def _run(self, session: AssemblySession, metrics: MetricsCollector) -> CreatedPlaylist:
        self._validate(session)
        term = language_term(session.language)
        metrics.set('hints_received', len(session.hints))

        collector = CandidateCollector(self.service, self.refresher, self.max_workers, metrics)
        planner = SupplementalQueryPlanner(self.service, self.refresher, self.target, metrics)
        submitter = PlaylistSubmitter(self.service, self.refresher, metrics=metrics)
        refreshes_before = self.refresher.refresh_count

        try:
            self._advance(session, SessionStage.COLLECTING)
            with CorrelationContext(stage='collecting'), metrics.stage_timer('collecting'):
                session.collected = collector.collect(session.hints, term, cap=self.target)

            if len(session.collected) < self.target:
                self._advance(session, SessionStage.SUPPLEMENTING)
                with CorrelationContext(stage='supplementing'), metrics.stage_timer('supplementing'):
                    session.supplemental = planner.supplement(
                        session.mood.type, session.mood.genres, term, len(session.collected)
                    )

            self._advance(session, SessionStage.RANKING)
            with CorrelationContext(stage='ranking'), metrics.stage_timer('ranking'):
                session.ranked = merge([session.collected, session.supplemental], size=self.target)
            metrics.set('unique_candidate_count',
                        len({c.uri for c in session.collected + session.supplemental}))
            metrics.set('final_track_count', len(session.ranked))
            log_with_fields(logger, 'INFO', 'Playlist ranked', {
                'collected': len(session.collected),
                'supplemental': len(session.supplemental),
                'tracks': len(session.ranked),
            })

            self._advance(session, SessionStage.SUBMITTING)
            name = playlist_name(session.condition, session.location_name, session.language_name)
            description = playlist_description(session.mood, session.language_name)
            with CorrelationContext(stage='submitting'), metrics.stage_timer('submitting'):
                return submitter.create(name, description, session.ranked.uris)
        finally:
            metrics.set('refresh_count', self.refresher.refresh_count - refreshes_before)
