import logging
from typing import List, Optional

from weathertunes.application.credentials import CredentialRefresher
from weathertunes.crosscutting.metrics import MetricsCollector
from weathertunes.domain.entities import CreatedPlaylist
from weathertunes.domain.errors import UpstreamError, ValidationError
from weathertunes.domain.ports import PlaylistService


logger = logging.getLogger(__name__)

BATCH_SIZE = 100


class PlaylistSubmitter:
    """Creates a playlist and fills it with tracks in ordered batches."""

    def __init__(self,
                 service: PlaylistService,
                 refresher: CredentialRefresher,
                 batch_size: int = BATCH_SIZE,
                 metrics: Optional[MetricsCollector] = None):
        """Initialize playlist submitter.

        Args:
            service: Playlist create/add capability
            refresher: Credential refresher used for one-shot retries
            batch_size: Maximum number of tracks per add request
            metrics: Optional session metrics collector
        """
        if not 0 < batch_size <= BATCH_SIZE:
            raise ValueError(f"batch_size must be between 1 and {BATCH_SIZE}")
        self.service = service
        self.refresher = refresher
        self.batch_size = batch_size
        self.metrics = metrics

    def split_into_batches(self, track_uris: List[str]) -> List[List[str]]:
        """Split track URIs into batches.

        Args:
            track_uris: List of track URIs to split

        Returns:
            List of batches, each containing up to batch_size URIs
        """
        batches = []
        for i in range(0, len(track_uris), self.batch_size):
            batch = track_uris[i:i + self.batch_size]
            batches.append(batch)
        return batches

    def create(self, name: str, description: str, track_uris: List[str]) -> CreatedPlaylist:
        """Create a public playlist holding track_uris in order.

        Batches run strictly one after another. The first failing batch fails
        the submission; the created playlist is not deleted.

        Raises:
            ValidationError: Missing name or tracks
            SessionExpired: Credentials could not be refreshed
            UpstreamError: Playlist creation or a batch failed
        """
        if not name or not name.strip():
            raise ValidationError("Playlist name is required")
        if not track_uris:
            raise ValidationError("At least one track is required")

        playlist = self.refresher.call_with_refresh(
            lambda token: self.service.create_playlist(token, name, description, public=True)
        )
        logger.info(f"Created playlist {playlist.id}: {playlist.name}")

        for batch_index, batch in enumerate(self.split_into_batches(list(track_uris))):
            try:
                self.refresher.call_with_refresh(
                    lambda token, b=batch: self.service.add_tracks(playlist.id, token, b)
                )
            except UpstreamError as e:
                # TODO: delete the half-filled playlist once the service exposes unfollow/delete
                logger.error(f"Batch {batch_index} failed, playlist {playlist.id} left incomplete: {e}")
                raise
            if self.metrics:
                self.metrics.increment('batch_count')
            logger.info(f"Batch {batch_index} added {len(batch)} tracks")

        return CreatedPlaylist(
            id=playlist.id,
            name=playlist.name,
            url=playlist.url,
            track_count=len(track_uris)
        )
