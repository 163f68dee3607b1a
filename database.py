import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

from pydantic import ValidationError as PydanticValidationError

from errors import ConflictError, NotFoundError, PersistenceError
from modal import EpisodeSchema, MovieSchema, SeriesSchema, dump, episode_id
from storage import SECTIONS, Snapshot, Storage

LOGGER = logging.getLogger(__name__)


def _position(records: List[Any], match: Callable[[Any], bool]) -> int:
    return next((i for i, record in enumerate(records) if match(record)), len(records))


class ContentStore:
    """In-memory movies, series and episodes. Every operation is synchronous."""

    def __init__(self):
        self.movies: List[MovieSchema] = []
        self.series: List[SeriesSchema] = []
        self.episodes: List[EpisodeSchema] = []

    # --- Lookups ---
    def find_movie(self, movie_id: str) -> Optional[MovieSchema]:
        return next((m for m in self.movies if m.id == movie_id), None)

    def find_series(self, series_id: str) -> Optional[SeriesSchema]:
        return next((s for s in self.series if s.id == series_id), None)

    def find_episode(self, series_id: str, season: int, episode: int) -> Optional[EpisodeSchema]:
        key = (series_id, season, episode)
        return next((e for e in self.episodes if e.key == key), None)

    def list_episodes(self, series_id: str) -> List[EpisodeSchema]:
        episodes = [e for e in self.episodes if e.seriesId == series_id]
        return sorted(episodes, key=lambda e: (e.season, e.episode))

    # --- Mutations ---
    def insert_movie(self, movie: MovieSchema):
        if self.find_movie(movie.id):
            raise ConflictError(f"Movie '{movie.id}' already exists")
        self.movies.append(movie)

    def insert_series(self, series: SeriesSchema):
        if self.find_series(series.id):
            raise ConflictError(f"Series '{series.id}' already exists")
        self.series.append(series)

    def insert_episode(self, episode: EpisodeSchema):
        if not self.find_series(episode.seriesId):
            raise NotFoundError(f"Series '{episode.seriesId}' not found")
        if self.find_episode(*episode.key):
            raise ConflictError(f"Episode '{episode.id}' already exists")
        self.episodes.append(episode)

    def delete_movie(self, movie_id: str) -> MovieSchema:
        movie = self.find_movie(movie_id)
        if not movie:
            raise NotFoundError(f"Movie '{movie_id}' not found")
        self.movies.remove(movie)
        return movie

    def delete_series(self, series_id: str) -> Tuple[SeriesSchema, List[EpisodeSchema]]:
        """Remove a series and every episode that belongs to it."""
        series = self.find_series(series_id)
        if not series:
            raise NotFoundError(f"Series '{series_id}' not found")
        self.series.remove(series)
        removed = [e for e in self.episodes if e.seriesId == series_id]
        self.episodes = [e for e in self.episodes if e.seriesId != series_id]
        return series, removed

    def delete_episode(self, series_id: str, season: int, episode: int) -> EpisodeSchema:
        found = self.find_episode(series_id, season, episode)
        if not found:
            raise NotFoundError(f"Episode '{episode_id(series_id, season, episode)}' not found")
        self.episodes.remove(found)
        return found

    # --- Snapshots ---
    def section(self, name: str) -> List[Dict[str, Any]]:
        return [dump(record) for record in getattr(self, name)]

    def snapshot(self) -> Snapshot:
        return {name: self.section(name) for name in SECTIONS}

    def replace(self, snapshot: Snapshot):
        """Swap in a snapshot read from storage; nothing changes if any record is invalid."""
        try:
            movies = [MovieSchema.model_validate(r) for r in snapshot.get("movies", [])]
            series = [SeriesSchema.model_validate(r) for r in snapshot.get("series", [])]
            episodes = [EpisodeSchema.model_validate(r) for r in snapshot.get("episodes", [])]
        except PydanticValidationError as e:
            raise PersistenceError(f"Stored content is invalid: {e.error_count()} errors, first: {e.errors()[0]['msg']}") from e
        self.movies, self.series, self.episodes = movies, series, episodes

    def counts(self) -> Dict[str, int]:
        return {name: len(getattr(self, name)) for name in SECTIONS}


class Database:
    """Couples the content store with a storage backend.

    Each mutation is applied in memory first and then persisted; if the
    backend fails, the in-memory change is undone before the error is
    re-raised, so memory never stays ahead of durable state.
    """

    def __init__(self, storage: Storage, store: Optional[ContentStore] = None):
        self.storage = storage
        self.store = store or ContentStore()

    async def load(self):
        snapshot = await self.storage.load()
        self.store.replace(snapshot)
        counts = self.store.counts()
        LOGGER.info(f"Loaded {counts['movies']} movies, {counts['series']} series, "
                    f"{counts['episodes']} episodes from {self.storage.name} storage")

    async def _persist(self, *sections: str):
        for name in sections:
            await self.storage.save(name, self.store.section(name))

    async def add_movie(self, movie: MovieSchema):
        self.store.insert_movie(movie)
        try:
            await self._persist("movies")
        except PersistenceError:
            self.store.movies.remove(movie)
            raise
        LOGGER.info(f"Added movie '{movie.name}' ({movie.id})")

    async def add_series(self, series: SeriesSchema):
        self.store.insert_series(series)
        try:
            await self._persist("series")
        except PersistenceError:
            self.store.series.remove(series)
            raise
        LOGGER.info(f"Added series '{series.name}' ({series.id})")

    async def add_episode(self, episode: EpisodeSchema):
        self.store.insert_episode(episode)
        try:
            await self._persist("episodes")
        except PersistenceError:
            self.store.episodes.remove(episode)
            raise
        LOGGER.info(f"Added episode '{episode.name}' ({episode.id})")

    async def delete_movie(self, movie_id: str) -> MovieSchema:
        index = _position(self.store.movies, lambda m: m.id == movie_id)
        movie = self.store.delete_movie(movie_id)
        try:
            await self._persist("movies")
        except PersistenceError:
            self.store.movies.insert(index, movie)
            raise
        LOGGER.info(f"Deleted movie {movie_id}")
        return movie

    async def delete_series(self, series_id: str) -> Tuple[SeriesSchema, List[EpisodeSchema]]:
        index = _position(self.store.series, lambda s: s.id == series_id)
        positions = [i for i, e in enumerate(self.store.episodes) if e.seriesId == series_id]
        series, episodes = self.store.delete_series(series_id)
        try:
            await self._persist("series", "episodes")
        except PersistenceError:
            self.store.series.insert(index, series)
            # ascending order puts each episode back at its old index
            for position, removed in zip(positions, episodes):
                self.store.episodes.insert(position, removed)
            raise
        LOGGER.info(f"Deleted series {series_id} and {len(episodes)} episodes")
        return series, episodes

    async def delete_episode(self, series_id: str, season: int, episode: int) -> EpisodeSchema:
        index = _position(self.store.episodes, lambda e: e.key == (series_id, season, episode))
        removed = self.store.delete_episode(series_id, season, episode)
        try:
            await self._persist("episodes")
        except PersistenceError:
            self.store.episodes.insert(index, removed)
            raise
        LOGGER.info(f"Deleted episode {removed.id}")
        return removed

    def get_stats(self) -> Dict[str, Any]:
        return {"counts": self.store.counts(), "storage": self.storage.describe()}
