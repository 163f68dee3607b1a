"""Shared fixtures: an isolated app wired to in-memory storage."""
import pytest
from fastapi.testclient import TestClient

from config import Settings
from database import Database
from main import create_app
from storage import MemoryStorage


@pytest.fixture
def test_settings() -> Settings:
    s = Settings()
    s.STORAGE_BACKEND = "memory"
    s.CDN_DOMAIN = ""
    s.CLOUDFLARE_ZONE_ID = ""
    s.CLOUDFLARE_API_TOKEN = ""
    s.GITHUB_TOKEN = ""
    s.GITHUB_OWNER = ""
    s.GITHUB_REPO = ""
    s.TMDB_API_KEY = "test-key"
    s.BACKUP_INTERVAL = 0
    s.MOVIE_CATALOG_ID = "my-movies"
    s.SERIES_CATALOG_ID = "my-series"
    return s


@pytest.fixture
def storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def database(storage: MemoryStorage) -> Database:
    return Database(storage)


@pytest.fixture
def client(database: Database, test_settings: Settings):
    app = create_app(database=database, app_settings=test_settings)
    with TestClient(app) as c:
        yield c


@pytest.fixture
def movie_payload() -> dict:
    return {
        "id": "tt0111161",
        "name": "The Shawshank Redemption",
        "genre": "Drama, Crime",
        "year": "1994",
        "director": "Frank Darabont",
        "cast": "Tim Robbins, Morgan Freeman",
        "description": "Two imprisoned men bond over a number of years.",
        "poster": "https://image.tmdb.org/t/p/w500/poster.jpg",
        "runtime": 142,
        "imdbRating": "9.3",
        "url": "https://example.com/a.mp4",
    }


@pytest.fixture
def series_payload() -> dict:
    return {
        "id": "tt0903747",
        "name": "Breaking Bad",
        "genre": ["Drama", "Crime"],
        "year": 2008,
        "poster": "https://image.tmdb.org/t/p/w500/bb.jpg",
        "runtime": "47",
    }
