"""Stremio addon endpoints: manifest, catalog, meta and stream."""
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

import main
from cdn import CdnRewriter
from database import Database
from main import create_app
from storage import MemoryStorage
from tests.payloads import episode_payload


@pytest.fixture
def seeded(client: TestClient, movie_payload: dict, series_payload: dict) -> TestClient:
    assert client.post("/api/add-movie", json=movie_payload).status_code == 200
    assert client.post("/api/add-series", json=series_payload).status_code == 200
    return client


def test_manifest(client: TestClient):
    manifest = client.get("/manifest.json").json()
    assert manifest["types"] == ["movie", "series"]
    assert manifest["resources"] == ["catalog", "meta", "stream"]
    assert manifest["idPrefixes"] == ["tt", "custom"]
    assert [c["id"] for c in manifest["catalogs"]] == ["my-movies", "my-series"]


class TestCatalog:
    def test_movie_catalog(self, seeded: TestClient):
        metas = seeded.get("/catalog/movie/my-movies.json").json()["metas"]
        assert len(metas) == 1
        assert metas[0]["id"] == "tt0111161"
        assert metas[0]["type"] == "movie"
        assert metas[0]["genre"] == ["Drama", "Crime"]
        assert "url" not in metas[0]

    def test_series_catalog(self, seeded: TestClient):
        metas = seeded.get("/catalog/series/my-series.json").json()["metas"]
        assert [m["id"] for m in metas] == ["tt0903747"]

    @pytest.mark.parametrize("path", ["/catalog/movie/my-series.json", "/catalog/channel/my-movies.json"])
    def test_unknown_catalog_is_empty(self, seeded: TestClient, path: str):
        response = seeded.get(path)
        assert response.status_code == 200
        assert response.json() == {"metas": []}


class TestMeta:
    def test_movie_meta_keeps_submitted_fields(self, seeded: TestClient, movie_payload: dict):
        meta = seeded.get("/meta/movie/tt0111161.json").json()["meta"]
        assert meta["name"] == movie_payload["name"]
        assert meta["url"] == movie_payload["url"]
        assert meta["description"] == movie_payload["description"]
        assert meta["poster"] == movie_payload["poster"]
        assert meta["year"] == "1994"
        assert meta["runtime"] == 142
        assert meta["imdbRating"] == 9.3
        assert meta["cast"] == ["Tim Robbins", "Morgan Freeman"]
        assert "dateAdded" in meta

    def test_missing_meta_is_404(self, seeded: TestClient):
        for path in ("/meta/movie/tt0000000.json", "/meta/series/tt0000000.json"):
            response = seeded.get(path)
            assert response.status_code == 404
            assert response.json() == {"error": "Content not found"}

    def test_series_videos_sorted(self, seeded: TestClient):
        for season, episode in [(2, 1), (1, 2), (1, 1)]:
            assert seeded.post("/api/add-episode", json=episode_payload(season, episode)).status_code == 200

        videos = seeded.get("/meta/series/tt0903747.json").json()["meta"]["videos"]

        assert [v["id"] for v in videos] == ["tt0903747:1:1", "tt0903747:1:2", "tt0903747:2:1"]
        assert videos[0]["title"] == "S01E01 - Episode 1"
        assert videos[2]["title"] == "S02E01 - Episode 1"

    def test_video_fields(self, seeded: TestClient):
        seeded.post("/api/add-episode", json=episode_payload(1, 1, year=2008, description="Pilot"))
        seeded.post("/api/add-episode", json=episode_payload(1, 2))

        videos = seeded.get("/meta/series/tt0903747.json").json()["meta"]["videos"]

        assert videos[0]["released"] == "2008-01-01T00:00:00.000Z"
        assert videos[0]["overview"] == "Pilot"
        assert videos[1]["overview"] == ""
        assert videos[1]["released"].endswith("Z")
        # series poster and runtime fill in when the episode has none
        assert videos[1]["thumbnail"] == "https://image.tmdb.org/t/p/w500/bb.jpg"
        assert videos[1]["runtime"] == "47"

    def test_series_year_range_kept_and_used_for_release(self, client: TestClient, series_payload: dict):
        series_payload["year"] = "2008-2013"
        assert client.post("/api/add-series", json=series_payload).status_code == 200
        client.post("/api/add-episode", json=episode_payload(1, 1, year="2008-2013"))

        meta = client.get("/meta/series/tt0903747.json").json()["meta"]

        assert meta["year"] == "2008-2013"
        assert meta["videos"][0]["released"] == "2008-01-01T00:00:00.000Z"


class TestStream:
    def test_movie_stream(self, seeded: TestClient):
        response = seeded.get("/stream/movie/tt0111161.json")
        assert response.json() == {
            "streams": [{"url": "https://example.com/a.mp4", "title": "HD - Español", "quality": "HD"}]
        }

    def test_movie_stream_uses_quality_and_language(self, client: TestClient):
        client.post("/api/add-movie", json={"id": "tt2", "name": "Two", "url": "https://example.com/2.mp4",
                                            "quality": "4K", "language": "English"})
        stream = client.get("/stream/movie/tt2.json").json()["streams"][0]
        assert stream["title"] == "4K - English"
        assert stream["quality"] == "4K"

    def test_unknown_movie_has_no_streams(self, seeded: TestClient):
        assert seeded.get("/stream/movie/tt0000000.json").json() == {"streams": []}

    def test_episode_stream(self, seeded: TestClient):
        seeded.post("/api/add-episode", json=episode_payload(1, 3, quality="1080p"))
        streams = seeded.get("/stream/series/tt0903747:1:3.json").json()["streams"]
        assert streams == [{"url": "https://example.com/bb/s1e3.mkv", "title": "1080p - Español", "quality": "1080p"}]

    @pytest.mark.parametrize("item_id", ["tt0903747", "tt0903747:1", "tt0903747:1:1:1", "tt0903747:a:b", "tt0903747:9:9"])
    def test_malformed_or_unknown_episode_ids_give_no_streams(self, seeded: TestClient, item_id: str):
        seeded.post("/api/add-episode", json=episode_payload(1, 1))
        response = seeded.get(f"/stream/series/{item_id}.json")
        assert response.status_code == 200
        assert response.json() == {"streams": []}


def test_streams_rewritten_through_cdn(test_settings, movie_payload):
    rewriter = CdnRewriter("cdn.example.com")
    app = create_app(database=Database(MemoryStorage()), rewriter=rewriter, app_settings=test_settings)
    with TestClient(app) as client:
        client.post("/api/add-movie", json=movie_payload)

        first = client.get("/stream/movie/tt0111161.json").json()["streams"][0]["url"]
        second = client.get("/stream/movie/tt0111161.json").json()["streams"][0]["url"]

        assert first == second == rewriter.rewrite(movie_payload["url"])
        assert first.startswith("https://cdn.example.com/video/")
        assert client.get("/api/cdn/stats").json()["cachedUrls"] == 1
        assert client.post("/api/cdn/clear-cache").json()["success"] is True
        assert client.get("/api/cdn/stats").json()["cachedUrls"] == 0
        assert client.get("/stream/movie/tt0111161.json").json()["streams"][0]["url"] == first


def test_fresh_rewriter_rewrites_first_request(test_settings, movie_payload):
    rewriter = CdnRewriter("cdn.example.com")
    app = create_app(database=Database(MemoryStorage()), rewriter=rewriter, app_settings=test_settings)
    with TestClient(app) as client:
        client.post("/api/add-movie", json=movie_payload)

        url = client.get("/stream/movie/tt0111161.json").json()["streams"][0]["url"]

        assert url.startswith("https://cdn.example.com/video/")
        assert url.endswith("?origin=https%3A%2F%2Fexample.com%2Fa.mp4")
        assert rewriter.cached == 1
        stats = client.get("/api/cdn/stats").json()
        assert stats["enabled"] is True
        assert stats["cdnDomain"] == "cdn.example.com"


def test_page_rule_created_on_startup(monkeypatch, test_settings):
    page_rule = AsyncMock(return_value=True)
    monkeypatch.setattr(main, "create_page_rule", page_rule)
    test_settings.CLOUDFLARE_ZONE_ID = "zone1"
    test_settings.CLOUDFLARE_API_TOKEN = "cf-token"
    app = create_app(database=Database(MemoryStorage()), rewriter=CdnRewriter("cdn.example.com"),
                     app_settings=test_settings)

    with TestClient(app):
        pass

    page_rule.assert_called_once_with("zone1", "cf-token", "cdn.example.com/video/*")
