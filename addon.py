"""Stremio views (manifest, catalog, meta, stream) projected from the content store."""
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from cdn import CdnRewriter
from database import ContentStore
from errors import NotFoundError
from modal import EpisodeSchema, MovieSchema, dump, episode_id

DEFAULT_QUALITY = "HD"
DEFAULT_LANGUAGE = "Español"

CATALOG_FIELDS = ("id", "type", "name", "poster", "background", "logo", "description",
                  "year", "imdbRating", "genre", "director", "cast")


def build_manifest(settings) -> Dict[str, Any]:
    return {
        "id": settings.ADDON_ID,
        "version": settings.ADDON_VERSION,
        "name": settings.ADDON_NAME,
        "description": settings.ADDON_DESCRIPTION,
        "logo": settings.ADDON_LOGO,
        "background": settings.ADDON_BACKGROUND,
        "types": ["movie", "series"],
        "catalogs": [
            {"type": "movie", "id": settings.MOVIE_CATALOG_ID, "name": settings.CATALOG_NAME},
            {"type": "series", "id": settings.SERIES_CATALOG_ID, "name": settings.CATALOG_NAME},
        ],
        "resources": ["catalog", "meta", "stream"],
        "idPrefixes": ["tt", "custom"],
    }


def catalog_metas(store: ContentStore, media_type: str, catalog_id: str, settings) -> List[Dict[str, Any]]:
    if media_type == "movie" and catalog_id == settings.MOVIE_CATALOG_ID:
        items = store.movies
    elif media_type == "series" and catalog_id == settings.SERIES_CATALOG_ID:
        items = store.series
    else:
        return []
    metas = []
    for item in items:
        record = dump(item)
        metas.append({field: record[field] for field in CATALOG_FIELDS if field in record})
    return metas


def _iso(moment: datetime) -> str:
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def release_date(year: Optional[Union[int, str]]) -> str:
    # Ranges such as "2008-2013" date from their first year
    match = re.match(r"\s*(\d{4})", str(year)) if year else None
    if match and int(match.group(1)) > 0:
        return _iso(datetime(int(match.group(1)), 1, 1, tzinfo=timezone.utc))
    return _iso(datetime.now(timezone.utc))


def build_meta(store: ContentStore, media_type: str, item_id: str) -> Dict[str, Any]:
    if media_type == "movie":
        movie = store.find_movie(item_id)
        if movie:
            return dump(movie)
    elif media_type == "series":
        series = store.find_series(item_id)
        if series:
            meta = dump(series)
            meta["videos"] = [
                {
                    "id": episode_id(item_id, ep.season, ep.episode),
                    "title": f"S{ep.season:02d}E{ep.episode:02d} - {ep.name}",
                    "season": ep.season,
                    "episode": ep.episode,
                    "overview": ep.description or "",
                    "thumbnail": ep.poster or series.poster,
                    "released": release_date(ep.year),
                    "runtime": ep.runtime or series.runtime,
                }
                for ep in store.list_episodes(item_id)
            ]
            return meta
    raise NotFoundError("Content not found")


def _stream(item: MovieSchema | EpisodeSchema, rewriter: Optional[CdnRewriter]) -> Dict[str, Any]:
    quality = item.quality or DEFAULT_QUALITY
    return {
        "url": rewriter.rewrite(item.url) if rewriter is not None else item.url,
        "title": f"{quality} - {item.language or DEFAULT_LANGUAGE}",
        "quality": quality,
    }


def build_streams(store: ContentStore, media_type: str, item_id: str,
                  rewriter: Optional[CdnRewriter] = None) -> List[Dict[str, Any]]:
    """At most one stream per request; ids that cannot be resolved give an empty list."""
    if media_type == "movie":
        movie = store.find_movie(item_id)
        return [_stream(movie, rewriter)] if movie and movie.url else []
    if media_type == "series":
        parts = item_id.split(":")
        if len(parts) != 3:
            return []
        series_id, season, episode = parts
        try:
            found = store.find_episode(series_id, int(season), int(episode))
        except ValueError:
            return []
        return [_stream(found, rewriter)] if found and found.url else []
    return []
