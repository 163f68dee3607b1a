import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

import uvicorn
from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

import metadata
from addon import build_manifest, build_meta, build_streams, catalog_metas
from cdn import CdnRewriter, create_page_rule
from config import Settings, settings
from database import Database
from errors import CatalogError, PersistenceError, UpstreamError, ValidationError
from modal import (EPISODE_REQUIRED, MOVIE_REQUIRED, SERIES_REQUIRED, EpisodeSchema, MovieSchema,
                   SeriesSchema, dump, parse_payload)
from storage import Storage, build_storage

logging.basicConfig(level=logging.INFO)
LOGGER = logging.getLogger(__name__)

router = APIRouter()


# --- Dependencies ---
def get_database(request: Request) -> Database:
    return request.app.state.database


def get_rewriter(request: Request) -> Optional[CdnRewriter]:
    return request.app.state.rewriter


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


async def read_payload(request: Request) -> Dict[str, Any]:
    try:
        return await request.json()
    except ValueError:
        raise ValidationError("Request body must be valid JSON")


# --- Stremio Addon Routes ---
@router.get("/manifest.json")
async def get_manifest(app_settings: Settings = Depends(get_settings)):
    return build_manifest(app_settings)


@router.get("/catalog/{media_type}/{catalog_id}.json")
async def get_catalog(media_type: str, catalog_id: str, db: Database = Depends(get_database),
                      app_settings: Settings = Depends(get_settings)):
    return {"metas": catalog_metas(db.store, media_type, catalog_id, app_settings)}


@router.get("/meta/{media_type}/{item_id}.json")
async def get_meta(media_type: str, item_id: str, db: Database = Depends(get_database)):
    return {"meta": build_meta(db.store, media_type, item_id)}


@router.get("/stream/{media_type}/{item_id}.json")
async def get_streams(media_type: str, item_id: str, db: Database = Depends(get_database),
                      rewriter: Optional[CdnRewriter] = Depends(get_rewriter)):
    streams = build_streams(db.store, media_type, item_id, rewriter)
    LOGGER.info(f"Stream request {media_type}/{item_id}: {len(streams)} streams")
    return {"streams": streams}


# --- Admin API Routes (JSON) ---
@router.post("/api/add-movie")
async def api_add_movie(request: Request, db: Database = Depends(get_database)):
    movie = parse_payload(MovieSchema, await read_payload(request), MOVIE_REQUIRED)
    await db.add_movie(movie)
    return {"success": True, "message": f"Movie '{movie.name}' added"}


@router.post("/api/add-series")
async def api_add_series(request: Request, db: Database = Depends(get_database)):
    series = parse_payload(SeriesSchema, await read_payload(request), SERIES_REQUIRED)
    await db.add_series(series)
    return {"success": True, "message": f"Series '{series.name}' added"}


@router.post("/api/add-episode")
async def api_add_episode(request: Request, db: Database = Depends(get_database)):
    episode = parse_payload(EpisodeSchema, await read_payload(request), EPISODE_REQUIRED)
    await db.add_episode(episode)
    return {"success": True, "message": f"Episode '{episode.id}' added"}


@router.delete("/api/delete/episode/{episode_id}")
async def api_delete_episode(episode_id: str, db: Database = Depends(get_database)):
    parts = episode_id.rsplit(":", 2)
    try:
        series_id, season, episode = parts[0], int(parts[1]), int(parts[2])
    except (IndexError, ValueError):
        raise ValidationError(f"Episode id '{episode_id}' must look like seriesId:season:episode")
    await db.delete_episode(series_id, season, episode)
    return {"success": True, "message": f"Episode '{episode_id}' deleted"}


@router.delete("/api/delete/{media_type}/{item_id}")
async def api_delete_media(media_type: str, item_id: str, db: Database = Depends(get_database)):
    if media_type == "movie":
        await db.delete_movie(item_id)
        return {"success": True, "message": f"Movie '{item_id}' deleted"}
    if media_type == "series":
        _, episodes = await db.delete_series(item_id)
        return {"success": True, "message": f"Series '{item_id}' and {len(episodes)} episodes deleted"}
    raise ValidationError(f"Invalid type '{media_type}'")


@router.get("/api/content")
async def api_get_content(db: Database = Depends(get_database)):
    return db.store.snapshot()


# --- Operations / debugging ---
@router.get("/api/debug/series/{series_id}/episodes")
async def api_debug_episodes(series_id: str, db: Database = Depends(get_database)):
    episodes = db.store.list_episodes(series_id)
    return {
        "seriesId": series_id,
        "seriesExists": db.store.find_series(series_id) is not None,
        "count": len(episodes),
        "episodes": [dump(e) for e in episodes],
    }


@router.get("/api/storage/stats")
async def api_storage_stats(db: Database = Depends(get_database)):
    return db.get_stats()


@router.post("/api/backup")
async def api_backup(db: Database = Depends(get_database)):
    result = await db.storage.backup()
    return {"success": True, "message": "Backup created", "backup": result}


@router.post("/api/reload-data")
async def api_reload_data(db: Database = Depends(get_database)):
    await db.load()
    return {"success": True, "message": "Data reloaded", "counts": db.store.counts()}


@router.get("/api/cdn/stats")
async def api_cdn_stats(rewriter: Optional[CdnRewriter] = Depends(get_rewriter),
                        app_settings: Settings = Depends(get_settings)):
    stats = rewriter.stats() if rewriter is not None else {"cdnDomain": None, "cachedUrls": 0, "cacheEntries": []}
    stats["enabled"] = rewriter is not None
    stats["cloudflareConfigured"] = app_settings.cloudflare_configured
    return stats


@router.post("/api/cdn/clear-cache")
async def api_cdn_clear(rewriter: Optional[CdnRewriter] = Depends(get_rewriter)):
    cleared = rewriter.clear() if rewriter is not None else 0
    return {"success": True, "message": f"CDN cache cleared ({cleared} entries)"}


@router.get("/api/github-status")
async def api_github_status(app_settings: Settings = Depends(get_settings), db: Database = Depends(get_database)):
    status = {
        "configured": app_settings.github_configured,
        "owner": app_settings.GITHUB_OWNER or None,
        "repo": app_settings.GITHUB_REPO or None,
        "branch": app_settings.GITHUB_BRANCH,
        "activeBackend": db.storage.name,
        "cdnConfigured": app_settings.cloudflare_configured,
        "cdnDomain": app_settings.CDN_DOMAIN or None,
    }
    if db.storage.name == "github":
        status.update(db.storage.describe())
    return status


# --- TMDb auto-fill ---
def require_tmdb(app_settings: Settings = Depends(get_settings)):
    if not app_settings.TMDB_API_KEY:
        raise UpstreamError("TMDb API key is not configured")


@router.get("/api/tmdb/find/{imdb_id}", dependencies=[Depends(require_tmdb)])
async def api_tmdb_find(imdb_id: str):
    if not imdb_id.startswith("tt"):
        raise ValidationError("IMDb ids start with 'tt'")
    return await metadata.find_by_imdb_id(imdb_id)


@router.get("/api/tmdb/tv/{tmdb_id}/season/{season}/episode/{episode}", dependencies=[Depends(require_tmdb)])
async def api_tmdb_episode(tmdb_id: int, season: int, episode: int):
    return await metadata.episode_details(tmdb_id, season, episode)


async def catalog_error_handler(request: Request, exc: CatalogError):
    if exc.status_code >= 500:
        LOGGER.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse({"error": exc.message}, status_code=exc.status_code)


async def backup_loop(storage: Storage, interval: int):
    while True:
        await asyncio.sleep(interval)
        try:
            await storage.backup()
        except PersistenceError as e:
            LOGGER.error(f"Scheduled backup failed: {e}")


def create_app(database: Optional[Database] = None, rewriter: Optional[CdnRewriter] = None,
               app_settings: Settings = settings) -> FastAPI:
    if database is None:
        database = Database(build_storage(app_settings))
    if rewriter is None and app_settings.CDN_DOMAIN:
        rewriter = CdnRewriter(app_settings.CDN_DOMAIN)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        try:
            await database.load()
        except PersistenceError as e:
            LOGGER.error(f"Could not load content from {database.storage.name} storage, starting empty: {e}")
        tasks = []
        if rewriter is not None and app_settings.cloudflare_configured:
            tasks.append(asyncio.create_task(create_page_rule(
                app_settings.CLOUDFLARE_ZONE_ID, app_settings.CLOUDFLARE_API_TOKEN, f"{rewriter.domain}/video/*")))
        if database.storage.supports_backup and app_settings.BACKUP_INTERVAL > 0:
            tasks.append(asyncio.create_task(backup_loop(database.storage, app_settings.BACKUP_INTERVAL)))
        yield
        for task in tasks:
            task.cancel()

    app = FastAPI(title="Stremio Personal Catalog", lifespan=lifespan)
    app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_credentials=True, allow_methods=["*"], allow_headers=["*"])
    app.add_exception_handler(CatalogError, catalog_error_handler)
    app.state.database = database
    app.state.rewriter = rewriter
    app.state.settings = app_settings
    app.include_router(router)
    return app


app = create_app()


if __name__ == "__main__":
    LOGGER.info(f"Addon manifest: {settings.BASE_URL}/manifest.json")
    LOGGER.info(f"Storage backend: {settings.storage_backend}")
    if settings.CDN_DOMAIN:
        LOGGER.info(f"CDN domain: {settings.CDN_DOMAIN} (Cloudflare {'on' if settings.cloudflare_configured else 'off'})")
    uvicorn.run(app, host="0.0.0.0", port=settings.PORT)
