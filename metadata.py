import logging
from typing import Any, Dict, Optional

from themoviedb import aioTMDb

from config import settings
from errors import NotFoundError, UpstreamError

LOGGER = logging.getLogger(__name__)

tmdb = aioTMDb(key=settings.TMDB_API_KEY, language=settings.TMDB_LANGUAGE, region=settings.TMDB_REGION)


def format_tmdb_image(path: Optional[str], size: str = "w500") -> str:
    return f"https://image.tmdb.org/t/p/{size}{path}" if path else ""


def _year(value) -> Optional[int]:
    return value.year if value else None


def _names(people, limit: Optional[int] = None) -> str:
    names = [p.name for p in (people or []) if getattr(p, "name", None)]
    return ", ".join(names[:limit] if limit else names)


async def find_by_imdb_id(imdb_id: str) -> Dict[str, Any]:
    """Look an IMDb id up on TMDb and return auto-fill data for the movie or show."""
    try:
        results = await tmdb.find(imdb_id).by("imdb_id")
    except Exception as e:
        LOGGER.error(f"Could not search TMDb for IMDb ID {imdb_id}: {e}")
        raise UpstreamError(f"TMDb lookup failed: {e}") from e

    if results.movie_results:
        return await movie_details(results.movie_results[0].id)
    if results.tv_results:
        return await tv_details(results.tv_results[0].id)
    raise NotFoundError(f"No TMDb content found for IMDb ID {imdb_id}")


async def movie_details(tmdb_id: int) -> Dict[str, Any]:
    try:
        movie = await tmdb.movie(tmdb_id).details(append_to_response="credits")
    except Exception as e:
        LOGGER.error(f"Error fetching TMDb movie {tmdb_id}: {e}")
        raise UpstreamError(f"Error fetching movie details: {e}") from e

    credits = getattr(movie, "credits", None)
    crew = credits.crew if credits else []
    return {
        "type": "movie",
        "tmdbId": tmdb_id,
        "name": movie.title,
        "year": _year(movie.release_date),
        "runtime": movie.runtime,
        "genre": _names(movie.genres),
        "director": _names([p for p in (crew or []) if p.job == "Director"]),
        "cast": _names(credits.cast if credits else [], limit=5),
        "imdbRating": round(movie.vote_average, 1) if movie.vote_average is not None else None,
        "poster": format_tmdb_image(movie.poster_path),
        "background": format_tmdb_image(movie.backdrop_path, "w1280"),
        "description": movie.overview,
    }


async def tv_details(tmdb_id: int) -> Dict[str, Any]:
    try:
        show = await tmdb.tv(tmdb_id).details(append_to_response="credits")
    except Exception as e:
        LOGGER.error(f"Error fetching TMDb show {tmdb_id}: {e}")
        raise UpstreamError(f"Error fetching series details: {e}") from e

    credits = getattr(show, "credits", None)
    run_times = show.episode_run_time or []
    return {
        "type": "tv",
        "tmdbId": tmdb_id,
        "name": show.name,
        "year": _year(show.first_air_date),
        "runtime": run_times[0] if run_times else None,
        "genre": _names(show.genres),
        "director": _names(show.created_by),
        "cast": _names(credits.cast if credits else [], limit=5),
        "imdbRating": round(show.vote_average, 1) if show.vote_average is not None else None,
        "poster": format_tmdb_image(show.poster_path),
        "background": format_tmdb_image(show.backdrop_path, "w1280"),
        "description": show.overview,
    }


async def episode_details(tmdb_id: int, season: int, episode: int) -> Dict[str, Any]:
    try:
        ep = await tmdb.episode(tmdb_id, season, episode).details()
    except Exception as e:
        LOGGER.error(f"Error fetching TMDb episode {tmdb_id} S{season}E{episode}: {e}")
        raise UpstreamError(f"Error fetching episode details: {e}") from e

    return {
        "name": ep.name,
        "description": ep.overview,
        "runtime": ep.runtime,
        "poster": format_tmdb_image(ep.still_path),
        "year": _year(ep.air_date),
    }
