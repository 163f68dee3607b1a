"""Request bodies reused across the test modules."""


def episode_payload(season: int, episode: int, series_id: str = "tt0903747", **extra) -> dict:
    payload = {
        "seriesId": series_id,
        "name": f"Episode {episode}",
        "season": season,
        "episode": episode,
        "url": f"https://example.com/bb/s{season}e{episode}.mkv",
    }
    payload.update(extra)
    return payload
