from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Type, TypeVar, Union

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from errors import ValidationError


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def split_list(value: Any) -> List[str]:
    """Accept either a list or the comma separated string sent by the admin form."""
    if value is None or value == "":
        return []
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    return [str(part).strip() for part in value if str(part).strip()]


# Shared descriptive fields of movies and series
class MediaBase(BaseModel):
    id: str
    name: str
    genre: List[str] = Field(default_factory=list)
    year: Optional[Union[int, str]] = None
    director: List[str] = Field(default_factory=list)
    cast: List[str] = Field(default_factory=list)
    description: Optional[str] = None
    poster: Optional[str] = None
    background: Optional[str] = None
    logo: Optional[str] = None
    runtime: Optional[Union[int, str]] = None
    imdbRating: Optional[float] = None
    dateAdded: str = Field(default_factory=utc_now_iso)

    @field_validator("genre", "director", "cast", mode="before")
    @classmethod
    def _split_lists(cls, value):
        return split_list(value)

    @field_validator("year", "runtime", "imdbRating", "description", "poster", "background", "logo", mode="before")
    @classmethod
    def _blank_is_missing(cls, value):
        return None if value == "" else value


class MovieSchema(MediaBase):
    type: str = "movie"
    url: str
    quality: Optional[str] = None
    language: Optional[str] = None

    @field_validator("quality", "language", mode="before")
    @classmethod
    def _blank_stream_info(cls, value):
        return None if value == "" else value


class SeriesSchema(MediaBase):
    type: str = "series"


class EpisodeSchema(BaseModel):
    id: str = ""
    seriesId: str
    name: str
    season: int
    episode: int
    description: Optional[str] = None
    poster: Optional[str] = None
    year: Optional[Union[int, str]] = None
    runtime: Optional[Union[int, str]] = None
    url: str
    quality: Optional[str] = None
    language: Optional[str] = None
    dateAdded: str = Field(default_factory=utc_now_iso)

    @field_validator("description", "poster", "year", "runtime", "quality", "language", mode="before")
    @classmethod
    def _blank_is_missing(cls, value):
        return None if value == "" else value

    @model_validator(mode="after")
    def _derive_id(self):
        # The composite id always follows the structured fields
        self.id = episode_id(self.seriesId, self.season, self.episode)
        return self

    @property
    def key(self):
        return (self.seriesId, self.season, self.episode)


def episode_id(series_id: str, season: int, episode: int) -> str:
    return f"{series_id}:{season}:{episode}"


MOVIE_REQUIRED = ("id", "name", "url")
SERIES_REQUIRED = ("id", "name")
EPISODE_REQUIRED = ("seriesId", "name", "season", "episode", "url")

Model = TypeVar("Model", bound=BaseModel)


def parse_payload(schema: Type[Model], payload: Dict[str, Any], required: Sequence[str]) -> Model:
    """Validate an admin payload and build the record it describes.

    Server-managed fields (``dateAdded``, ``type``, the episode ``id``) are
    ignored if the client sends them.
    """
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")
    missing = [name for name in required if payload.get(name) is None or payload.get(name) == ""]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")
    ignored = {"dateAdded", "type"} if "id" in required else {"dateAdded", "type", "id"}
    data = {k: v for k, v in payload.items() if k not in ignored}
    try:
        return schema.model_validate(data)
    except PydanticValidationError as e:
        problems = "; ".join(f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors())
        raise ValidationError(f"Invalid fields: {problems}") from e


def dump(record: BaseModel) -> Dict[str, Any]:
    return record.model_dump(exclude_none=True)
