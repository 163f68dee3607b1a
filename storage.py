"""Persistence strategies for the content store.

Every backend speaks the same small protocol: ``load()`` returns a snapshot
``{"movies": [...], "series": [...], "episodes": [...]}`` (creating empty
backing storage when none exists) and ``save(section, records)`` durably
replaces one section. The strategy is chosen once at startup by
``build_storage``.
"""
import asyncio
import base64
import json
import logging
import os
import shutil
import tempfile
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import httpx

from errors import PersistenceError, StaleVersionError, ValidationError

LOGGER = logging.getLogger(__name__)

SECTIONS = ("movies", "series", "episodes")

GITHUB_FILES = {
    "movies": "data/movies.json",
    "series": "data/series.json",
    "episodes": "data/episodes.json",
}

Snapshot = Dict[str, List[Dict[str, Any]]]


def empty_snapshot() -> Snapshot:
    return {section: [] for section in SECTIONS}


def _timestamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")


def _check_section(section: str):
    if section not in SECTIONS:
        raise ValueError(f"Unknown section '{section}'")


def _read_json(path: Path) -> Any:
    try:
        with path.open("r", encoding="utf-8") as fh:
            return json.load(fh)
    except (OSError, ValueError) as e:
        raise PersistenceError(f"Could not read {path}: {e}") from e


def _atomic_write(path: Path, data: Any):
    """Write JSON next to the target and rename it into place."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            json.dump(data, fh, ensure_ascii=False, indent=2)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp_name, path)
    except OSError as e:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise PersistenceError(f"Could not write {path}: {e}") from e


def _file_stats(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {"path": str(path), "exists": False}
    stat = path.stat()
    return {
        "path": str(path),
        "exists": True,
        "size": stat.st_size,
        "modified": datetime.fromtimestamp(stat.st_mtime, timezone.utc).isoformat(),
    }


class Storage:
    name = "base"
    supports_backup = False

    async def load(self) -> Snapshot:
        raise NotImplementedError

    async def save(self, section: str, records: List[Dict[str, Any]]):
        raise NotImplementedError

    async def backup(self) -> Dict[str, Any]:
        raise ValidationError(f"The '{self.name}' storage backend does not support backups")

    def describe(self) -> Dict[str, Any]:
        return {"backend": self.name}


class MemoryStorage(Storage):
    """Keeps the last saved snapshot in process memory only.

    ``fail_with`` makes every ``save`` raise, which is how a broken backend
    is simulated.
    """
    name = "memory"

    def __init__(self, initial: Optional[Snapshot] = None):
        self.data = empty_snapshot()
        if initial:
            self.data.update({k: list(v) for k, v in initial.items()})
        self.fail_with: Optional[str] = None
        self.saves: List[str] = []

    async def load(self) -> Snapshot:
        return {section: list(self.data.get(section, [])) for section in SECTIONS}

    async def save(self, section: str, records: List[Dict[str, Any]]):
        _check_section(section)
        if self.fail_with:
            raise PersistenceError(self.fail_with)
        self.data[section] = list(records)
        self.saves.append(section)

    def describe(self) -> Dict[str, Any]:
        return {"backend": self.name, "counts": {k: len(v) for k, v in self.data.items()}}


class JsonFileStorage(Storage):
    """The whole store as a single JSON document on local disk."""
    name = "file"

    def __init__(self, path, backup_on_write: bool = False):
        self.path = Path(path)
        self.backup_on_write = backup_on_write
        self.backup_dir = self.path.parent / "backups"
        self._data = empty_snapshot()
        self._write_lock = asyncio.Lock()

    async def load(self) -> Snapshot:
        if not self.path.exists():
            LOGGER.info(f"{self.path} does not exist, creating an empty database")
            self._data = empty_snapshot()
            await asyncio.to_thread(_atomic_write, self.path, self._data)
            return empty_snapshot()
        raw = await asyncio.to_thread(_read_json, self.path)
        if not isinstance(raw, dict):
            raise PersistenceError(f"{self.path} does not contain a JSON object")
        self._data = {section: list(raw.get(section) or []) for section in SECTIONS}
        return {section: list(records) for section, records in self._data.items()}

    async def save(self, section: str, records: List[Dict[str, Any]]):
        _check_section(section)
        # The cache is updated before any await and writes are serialized, so a
        # save of one section never overwrites a concurrent save of another.
        previous = self._data[section]
        current = list(records)
        self._data[section] = current
        try:
            async with self._write_lock:
                if self.backup_on_write and self.path.exists():
                    await asyncio.to_thread(self._rotate_backup)
                await asyncio.to_thread(_atomic_write, self.path, dict(self._data))
        except PersistenceError:
            if self._data[section] is current:
                self._data[section] = previous
            raise

    def _rotate_backup(self):
        self.backup_dir.mkdir(parents=True, exist_ok=True)
        target = self.backup_dir / f"{self.path.stem}.{_timestamp()}{self.path.suffix}"
        try:
            shutil.copy2(self.path, target)
        except OSError as e:
            raise PersistenceError(f"Could not back up {self.path}: {e}") from e

    def describe(self) -> Dict[str, Any]:
        return {"backend": self.name, "file": _file_stats(self.path), "backupOnWrite": self.backup_on_write}


class ShardedJsonStorage(Storage):
    """One JSON file per section plus timestamped backup directories."""
    name = "sharded"
    supports_backup = True

    def __init__(self, data_dir, keep: int = 10):
        self.data_dir = Path(data_dir)
        self.backup_dir = self.data_dir / "backups"
        self.keep = keep

    def section_path(self, section: str) -> Path:
        return self.data_dir / f"{section}.json"

    async def load(self) -> Snapshot:
        snapshot = empty_snapshot()
        for section in SECTIONS:
            path = self.section_path(section)
            if not path.exists():
                LOGGER.info(f"{path} does not exist, creating it empty")
                await asyncio.to_thread(_atomic_write, path, [])
                continue
            records = await asyncio.to_thread(_read_json, path)
            if not isinstance(records, list):
                raise PersistenceError(f"{path} does not contain a JSON array")
            snapshot[section] = records
        return snapshot

    async def save(self, section: str, records: List[Dict[str, Any]]):
        _check_section(section)
        await asyncio.to_thread(_atomic_write, self.section_path(section), list(records))

    async def backup(self) -> Dict[str, Any]:
        return await asyncio.to_thread(self._backup)

    def _backup(self) -> Dict[str, Any]:
        target = self.backup_dir / _timestamp()
        copied = []
        try:
            target.mkdir(parents=True, exist_ok=True)
            for section in SECTIONS:
                source = self.section_path(section)
                if source.exists():
                    shutil.copy2(source, target / source.name)
                    copied.append(source.name)
        except OSError as e:
            raise PersistenceError(f"Backup to {target} failed: {e}") from e
        removed = self._prune()
        LOGGER.info(f"Backup written to {target} ({len(copied)} files, {removed} old backups removed)")
        return {"path": str(target), "files": copied, "removed": removed}

    def _prune(self) -> int:
        backups = self.list_backups()
        stale = backups[:-self.keep] if self.keep > 0 else []
        for path in stale:
            shutil.rmtree(path, ignore_errors=True)
        return len(stale)

    def list_backups(self) -> List[Path]:
        if not self.backup_dir.exists():
            return []
        return sorted(p for p in self.backup_dir.iterdir() if p.is_dir())

    def describe(self) -> Dict[str, Any]:
        return {
            "backend": self.name,
            "files": {section: _file_stats(self.section_path(section)) for section in SECTIONS},
            "backups": len(self.list_backups()),
            "keep": self.keep,
        }


@dataclass
class VersionedContent:
    """A decoded remote file and the blob sha it was read at."""
    value: Any
    sha: Optional[str]


class GitHubStorage(Storage):
    """Each section is a JSON file in a GitHub repository.

    Writes are conditional on the blob sha from the previous read or write,
    so an edit made behind our back turns into a ``StaleVersionError``
    instead of being overwritten.
    """
    name = "github"

    def __init__(self, token: str, owner: str, repo: str, branch: str = "main",
                 api_url: str = "https://api.github.com", files: Optional[Dict[str, str]] = None,
                 timeout: float = 30.0):
        self.token = token
        self.owner = owner
        self.repo = repo
        self.branch = branch
        self.api_url = api_url.rstrip('/')
        self.files = dict(files or GITHUB_FILES)
        self.timeout = timeout
        self.shas: Dict[str, Optional[str]] = {}

    @property
    def configured(self) -> bool:
        return bool(self.token and self.owner and self.repo)

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.token}",
            "Accept": "application/vnd.github+json",
            "User-Agent": "Stremio-Addon",
        }

    def contents_url(self, path: str) -> str:
        return f"{self.api_url}/repos/{self.owner}/{self.repo}/contents/{path}"

    @staticmethod
    def _failure(response: httpx.Response) -> str:
        try:
            detail = response.json().get("message") or response.text
        except ValueError:
            detail = response.text
        return f"GitHub API Error: {response.status_code} - {detail}"

    async def read(self, path: str) -> Optional[VersionedContent]:
        """Fetch and decode a file; ``None`` when it does not exist."""
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(self.contents_url(path), headers=self._headers(), params={"ref": self.branch})
        except httpx.RequestError as e:
            raise PersistenceError(f"Could not reach GitHub while reading {path}: {e}") from e
        if response.status_code == 404:
            return None
        if not response.is_success:
            raise PersistenceError(self._failure(response))
        try:
            body = response.json()
            value = json.loads(base64.b64decode(body["content"]).decode("utf-8"))
            return VersionedContent(value=value, sha=body["sha"])
        except (KeyError, TypeError, ValueError) as e:
            raise PersistenceError(f"Malformed GitHub response for {path}: {e}") from e

    async def write(self, path: str, value: Any, sha: Optional[str]) -> VersionedContent:
        """Create or update a file; ``sha`` must be the version last seen."""
        encoded = json.dumps(value, ensure_ascii=False, separators=(",", ":")).encode("utf-8")
        payload = {
            "message": f"Update {path}",
            "content": base64.b64encode(encoded).decode("ascii"),
            "branch": self.branch,
        }
        if sha:
            payload["sha"] = sha
        LOGGER.info(f"Writing {path} to GitHub {self.owner}/{self.repo}@{self.branch}")
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.put(self.contents_url(path), headers=self._headers(), json=payload)
        except httpx.RequestError as e:
            raise PersistenceError(f"Could not reach GitHub while writing {path}: {e}") from e
        if response.status_code in (409, 422):
            raise StaleVersionError(f"{path} changed on GitHub since it was last read ({self._failure(response)})")
        if not response.is_success:
            raise PersistenceError(self._failure(response))
        try:
            new_sha = response.json()["content"]["sha"]
        except (KeyError, TypeError, ValueError) as e:
            raise PersistenceError(f"Malformed GitHub response for {path}: {e}") from e
        return VersionedContent(value=value, sha=new_sha)

    async def load(self) -> Snapshot:
        if not self.configured:
            raise PersistenceError("GitHub storage needs GITHUB_TOKEN, GITHUB_OWNER and GITHUB_REPO")
        snapshot = empty_snapshot()
        for section in SECTIONS:
            path = self.files[section]
            current = await self.read(path)
            if current is None:
                LOGGER.info(f"{path} does not exist on GitHub, creating it empty")
                current = await self.write(path, [], None)
            if not isinstance(current.value, list):
                raise PersistenceError(f"{path} on GitHub does not contain a JSON array")
            self.shas[section] = current.sha
            snapshot[section] = current.value
        return snapshot

    async def save(self, section: str, records: List[Dict[str, Any]]):
        _check_section(section)
        result = await self.write(self.files[section], list(records), self.shas.get(section))
        self.shas[section] = result.sha

    def describe(self) -> Dict[str, Any]:
        return {
            "backend": self.name,
            "configured": self.configured,
            "owner": self.owner or None,
            "repo": self.repo or None,
            "branch": self.branch,
            "files": self.files,
            "versions": dict(self.shas),
        }


def build_storage(settings) -> Storage:
    backend = settings.storage_backend
    if backend == "memory":
        return MemoryStorage()
    if backend == "file":
        return JsonFileStorage(settings.DATA_FILE, backup_on_write=settings.BACKUP_ON_WRITE)
    if backend == "sharded":
        return ShardedJsonStorage(settings.DATA_DIR, keep=settings.BACKUP_KEEP)
    if backend == "github":
        return GitHubStorage(settings.GITHUB_TOKEN, settings.GITHUB_OWNER, settings.GITHUB_REPO,
                             branch=settings.GITHUB_BRANCH, api_url=settings.GITHUB_API_URL)
    raise ValueError(f"Unknown STORAGE_BACKEND '{backend}'")
