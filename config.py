from os import getenv
from dotenv import load_dotenv

# Load environment variables from a file named 'config.env'
load_dotenv("config.env")


def _flag(name: str, default: str = "false") -> bool:
    return getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class Settings:
    # Server configuration
    BASE_URL = getenv("BASE_URL", "http://127.0.0.1:8000").rstrip('/')
    PORT = int(getenv("PORT", "8000"))

    # Addon descriptor
    ADDON_ID = getenv("ADDON_ID", "com.tudominio.myaddon")
    ADDON_NAME = getenv("ADDON_NAME", "Reproducir ahora")
    ADDON_VERSION = getenv("ADDON_VERSION", "1.0.0")
    ADDON_DESCRIPTION = getenv("ADDON_DESCRIPTION", "Contenido en Español Latino con CDN optimizado")
    ADDON_LOGO = getenv("ADDON_LOGO", "https://via.placeholder.com/200x200.png?text=Mi+Addon")
    ADDON_BACKGROUND = getenv("ADDON_BACKGROUND", "https://via.placeholder.com/1920x1080.png?text=Background")
    MOVIE_CATALOG_ID = getenv("MOVIE_CATALOG_ID", "my-movies")
    SERIES_CATALOG_ID = getenv("SERIES_CATALOG_ID", "my-series")
    CATALOG_NAME = getenv("CATALOG_NAME", "Recomendación")

    # Storage backend: memory, file, sharded or github. Empty means "pick from what is configured".
    STORAGE_BACKEND = getenv("STORAGE_BACKEND", "").strip().lower()
    DATA_FILE = getenv("DATA_FILE", "data/content.json")
    DATA_DIR = getenv("DATA_DIR", "data")
    BACKUP_ON_WRITE = _flag("BACKUP_ON_WRITE")
    BACKUP_INTERVAL = int(getenv("BACKUP_INTERVAL", "3600"))
    BACKUP_KEEP = int(getenv("BACKUP_KEEP", "10"))

    # GitHub Contents API storage
    GITHUB_TOKEN = getenv("GITHUB_TOKEN", "")
    GITHUB_OWNER = getenv("GITHUB_OWNER", "")
    GITHUB_REPO = getenv("GITHUB_REPO", "")
    GITHUB_BRANCH = getenv("GITHUB_BRANCH", "main")
    GITHUB_API_URL = getenv("GITHUB_API_URL", "https://api.github.com").rstrip('/')

    # Cloudflare CDN
    CDN_DOMAIN = getenv("CDN_DOMAIN", "")
    CLOUDFLARE_ZONE_ID = getenv("CLOUDFLARE_ZONE_ID", "")
    CLOUDFLARE_API_TOKEN = getenv("CLOUDFLARE_API_TOKEN", "")

    # The Movie Database (TMDb) API Key
    TMDB_API_KEY = getenv("TMDB_API_KEY", "")
    TMDB_LANGUAGE = getenv("TMDB_LANGUAGE", "es-MX")
    TMDB_REGION = getenv("TMDB_REGION", "MX")

    @property
    def github_configured(self) -> bool:
        return bool(self.GITHUB_TOKEN and self.GITHUB_OWNER and self.GITHUB_REPO)

    @property
    def cloudflare_configured(self) -> bool:
        return bool(self.CLOUDFLARE_ZONE_ID and self.CLOUDFLARE_API_TOKEN)

    @property
    def storage_backend(self) -> str:
        if self.STORAGE_BACKEND:
            return self.STORAGE_BACKEND
        return "github" if self.github_configured else "file"

# Create a single instance of the settings to be used across the app
settings = Settings()
