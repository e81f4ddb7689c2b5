"""
Application configuration.

Settings are loaded from environment variables with sensible defaults
for local development. In production, set these via a .env file or
your hosting platform's environment variable settings.
"""

import os


def _bool(name: str, default: bool) -> bool:
    return os.getenv(name, str(default)).strip().lower() in ("1", "true", "yes", "on")


# Async SQLAlchemy URL. SQLite via aiosqlite by default; use
# "postgresql+asyncpg://..." in production.
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./frontbase.db")

# The dashboard origin (CORS + post-login redirect) and the public URL of
# this API (baked into generated CI workflows so runners can call back).
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:5173")
BACKEND_URL = os.getenv("BACKEND_URL", "http://localhost:8000")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Session and repository tokens are HS256 JWTs signed with this secret.
JWT_SECRET = os.getenv("JWT_SECRET", "dev-secret-change-me")
AUTH_TOKEN_TTL_DAYS = int(os.getenv("AUTH_TOKEN_TTL_DAYS", "7"))
REPO_TOKEN_TTL_DAYS = int(os.getenv("REPO_TOKEN_TTL_DAYS", "365"))
COOKIE_SECURE = _bool("COOKIE_SECURE", False)

# GitHub OAuth app + REST API.
GITHUB_OAUTH_CLIENT_ID = os.getenv("GITHUB_OAUTH_CLIENT_ID", "")
GITHUB_OAUTH_CLIENT_SECRET = os.getenv("GITHUB_OAUTH_CLIENT_SECRET", "")
GITHUB_OAUTH_SCOPES = os.getenv("GITHUB_OAUTH_SCOPES", "user:email repo workflow")
GITHUB_API_URL = os.getenv("GITHUB_API_URL", "https://api.github.com")

# S3-compatible object storage (Cloudflare R2).
R2_ENDPOINT = os.getenv("R2_ENDPOINT", "")
R2_ACCESS_KEY_ID = os.getenv("R2_ACCESS_KEY_ID", "")
R2_SECRET_ACCESS_KEY = os.getenv("R2_SECRET_ACCESS_KEY", "")
R2_BUCKET_NAME = os.getenv("R2_BUCKET_NAME", "")

# Cloudflare Workers KV namespace that maps subdomains to storage prefixes.
CF_ACCOUNT_ID = os.getenv("CF_ACCOUNT_ID", "")
CF_KV_NAMESPACE_ID = os.getenv("CF_KV_NAMESPACE_ID", "")
CF_EMAIL = os.getenv("CF_EMAIL", "")
CF_API_KEY = os.getenv("CF_API_KEY", "")

# Deployed sites are served from https://{owner}-{repo}.{PUBLIC_DOMAIN}
PUBLIC_DOMAIN = os.getenv("PUBLIC_DOMAIN", "frontbase.space")

# Scratch space for uploaded archives and their extracted contents.
UPLOAD_DIR = os.getenv("UPLOAD_DIR", "uploads")
MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", str(100 * 1024 * 1024)))

# Polling budgets. GitHub needs a few seconds before a freshly committed
# workflow shows up in its workflow list; a build usually finishes well
# within the run monitor window.
WORKFLOW_DISCOVERY_ATTEMPTS = int(os.getenv("WORKFLOW_DISCOVERY_ATTEMPTS", "5"))
WORKFLOW_DISCOVERY_DELAY = float(os.getenv("WORKFLOW_DISCOVERY_DELAY", "3.0"))
RUN_MONITOR_ATTEMPTS = int(os.getenv("RUN_MONITOR_ATTEMPTS", "20"))
RUN_MONITOR_DELAY = float(os.getenv("RUN_MONITOR_DELAY", "5.0"))
POLL_BACKOFF_FACTOR = float(os.getenv("POLL_BACKOFF_FACTOR", "1.0"))
POLL_JITTER = float(os.getenv("POLL_JITTER", "0.0"))

# A pipeline lock older than this is considered orphaned (crashed worker).
PIPELINE_LOCK_TTL_SECONDS = int(os.getenv("PIPELINE_LOCK_TTL_SECONDS", "1800"))
