# Configuration module for server-side constants and defaults.
# Values can be overridden through the environment or a local .env file.

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes")


# Which store backs the submissions collection: "memory", "sql", "supabase" or "firebase".
STORE_BACKEND = os.getenv("STORE_BACKEND", "sql")

# SQLAlchemy URL for the "sql" backend. Point it at Supabase's Postgres to share
# the timestamptz table that `phrasegate-rules --backend supabase` creates.
DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{Path(__file__).parent / 'phrasegate.db'}")

# Supabase project settings for the "supabase" backend.
SUPABASE_URL = os.getenv("SUPABASE_URL", "")
SUPABASE_KEY = os.getenv("SUPABASE_KEY", "")

# Firebase Realtime Database for the "firebase" backend, e.g.
# https://<project>-default-rtdb.firebaseio.com, plus an optional auth token.
FIREBASE_DATABASE_URL = os.getenv("FIREBASE_DATABASE_URL", "")
FIREBASE_AUTH = os.getenv("FIREBASE_AUTH", "")

# Secret key for signing session tokens and the theme cookie.
SECRET_KEY = os.getenv("SECRET_KEY", "change-me-in-prod-please")

# Who may write submissions: "open", "authenticated", "rate_limited" or "closed".
# "authenticated" needs a hosted backend; the memory and sql backends refuse it.
WRITE_POLICY = os.getenv("WRITE_POLICY", "open")

# Writes allowed per client address per hour under the "rate_limited" policy.
WRITE_RATE_LIMIT = int(os.getenv("WRITE_RATE_LIMIT", "5"))

# Leaderboard: how many records to read, how often, and in which order.
# Ascending means rank 1 is the earliest verified submission.
LEADERBOARD_LIMIT = int(os.getenv("LEADERBOARD_LIMIT", "50"))
LEADERBOARD_INTERVAL = float(os.getenv("LEADERBOARD_INTERVAL", "5"))
LEADERBOARD_ASCENDING = _flag("LEADERBOARD_ASCENDING", "true")

# Form timers after a successful write (seconds).
RESET_DELAY = 2.0
REFRESH_DELAY = 1.0

# Upper bound on any single store call (seconds).
STORE_TIMEOUT = float(os.getenv("STORE_TIMEOUT", "10"))

# Store readiness: ping attempts before giving up, and the pause between them.
INIT_ATTEMPTS = int(os.getenv("INIT_ATTEMPTS", "5"))
INIT_RETRY_DELAY = float(os.getenv("INIT_RETRY_DELAY", "0.5"))

# Form sessions idle for longer than this are dropped (seconds).
SESSION_TTL = 60 * 60 * 8

# CORS origins (if you deploy the client separately, add its domain here).
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

DEBUG = _flag("DEBUG", "false")
