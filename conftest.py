"""Global pytest configuration."""

import os

# get_settings() is cached, so this runs before any test touches it.
# Without REDIS_URL post-commit sinks only log.
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.pop("REDIS_URL", None)
