"""Global pytest configuration."""

import os

# Settings are read from the environment on first use; keep tests off real services
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.pop("DATABASE_URL", None)
os.environ.pop("REDIS_URL", None)
