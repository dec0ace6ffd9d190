from __future__ import annotations

import os
import sys
from pathlib import Path

# Add backend folder to sys.path so `import fisboard...` works in tests when running from the repo root
BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

# Keep test runs off the developer database and away from external services
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.pop("SENTRY_DSN", None)
os.environ.pop("N8N_WEBHOOK_URL", None)
