"""
conftest.py – central pytest configuration and test bootstrap.

Pytest imports this module before it collects any test files, which lets us prepare the
environment so that subsequent imports succeed consistently:

1) Extend `sys.path` with the project root so absolute imports like `from core ...` and
   `from shared ...` resolve without an editable install.
2) Define safe environment defaults read at import time by the configuration layer: the
   mock generation provider (no credentials, no network) and console-only logging.
"""

import os
import sys
from pathlib import Path

# Ensure project root is on sys.path for direct imports like `core`, `shared`, etc.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

# Provide required environment defaults for tests
os.environ.setdefault("LLM_PROVIDER", "mock")
os.environ.setdefault("LOG_FILE_PATH", "")
