from __future__ import annotations

"""Shared pytest fixtures and test environment defaults."""

import os
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[2]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

os.environ["EMBEDDING_PROVIDER"] = "hash"
os.environ["GENERATIVE_PROVIDER"] = "none"
os.environ.pop("VERTEX_ACCESS_TOKEN", None)
os.environ.setdefault("EMBEDDING_DIMENSION", "256")
os.environ.setdefault("ARBITER_METRICS_ENABLED", "true")
