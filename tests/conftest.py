"""
Pytest configuration for tests under tests/.

Tests import the package as `quizflow.*` and shared builders as
`tests.fixtures.*`. This keeps the repo root on sys.path regardless of the
invocation cwd (the package need not be installed).
"""

from __future__ import annotations

import sys
from pathlib import Path


REPO_ROOT = Path(__file__).resolve().parents[1]

if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))
