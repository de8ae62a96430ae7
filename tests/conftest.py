"""Pytest configuration for the funding arbitrage engine tests."""

import os
import sys
import tempfile
from pathlib import Path

PROJECT_ROOT = Path(__file__).parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

# Log files go to a scratch directory instead of the repo's logs/
os.environ.setdefault("ARB_LOG_DIR", tempfile.mkdtemp(prefix="arb-test-logs-"))

pytest_plugins = ["pytest_asyncio"]
