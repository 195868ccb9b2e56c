"""Root conftest for the app test suite.

Sets environment variables before any test module imports main.py, which
reads RUNLEDGER_TICKER at module load time.
"""

import os

# Tests drive session ticks explicitly.
os.environ.setdefault("RUNLEDGER_TICKER", "0")
