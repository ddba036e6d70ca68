import sys
from pathlib import Path


# Ensure src is on sys.path for tests so that `glutenscan.*` imports work without an install.
ROOT = Path(__file__).resolve().parent
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))
