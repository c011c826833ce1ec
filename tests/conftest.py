import sys
from pathlib import Path


TESTS_PATH = Path(__file__).resolve().parent
BACKEND_PATH = TESTS_PATH.parent / "backend"
for path in (BACKEND_PATH, TESTS_PATH):
    if str(path) not in sys.path:
        sys.path.append(str(path))
