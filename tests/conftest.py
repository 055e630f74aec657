import sys
from pathlib import Path

# Ensure the `leadfinder` package and the shared fakes are importable when running pytest from the repo root.
ROOT = Path(__file__).resolve().parents[1]
HERE = Path(__file__).resolve().parent
for path in (ROOT, HERE):
    if str(path) not in sys.path:
        sys.path.insert(0, str(path))
