import sys
from pathlib import Path

import pytest

# Tests run from a checkout without installing the package:
# make `objectstore` importable from the repo root.
REPO_ROOT = Path(__file__).resolve().parents[1]

if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))


@pytest.fixture(autouse=True)
def _fresh_settings():
    from objectstore.core.settings import get_settings

    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
