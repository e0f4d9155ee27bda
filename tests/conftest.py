import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
root_str = str(ROOT)
if root_str not in sys.path:
    sys.path.insert(0, root_str)


@pytest.fixture(autouse=True)
def _reset_api_singletons():
    """Each test gets a fresh config/gateway and no leftover dependency overrides."""
    from src.forge.api import dependencies
    from src.forge.api.main import app

    dependencies.reset_singletons()
    try:
        yield
    finally:
        app.dependency_overrides.clear()
        dependencies.reset_singletons()
