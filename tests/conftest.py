import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import pytest  # noqa: E402
from harness_lib import config as harness_config  # noqa: E402


@pytest.fixture(autouse=True)
def reset_harness_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Isolate harness env vars between tests."""

    for var in harness_config.HARNESS_ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    harness_config.integration_root.cache_clear()
