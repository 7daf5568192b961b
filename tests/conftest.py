import os
import pathlib
import sys
import pytest


# Ensure repo root is on PYTHONPATH for direct package imports (e.g. `import docauth`).
_REPO_ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(_REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(_REPO_ROOT))


def _env_flag(name: str) -> bool:
    v = (os.environ.get(name) or '').strip().lower()
    return v in {'1', 'true', 'yes', 'y', 'on'}


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line(
        "markers",
        "slow: slow correctness tests (skipped unless DOCAUTH_RUN_SLOW=1)",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list) -> None:
    run_slow = _env_flag('DOCAUTH_RUN_SLOW')

    for item in items:
        if 'slow' in item.keywords and not run_slow:
            item.add_marker(pytest.mark.skip(reason='slow tests skipped; set DOCAUTH_RUN_SLOW=1 to enable'))


@pytest.fixture(autouse=True)
def _fresh_config(monkeypatch):
    """Every test starts from default configuration and no DOCAUTH_* overrides."""
    from docauth.config import ConfigManager

    for name in list(os.environ):
        if name.startswith("DOCAUTH_") and name != "DOCAUTH_RUN_SLOW":
            monkeypatch.delenv(name, raising=False)
    monkeypatch.delenv("SOURCE_DATE_EPOCH", raising=False)
    ConfigManager().reset()
    yield
    ConfigManager().reset()


@pytest.fixture
def a2_quote():
    """Elder-tech A2 with two add-ons, generated 2025-03-01."""
    from docauth.quote import build_quote

    return build_quote(
        "A2",
        ["gentle-checkin", "door-awareness"],
        generated_at="2025-03-01T15:30:00Z",
        customer_name="Ada Lovelace",
        contact="ada@example.com",
        city="Kapolei",
        home_type="Single-family",
        home_size="1800 sq ft",
        internet_reliability="Stable",
    )
