"""
Root pytest configuration for the Django project.

pytest-django loads config.test_settings (see [tool.pytest.ini_options]
in pyproject.toml). This module adds project-wide markers and fixtures.
App-specific fixtures are defined in each app's tests/conftest.py.
"""

import pytest
from django.core.cache import cache


def pytest_collection_modifyitems(items):
    """
    Auto-mark tests based on filename patterns.

    Mapping:
    - test_integration.py → e2e (full user journey workflows)
    - test_views.py, test_services.py, test_consumers.py, etc. → integration
    - test_models.py, test_scanner.py, test_types.py, etc. → unit
    - Unmatched files → integration (safe default for Django)

    Explicit markers on test functions/classes take precedence.
    """
    e2e_patterns = ["test_integration.py"]

    integration_patterns = [
        "test_views.py",
        "test_services.py",
        "test_tasks.py",
        "test_consumers.py",
        "test_broadcast.py",
        "test_message_reactions.py",
        "test_message_search.py",
        "test_presence.py",
        "test_typing.py",
        "test_uploader.py",
    ]

    unit_patterns = [
        "test_models.py",
        "test_serializers.py",
        "test_scanner.py",
        "test_types.py",
        "test_exceptions.py",
        "test_soft_delete_mixin.py",
    ]

    for item in items:
        # Skip if test already has unit/integration/e2e marker
        existing_markers = {m.name for m in item.iter_markers()}
        if existing_markers & {"unit", "integration", "e2e"}:
            continue

        filename = str(item.fspath).split("/")[-1]

        if any(pattern in filename for pattern in e2e_patterns):
            item.add_marker(pytest.mark.e2e)
        elif any(pattern in filename for pattern in integration_patterns):
            item.add_marker(pytest.mark.integration)
        elif any(pattern in filename for pattern in unit_patterns):
            item.add_marker(pytest.mark.unit)
        else:
            item.add_marker(pytest.mark.integration)


@pytest.fixture(autouse=True)
def clear_cache():
    """Presence and typing live in the cache; start every test empty."""
    cache.clear()
    yield
    cache.clear()
