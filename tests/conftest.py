"""Marker registration, execution ordering, and shared artifact fixtures."""

from __future__ import annotations

from pathlib import Path

import pytest


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line("markers", "unit: pure computations over in-memory records")
    config.addinivalue_line("markers", "integration: artifact files, git, or subprocess boundaries")
    config.addinivalue_line("markers", "slow: real agent or git invocations")


def pytest_collection_modifyitems(items: list[pytest.Item]) -> None:
    """Unit tests first, then integration, then slow."""
    rank = {"slow": 2, "integration": 1}

    def sort_key(item: pytest.Item) -> tuple[int, str]:
        for marker, value in rank.items():
            if item.get_closest_marker(marker):
                return (value, item.nodeid)
        return (0, item.nodeid)

    items.sort(key=sort_key)


@pytest.fixture
def artifacts_dir(tmp_path: Path) -> Path:
    """An empty artifacts tree with runs/, traces/ and reports/."""
    root = tmp_path / "artifacts"
    for name in ("runs", "traces", "reports"):
        (root / name).mkdir(parents=True)
    return root
