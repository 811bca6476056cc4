"""Unit-specific fixtures (no I/O beyond tmp_path)."""

from __future__ import annotations

import pytest

from launchindex.index import IndexStore
from tests.helpers import make_entry


@pytest.fixture()
def index() -> IndexStore:
    """Small index: Firefox used 5 times, Files twice, Terminal never."""
    return IndexStore(
        [
            make_entry("Firefox", usage_count=5),
            make_entry("Files", usage_count=2),
            make_entry("Terminal"),
        ]
    )
