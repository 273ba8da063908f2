"""Tests for paged pick loading."""

import pytest

from ranking_engine.services.stores import fetch_all_picks
from tests.conftest import FakePickStore, make_picks


class TestFetchAllPicks:
    """Tests for fetch_all_picks()."""

    @pytest.fixture
    def store(self) -> FakePickStore:
        return FakePickStore(make_picks("a", 1, "HDA") + make_picks("b", 1, "AA"))

    async def test_loops_until_short_page(self, store):
        picks = await fetch_all_picks(store, None, 1, 1, page_size=2)

        assert len(picks) == 5
        assert [call["offset"] for call in store.calls] == [0, 2, 4]

    async def test_exact_multiple_needs_one_empty_page(self):
        store = FakePickStore(make_picks("a", 1, "HDAH"))

        picks = await fetch_all_picks(store, ["a"], 1, 1, page_size=2)

        assert len(picks) == 4
        assert [call["offset"] for call in store.calls] == [0, 2, 4]

    async def test_single_short_page(self, store):
        picks = await fetch_all_picks(store, ["b"], 1, 1, page_size=1000)

        assert [p.user_id for p in picks] == ["b", "b"]
        assert len(store.calls) == 1

    async def test_passes_filters(self, store):
        await fetch_all_picks(store, ["a"], 3, 7, page_size=10)

        assert store.calls[0] == {"user_ids": ["a"], "gw_from": 3, "gw_to": 7, "offset": 0, "limit": 10}

    async def test_empty_user_list_skips_store(self, store):
        assert await fetch_all_picks(store, [], 1, 1) == []
        assert store.calls == []

    async def test_rejects_non_positive_page_size(self, store):
        with pytest.raises(ValueError, match="page_size"):
            await fetch_all_picks(store, None, 1, 1, page_size=0)
