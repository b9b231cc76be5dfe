import math

import pytest

from conftest import FakeAdapter
from truckload.exceptions import PaginationError
from truckload.migration.cursor import CursorEngine
from truckload.models import Cursor, Page, Video


CATALOG = [f"v{i}" for i in range(1, 8)]


class TestPages:
    def test_fetches_ceil_total_over_page_size_pages(self, settings, credential):
        adapter = FakeAdapter(CATALOG, page_size=3)
        engine = CursorEngine(adapter, credential)

        pages = list(engine.pages())

        assert len(pages) == math.ceil(len(CATALOG) / 3)
        assert adapter.fetch_page_calls == 3
        assert pages[-1].exhausted
        assert [v.source_id for p in pages for v in p.videos] == CATALOG

    def test_rejects_cursor_from_another_platform(self, settings, credential):
        engine = CursorEngine(FakeAdapter(CATALOG), credential)
        foreign = Cursor.from_json("s3", {"token": "abc"})

        with pytest.raises(PaginationError, match="s3"):
            list(engine.pages(foreign))

    def test_adapter_failure_carries_failing_cursor(self, settings, credential):
        adapter = FakeAdapter(CATALOG, page_size=2, fail_at_offset=4)
        engine = CursorEngine(adapter, credential)
        seen = []

        with pytest.raises(PaginationError) as exc:
            for page in engine.pages():
                seen.append(page)

        assert len(seen) == 2
        assert Cursor.deserialize(exc.value.last_cursor).to_json() == {"offset": 4}

    def test_repeated_cursor_is_an_error(self, settings, credential):
        class StuckAdapter(FakeAdapter):
            def fetch_page(self, credential, cursor):
                return Page(
                    videos=[Video(source_id="v1")],
                    next_cursor=self.make_cursor(offset=1),
                    exhausted=False,
                )

        engine = CursorEngine(StuckAdapter(CATALOG), credential)
        with pytest.raises(PaginationError, match="same cursor"):
            list(engine.pages())


class TestCollect:
    def test_collects_everything_once_in_discovery_order(self, settings, credential):
        result = CursorEngine(FakeAdapter(CATALOG, page_size=3), credential).collect()

        assert [v.source_id for v in result.videos] == CATALOG
        assert result.exhausted
        assert result.cursor is None
        assert result.pages_fetched == 3

    def test_result_cap_keeps_whole_pages_and_resumes(self, settings, credential):
        adapter = FakeAdapter(CATALOG, page_size=3)
        engine = CursorEngine(adapter, credential, max_results=4)

        first = engine.collect()
        assert [v.source_id for v in first.videos] == ["v1", "v2", "v3", "v4", "v5", "v6"]
        assert not first.exhausted

        second = engine.collect(first.cursor)
        assert [v.source_id for v in second.videos] == ["v7"]
        assert second.exhausted

    def test_repeat_enumeration_yields_same_ids(self, settings, credential):
        engine = CursorEngine(FakeAdapter(CATALOG, page_size=2), credential)
        first = {v.source_id for v in engine.collect().videos}
        second = {v.source_id for v in engine.collect().videos}
        assert first == second == set(CATALOG)

    def test_duplicates_across_pages_are_dropped(self, settings, credential):
        adapter = FakeAdapter(["v1", "v2", "v2", "v3"], page_size=2)
        result = CursorEngine(adapter, credential).collect()
        assert [v.source_id for v in result.videos] == ["v1", "v2", "v3"]

    def test_failure_reports_the_cursor_the_pass_started_from(self, settings, credential):
        adapter = FakeAdapter(CATALOG, page_size=2, fail_at_offset=6)
        engine = CursorEngine(adapter, credential, max_results=3)

        first = engine.collect()
        assert first.cursor.to_json() == {"offset": 4}

        # Page at offset 4 succeeds, page at offset 6 fails
        with pytest.raises(PaginationError) as exc:
            engine.collect(first.cursor)

        assert exc.value.last_cursor == first.cursor.serialize()

    def test_failure_on_first_page_has_no_cursor(self, settings, credential):
        engine = CursorEngine(FakeAdapter(CATALOG, fail_at_offset=0), credential)
        with pytest.raises(PaginationError) as exc:
            engine.collect()
        assert exc.value.last_cursor is None
