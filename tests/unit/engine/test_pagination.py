"""Tests for pagination strategies."""

import httpx
import pytest

from sluice.engine.pagination import (
    NextCursorPager,
    PageNumberPager,
    PageState,
    SinglePagePager,
    TotalPagesPager,
    cursor_from_path,
    dig,
    total_pages_from_count,
    total_pages_from_link_header,
)


def _response(headers: dict[str, str] | None = None) -> httpx.Response:
    return httpx.Response(200, headers=headers or {}, request=httpx.Request("GET", "https://api.test/items"))


def _link(last: int | None = None, next_: int | None = None) -> dict[str, str]:
    parts = []
    if next_ is not None:
        parts.append(f'<https://api.test/items?page={next_}&per_page=2>; rel="next"')
    if last is not None:
        parts.append(f'<https://api.test/items?page={last}&per_page=2>; rel="last"')
    return {"Link": ", ".join(parts)}


class TestDig:
    def test_nested_path(self) -> None:
        assert dig({"data": {"items": [1]}}, "data.items") == [1]

    def test_empty_path_returns_body(self) -> None:
        assert dig([1, 2], None) == [1, 2]
        assert dig([1, 2], "") == [1, 2]

    def test_missing_segment_raises(self) -> None:
        with pytest.raises(KeyError, match="missing 'items'"):
            dig({"data": {}}, "data.items")

    def test_missing_segment_with_default(self) -> None:
        assert dig({"data": []}, "data.items", None) is None


class TestPageState:
    def test_advance(self) -> None:
        state = PageState(number=1, size=50).advance(cursor="abc")

        assert state == PageState(number=2, size=50, offset=50, cursor="abc")


class TestSinglePagePager:
    def test_never_advances(self) -> None:
        pager = SinglePagePager()
        state = pager.first(10)

        assert pager.params(state) == {"per_page": 10}
        assert pager.next(state, _response(), [], list(range(10))) is None


class TestPageNumberPager:
    def test_params(self) -> None:
        pager = PageNumberPager()

        assert pager.params(pager.first(100)) == {"per_page": 100, "page": 1}

    def test_full_page_advances(self) -> None:
        pager = PageNumberPager()
        state = pager.first(2)

        nxt = pager.next(state, _response(), None, [1, 2])

        assert nxt is not None
        assert nxt.number == 2

    def test_short_page_ends(self) -> None:
        pager = PageNumberPager()

        assert pager.next(pager.first(2), _response(), None, [1]) is None

    def test_max_pages(self) -> None:
        pager = PageNumberPager(max_pages=1)

        assert pager.next(pager.first(2), _response(), None, [1, 2]) is None

    def test_rejects_bad_max_pages(self) -> None:
        with pytest.raises(ValueError, match="max_pages"):
            PageNumberPager(max_pages=0)

    def test_without_size_param(self) -> None:
        pager = PageNumberPager(size_param=None, page_param="p")

        assert pager.params(pager.first(5)) == {"p": 1}


class TestTotalPagesPager:
    def test_link_header_bounds_sequence(self) -> None:
        pager = TotalPagesPager(total_pages_from_link_header)
        state = pager.first(2)

        second = pager.next(state, _response(_link(last=3, next_=2)), None, [1, 2])
        assert second is not None
        assert second.total_pages == 3

        third = pager.next(second, _response(), None, [3, 4])
        assert third is not None
        assert third.number == 3

        assert pager.next(third, _response(), None, [5, 6]) is None

    def test_single_page_without_links(self) -> None:
        pager = TotalPagesPager(total_pages_from_link_header)

        assert pager.next(pager.first(2), _response(), None, [1, 2]) is None

    def test_falls_back_to_short_page_rule(self) -> None:
        pager = TotalPagesPager(lambda response, body, size: None)
        state = pager.first(2)

        assert pager.next(state, _response(), None, [1, 2]) is not None
        assert pager.next(state, _response(), None, [1]) is None

    def test_total_from_count(self) -> None:
        pager = TotalPagesPager(total_pages_from_count("total_count"))
        state = pager.first(2)

        second = pager.next(state, _response(), {"total_count": 3}, [1, 2])

        assert second is not None
        assert second.total_pages == 2
        assert pager.next(second, _response(), {"total_count": 3}, [3]) is None


class TestTotalPagesFunctions:
    def test_link_last(self) -> None:
        assert total_pages_from_link_header(_response(_link(last=7, next_=2)), None, 2) == 7

    def test_link_next_only_is_unknown(self) -> None:
        assert total_pages_from_link_header(_response(_link(next_=2)), None, 2) is None

    def test_no_links_is_one_page(self) -> None:
        assert total_pages_from_link_header(_response(), None, 2) == 1

    @pytest.mark.parametrize(
        ("count", "expected"),
        [(0, 1), (1, 1), (100, 1), (101, 2), (250, 3)],
    )
    def test_count(self, count: int, expected: int) -> None:
        assert total_pages_from_count("total_count")(_response(), {"total_count": count}, 100) == expected

    @pytest.mark.parametrize("body", [{}, {"total_count": "3"}, {"total_count": True}, []])
    def test_count_unusable(self, body: object) -> None:
        assert total_pages_from_count("total_count")(_response(), body, 100) is None


class TestNextCursorPager:
    def test_follows_cursor(self) -> None:
        pager = NextCursorPager(cursor_from_path("meta.next"))
        state = pager.first(10)

        assert pager.params(state) == {"per_page": 10}

        second = pager.next(state, _response(), {"meta": {"next": "abc"}}, [1])
        assert second is not None
        assert pager.params(second) == {"per_page": 10, "cursor": "abc"}

    def test_missing_cursor_ends(self) -> None:
        pager = NextCursorPager(cursor_from_path("meta.next"))

        assert pager.next(pager.first(10), _response(), {"meta": {"next": ""}}, [1]) is None
        assert pager.next(pager.first(10), _response(), {}, [1]) is None

    def test_repeated_cursor_ends(self) -> None:
        pager = NextCursorPager(cursor_from_path("next"))
        state = PageState(number=2, size=10, offset=10, cursor="abc")

        assert pager.next(state, _response(), {"next": "abc"}, [1]) is None
