import pytest

from app.services.page_snap import SNAP_INSET, PageBand, Placement, resolve_page_snap

# Two 1000px pages stacked with a 20px gap
PAGES = [PageBand(top=0, height=1000), PageBand(top=1020, height=1000)]
PREVIOUS = Placement(x=40, y=300, page_number=1)


class TestResolvePageSnap:
    def test_contained_field_passes_through(self):
        result = resolve_page_snap(50, 1100, 40, PREVIOUS, PAGES)
        assert (result.x, result.y, result.page_number) == (50, 1100, 2)
        assert result.snapped is False

    def test_straddling_bottom_edge_snaps_up(self):
        result = resolve_page_snap(50, 980, 40, PREVIOUS, PAGES)
        assert result.page_number == 1
        assert result.y == pytest.approx(1000 - 40 - SNAP_INSET)
        assert result.snapped is True

    def test_straddling_top_edge_snaps_down(self):
        result = resolve_page_snap(50, 1010, 40, PREVIOUS, PAGES)
        assert result.page_number == 2
        assert result.y == pytest.approx(1020 + SNAP_INSET)
        assert result.snapped is True

    def test_snapped_result_is_contained_on_next_pass(self):
        first = resolve_page_snap(50, 990, 40, PREVIOUS, PAGES)
        second = resolve_page_snap(first.x, first.y, 40, PREVIOUS, PAGES)
        assert second.snapped is False
        assert second.page_number == first.page_number
        assert second.y == pytest.approx(first.y)

    def test_container_scroll_offset_applied(self):
        # Container scrolled so its top sits at absolute -500
        result = resolve_page_snap(10, 1550, 40, PREVIOUS, PAGES, container_top=-500)
        assert result.page_number == 2
        assert result.snapped is False

    def test_missing_pages_are_skipped(self):
        result = resolve_page_snap(50, 1100, 40, PREVIOUS, [None, PAGES[1]])
        assert result.page_number == 2

    def test_gap_drop_keeps_previous_placement(self):
        # Falls entirely inside the gap between pages
        result = resolve_page_snap(50, 1002, 10, PREVIOUS, PAGES)
        assert (result.x, result.y, result.page_number) == (40, 300, 1)
        assert result.snapped is False

    def test_no_pages_keeps_previous_placement(self):
        result = resolve_page_snap(50, 100, 10, PREVIOUS, [])
        assert result.page_number == PREVIOUS.page_number
