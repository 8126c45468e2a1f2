
from nearbuy.domain.models import Coordinate, MapMarker
from nearbuy.exceptions import ReconcileInProgress
from nearbuy.map.reconcile import MarkerSet, reconcile
from nearbuy.map.surface import GeoJsonSurface


def _marker(id, lat=25.2, lon=55.27, title=None, description=None):
    return MapMarker(
        id=id,
        coordinate=Coordinate(latitude=lat, longitude=lon),
        title=title or id,
        description=description,
    )


class _FlakySurface(GeoJsonSurface):
    """Refuses to build a marker titled 'boom'."""

    def add_marker(self, coordinate, title, description=None):
        if title == "boom":
            raise RuntimeError("renderer rejected marker")
        return super().add_marker(coordinate, title, description)


def test_reconcile_adds_markers_and_key_set_matches_desired():
    surface = GeoJsonSurface()
    markers = MarkerSet(surface)

    stats = markers.reconcile([_marker("a"), _marker("b", lat=25.3)])

    assert markers.ids() == {"a", "b"}
    assert surface.marker_count == 2
    assert (stats.added, stats.removed, stats.moved) == (2, 0, 0)


def test_reconcile_with_empty_list_removes_every_primitive():
    surface = GeoJsonSurface()
    markers = MarkerSet(surface, on_click=lambda m: None)
    markers.reconcile([_marker("a"), _marker("b")])
    handles = [markers.handle("a"), markers.handle("b")]

    out = reconcile(markers, [])

    assert out is markers
    assert len(markers) == 0
    assert surface.marker_count == 0
    assert all(surface.listener_count(h) == 0 for h in handles)


def test_reconcile_is_idempotent_and_keeps_handles():
    surface = GeoJsonSurface()
    markers = MarkerSet(surface)
    desired = [_marker("a"), _marker("b", lat=25.3)]
    markers.reconcile(desired)
    handles = {mid: markers.handle(mid) for mid in markers.ids()}

    stats = markers.reconcile(desired)

    assert not stats.changed
    assert (stats.added, stats.removed, stats.moved, stats.refreshed) == (0, 0, 0, 0)
    assert {mid: markers.handle(mid) for mid in markers.ids()} == handles


def test_existing_marker_moves_in_place_and_refreshes_popup():
    surface = GeoJsonSurface()
    markers = MarkerSet(surface)
    markers.reconcile([_marker("a", title="Old")])
    handle = markers.handle("a")

    stats = markers.reconcile([_marker("a", lat=25.25, title="New", description="2.0 km away")])

    assert markers.handle("a") == handle
    assert (stats.moved, stats.refreshed, stats.added, stats.removed) == (1, 1, 0, 0)
    feature = surface.to_feature_collection()["features"][0]
    assert feature["geometry"]["coordinates"] == [55.27, 25.25]
    assert feature["properties"]["title"] == "New"


def test_stale_markers_are_removed_while_new_ones_are_added():
    surface = GeoJsonSurface()
    markers = MarkerSet(surface)
    markers.reconcile([_marker("a"), _marker("b")])

    stats = markers.reconcile([_marker("b"), _marker("c")])

    assert markers.ids() == {"b", "c"}
    assert (stats.added, stats.removed) == (1, 1)
    assert surface.marker_count == 2


def test_invalid_or_failing_markers_are_skipped_without_aborting_batch():
    surface = _FlakySurface()
    markers = MarkerSet(surface)
    bad_coordinate = MapMarker.model_construct(
        id="bad", coordinate=Coordinate.model_construct(latitude=120.0, longitude=55.0), title="bad", description=None
    )

    stats = markers.reconcile([_marker("a"), bad_coordinate, _marker("x", title="boom"), _marker("b")])

    assert markers.ids() == {"a", "b"}
    assert stats.skipped == 2
    assert surface.marker_count == 2


def test_click_handler_receives_current_marker():
    surface = GeoJsonSurface()
    clicked = []
    markers = MarkerSet(surface, on_click=clicked.append)
    markers.reconcile([_marker("a", title="First")])
    markers.reconcile([_marker("a", title="Renamed")])

    surface.click(markers.handle("a"))

    assert [m.title for m in clicked] == ["Renamed"]


def test_reentrant_reconcile_and_clear_raise():
    seen = []

    class _ReentrantSurface(GeoJsonSurface):
        def add_marker(self, coordinate, title, description=None):
            for call in (lambda: markers.reconcile([]), markers.clear):
                try:
                    call()
                except ReconcileInProgress as exc:
                    seen.append(exc)
            return super().add_marker(coordinate, title, description)

    surface = _ReentrantSurface()
    markers = MarkerSet(surface)

    markers.reconcile([_marker("a")])

    assert len(seen) == 2
    assert markers.ids() == {"a"}
    assert surface.marker_count == 1


def test_clear_tears_down_all_markers():
    surface = GeoJsonSurface()
    markers = MarkerSet(surface)
    markers.reconcile([_marker("a"), _marker("b")])

    assert markers.clear() == 2
    assert surface.marker_count == 0
