"""Unit tests for GeoStore distance and ranking queries."""
import pytest

from ambulance_dispatch.services.geo_store import GeoStore, interpolate
from ambulance_dispatch.shared.types import Point

LAGOS = Point(longitude=3.3792, latitude=6.4969)
ABUJA = Point(longitude=7.4951, latitude=9.0579)
KANO = Point(longitude=8.5167, latitude=11.9833)


class TestDistance:
    """Tests for GeoStore.distance."""

    def test_distance_to_self_is_zero(self):
        geo = GeoStore()
        for point in (LAGOS, ABUJA, KANO):
            assert geo.distance(point, point) == 0

    @pytest.mark.parametrize("a,b", [(LAGOS, ABUJA), (ABUJA, KANO), (LAGOS, KANO)])
    def test_distance_is_symmetric(self, a, b):
        geo = GeoStore()
        assert geo.distance(a, b) == pytest.approx(geo.distance(b, a))

    def test_lagos_to_abuja(self):
        """Great-circle distance LUTH -> National Hospital is roughly 535 km."""
        distance = GeoStore().distance(LAGOS, ABUJA)
        assert 520_000 < distance < 550_000

    def test_one_kilometre_due_north(self, helpers):
        start = Point(longitude=3.0, latitude=6.0)
        assert GeoStore().distance(start, helpers.north_of(start, 1000)) == pytest.approx(1000, abs=0.01)

    def test_antipodal_points(self):
        distance = GeoStore().distance(Point(longitude=0, latitude=0), Point(longitude=180, latitude=0))
        assert distance == pytest.approx(20_015_087, rel=1e-4)


class TestRanking:
    """Tests for nearest and within_radius."""

    def test_nearest_orders_ascending(self, helpers):
        origin = Point(longitude=3.0, latitude=6.0)
        candidates = [
            (1, helpers.north_of(origin, 3000)),
            (2, helpers.north_of(origin, 500)),
            (3, helpers.north_of(origin, 1500)),
        ]

        result = GeoStore().nearest(origin, candidates, 2)

        assert [cid for cid, _ in result] == [2, 3]
        assert result[0][1] == pytest.approx(500, abs=0.01)

    def test_ties_broken_by_id(self, helpers):
        origin = Point(longitude=3.0, latitude=6.0)
        same = helpers.north_of(origin, 800)
        result = GeoStore().nearest(origin, [(9, same), (4, same), (6, same)], 3)
        assert [cid for cid, _ in result] == [4, 6, 9]

    def test_nearest_with_non_positive_k(self):
        assert GeoStore().nearest(LAGOS, [(1, ABUJA)], 0) == []

    def test_candidates_without_location_are_skipped(self):
        assert GeoStore().rank(LAGOS, [(1, None), (2, ABUJA)])[0][0] == 2

    def test_within_radius_is_inclusive(self, helpers):
        origin = Point(longitude=3.0, latitude=6.0)
        candidates = [(1, helpers.north_of(origin, 1000)), (2, helpers.north_of(origin, 5001))]

        result = GeoStore().within_radius(origin, candidates, 5000)

        assert [cid for cid, _ in result] == [1]


def test_interpolate_endpoints():
    assert interpolate(LAGOS, ABUJA, 0) == LAGOS
    midpoint = interpolate(LAGOS, ABUJA, 0.5)
    assert midpoint.longitude == pytest.approx((LAGOS.longitude + ABUJA.longitude) / 2)
    assert midpoint.latitude == pytest.approx((LAGOS.latitude + ABUJA.latitude) / 2)
