import pytest

from services.geo import haversine_distance, is_within_radius


def test_haversine_zero_distance_for_same_point():
    assert haversine_distance(48.8656, 2.3212, 48.8656, 2.3212) == pytest.approx(0.0, abs=1e-6)


def test_haversine_paris_to_london_is_about_344_km():
    distance = haversine_distance(48.8566, 2.3522, 51.5074, -0.1278)
    assert distance == pytest.approx(343_500, rel=0.01)


def test_one_thousandth_degree_of_latitude_is_about_111_meters():
    distance = haversine_distance(0.0, 0.0, 0.001, 0.0)
    assert distance == pytest.approx(111.19, rel=0.001)


def test_is_within_radius_includes_boundary_and_rejects_beyond():
    # ~55 m north of the restaurant.
    assert is_within_radius(48.8661, 2.3212, 48.8656, 2.3212, 100)
    # ~111 m north of the restaurant.
    assert not is_within_radius(48.8666, 2.3212, 48.8656, 2.3212, 100)
    exact = haversine_distance(48.8661, 2.3212, 48.8656, 2.3212)
    assert is_within_radius(48.8661, 2.3212, 48.8656, 2.3212, exact)
