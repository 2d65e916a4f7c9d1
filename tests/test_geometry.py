# tests/test_geometry.py
from backend.geometry import area_containing_point, calculate_checkpoint_areas, point_in_polygon
from backend.models import Area, RoutePoint

SQUARE = [RoutePoint(lat=0, lng=0), RoutePoint(lat=0, lng=10), RoutePoint(lat=10, lng=10), RoutePoint(lat=10, lng=0)]

# L-shape: the square minus its upper-right quadrant
L_SHAPE = [
    RoutePoint(lat=0, lng=0), RoutePoint(lat=0, lng=10), RoutePoint(lat=5, lng=10),
    RoutePoint(lat=5, lng=5), RoutePoint(lat=10, lng=5), RoutePoint(lat=10, lng=0),
]


def test_point_inside_and_outside_square():
    assert point_in_polygon(RoutePoint(lat=5, lng=5), SQUARE)
    assert not point_in_polygon(RoutePoint(lat=15, lng=5), SQUARE)
    assert not point_in_polygon(RoutePoint(lat=5, lng=-0.5), SQUARE)


def test_concave_polygon():
    assert point_in_polygon(RoutePoint(lat=2, lng=8), L_SHAPE)
    assert point_in_polygon(RoutePoint(lat=8, lng=2), L_SHAPE)
    assert not point_in_polygon(RoutePoint(lat=8, lng=8), L_SHAPE)


def test_degenerate_polygons_never_contain():
    pt = RoutePoint(lat=0, lng=0)
    assert not point_in_polygon(pt, [])
    assert not point_in_polygon(pt, [RoutePoint(lat=0, lng=0)])
    assert not point_in_polygon(pt, [RoutePoint(lat=-1, lng=-1), RoutePoint(lat=1, lng=1)])


def test_boundary_result_is_stable():
    pt = RoutePoint(lat=0, lng=5)
    first = point_in_polygon(pt, SQUARE)
    assert all(point_in_polygon(pt, SQUARE) == first for _ in range(10))


def test_checkpoint_areas_from_polygons(facts):
    assert calculate_checkpoint_areas(51.05, -1.08, facts.areas) == ["A1"]
    # outside every polygon -> the default area
    assert calculate_checkpoint_areas(50.9, -1.05, facts.areas) == ["A0"]
    assert calculate_checkpoint_areas(None, None, facts.areas, default_area_id="A0") == ["A0"]


def test_checkpoint_areas_without_default():
    areas = [Area(id="A1", polygon=tuple(SQUARE))]
    assert calculate_checkpoint_areas(50, 50, areas) == []


def test_area_containing_point(facts):
    assert area_containing_point(facts.areas, 51.05, -1.05).id == "A1"
    assert area_containing_point(facts.areas, 40.0, 0.0) is None
    assert area_containing_point(facts.areas, None, -1.05) is None
