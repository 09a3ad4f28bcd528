import pytest
from fastapi import HTTPException

import policies
from geo import bounding_box, distance_km, location_point


def test_product_select_predicate():
    row = {"_id": "p", "seller_id": "s", "status": "sold"}
    assert policies.allowed("product", "select", "s", row)
    assert not policies.allowed("product", "select", "x", row)
    assert policies.allowed("product", "select", None, dict(row, status="active"))


def test_unknown_action_denied():
    assert not policies.allowed("category", "update", "anyone", {"name": "Books"})


def test_enforce_hides_invisible_rows():
    order = {"_id": "o", "buyer_id": "b", "seller_id": "s"}
    with pytest.raises(HTTPException) as exc:
        policies.enforce("order", "update", "stranger", order)
    assert exc.value.status_code == 404
    with pytest.raises(HTTPException) as exc:
        policies.enforce("order", "update", "b", order)
    assert exc.value.status_code == 403
    assert policies.enforce("order", "update", "s", order) is order


def test_storage_prefix():
    assert policies.can_write_object("u1", "u1/123.png")
    assert not policies.can_write_object("u1", "u2/123.png")
    assert not policies.can_write_object(None, "u1/123.png")


def test_distance_and_point():
    assert distance_km(0, 0, 0, 0) == 0
    assert distance_km(0, 0, 1, 0) == pytest.approx(111.2, abs=0.1)
    assert location_point(1.5, None) is None
    assert location_point(1.5, 2.5) == {"type": "Point", "coordinates": [2.5, 1.5]}


@pytest.mark.parametrize("lat, lon", [(12.97, 77.59), (60.0, 10.0), (-33.9, 151.2)])
def test_bounding_box_contains_radius(lat, lon):
    box = bounding_box(lat, lon, 50)
    dlat = box["latitude"]["$lte"] - lat
    assert distance_km(lat, lon, lat + dlat, lon) == pytest.approx(50, abs=0.01)
    east = box["longitude"]["$lte"]
    # the box edge is never closer than the radius
    assert distance_km(lat, lon, lat, east) >= 50 - 1e-6


def test_bounding_box_near_antimeridian_leaves_longitude_open():
    assert "longitude" not in bounding_box(0, 179.9, 50)
