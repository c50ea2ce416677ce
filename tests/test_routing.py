from datetime import datetime

import pytest
import requests

from conftest import MockOSRM
from donations.models import StopType, Task, TaskStatus
from routing import osrm_client
from routing.cache import TTLCache
from routing.osrm_client import OSRMClient, OSRMError
from routing.route_service import RouteOptimizer, respects_precedence, waypoints_for_tasks
from routing.traffic_service import GeoTrafficOracle

# Wednesday
OFF_PEAK = datetime(2026, 10, 14, 12, 0)
MORNING_RUSH = datetime(2026, 10, 14, 8, 0)
SATURDAY_EVENING = datetime(2026, 10, 17, 17, 0)

DONOR = (-17.8292, 31.0522)
KITCHEN = (-17.8400, 31.0300)
SHELTER = (-17.8100, 31.0700)


class FakeResponse:
    def __init__(self, payload, status_code=200):
        self.payload = payload
        self.status_code = status_code

    def json(self):
        return self.payload

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")


def make_task(task_id, status=TaskStatus.ASSIGNED, volunteer_id="vol_1", pickup=DONOR, dropoff=KITCHEN):
    return Task(
        id=task_id, donation_id=f"don_{task_id}", pickup_location=pickup,
        dropoff_location=dropoff, status=status, volunteer_id=volunteer_id,
    )


# -------------------------
# traffic oracle
# -------------------------

def test_traffic_multiplier_profile():
    oracle = GeoTrafficOracle()

    assert oracle.traffic_multiplier_at(OFF_PEAK) == 1.0
    assert oracle.traffic_multiplier_at(MORNING_RUSH) == 1.4
    # weekend rush hours are capped
    assert oracle.traffic_multiplier_at(SATURDAY_EVENING) == 1.2


@pytest.mark.parametrize("multiplier,level", [(1.0, "smooth"), (1.2, "light"), (1.5, "moderate"), (2.0, "heavy")])
def test_congestion_levels(multiplier, level):
    assert GeoTrafficOracle().congestion_level(multiplier) == level


def test_distance_applies_traffic_and_caches():
    osrm = MockOSRM(distance=2500.0, duration=300.0)
    oracle = GeoTrafficOracle(osrm_client=osrm, clock=lambda: OFF_PEAK)

    off_peak = oracle.distance(DONOR, KITCHEN)
    rush = oracle.distance(DONOR, KITCHEN, departure_time=MORNING_RUSH)

    assert off_peak.meters == 2500.0
    assert off_peak.seconds == 300.0
    assert not off_peak.is_fallback
    assert rush.seconds == pytest.approx(420.0)
    assert rush.congestion_level == "light"
    assert osrm.route_calls == 1


def test_distance_falls_back_when_osrm_fails():
    oracle = GeoTrafficOracle(osrm_client=MockOSRM(fail=True), clock=lambda: OFF_PEAK)

    estimate = oracle.distance(DONOR, KITCHEN)

    assert estimate.is_fallback
    assert estimate.meters == 10000.0
    assert estimate.seconds == 1800.0


def test_distance_without_coordinates_is_fallback():
    oracle = GeoTrafficOracle(osrm_client=MockOSRM(), clock=lambda: OFF_PEAK)

    assert oracle.distance(None, KITCHEN).is_fallback
    assert oracle.osrm_client.route_calls == 0


def test_best_departure_avoids_rush_hour():
    oracle = GeoTrafficOracle(osrm_client=MockOSRM(duration=600.0), clock=lambda: OFF_PEAK)

    recommendation = oracle.best_departure(DONOR, KITCHEN, arrive_by=datetime(2026, 10, 14, 9, 0))

    assert recommendation.departure_time == datetime(2026, 10, 14, 6, 0)
    assert recommendation.traffic_multiplier == 1.0
    assert recommendation.estimated_duration_s == 600.0
    assert recommendation.recommendation == "Normal departure time recommended"


def test_optimize_route_failure_keeps_input_order():
    oracle = GeoTrafficOracle(osrm_client=MockOSRM(fail=True), clock=lambda: OFF_PEAK)

    result = oracle.optimize_route([DONOR, KITCHEN, SHELTER])

    assert result.is_fallback
    assert result.ordered_indices == [0, 1, 2]
    assert result.total_distance_m == 0.0


# -------------------------
# route optimizer
# -------------------------

def test_two_tasks_are_reordered_when_precedence_holds(store):
    store.add_task(make_task("t1"))
    store.add_task(make_task("t2", pickup=SHELTER, dropoff=KITCHEN))
    oracle = GeoTrafficOracle(osrm_client=MockOSRM(trip_order=[0, 2, 1, 3]), clock=lambda: OFF_PEAK)

    route = RouteOptimizer(oracle).optimize_for_volunteer(store, "vol_1")

    assert route.optimized
    assert [(w.task_id, w.stop_type) for w in route.waypoints] == [
        ("t1", StopType.PICKUP), ("t2", StopType.PICKUP), ("t1", StopType.DROPOFF), ("t2", StopType.DROPOFF),
    ]
    assert route.total_distance_m == 3000.0
    assert store.get_task("t1").optimized_route.ordered_indices == [0, 2, 1, 3]
    assert store.get_task("t2").optimized_route.ordered_indices == [0, 2, 1, 3]


def test_order_breaking_precedence_is_rejected(store):
    store.add_task(make_task("t1"))
    store.add_task(make_task("t2", pickup=SHELTER))
    oracle = GeoTrafficOracle(osrm_client=MockOSRM(trip_order=[1, 0, 2, 3]), clock=lambda: OFF_PEAK)

    route = RouteOptimizer(oracle).optimize_for_volunteer(store, "vol_1")

    assert not route.optimized
    assert route.ordered_indices == [0, 1, 2, 3]
    assert route.total_distance_m == 0.0


def test_invalid_permutation_is_rejected():
    waypoints = waypoints_for_tasks([make_task("t1"), make_task("t2")])
    oracle = GeoTrafficOracle(osrm_client=MockOSRM(trip_order=[0, 0, 1, 2]), clock=lambda: OFF_PEAK)

    route = RouteOptimizer(oracle).optimize(waypoints)

    assert not route.optimized
    assert route.waypoints == waypoints


def test_single_task_uses_direct_route(store):
    store.add_task(make_task("t1"))
    osrm = MockOSRM(distance=4200.0, duration=600.0)

    route = RouteOptimizer(GeoTrafficOracle(osrm_client=osrm, clock=lambda: OFF_PEAK)).optimize_for_volunteer(store, "vol_1")

    assert route.optimized
    assert route.ordered_indices == [0, 1]
    assert route.total_distance_m == 4200.0
    assert route.polyline == "abc"
    assert osrm.trip_calls == 0


def test_picked_up_task_only_contributes_dropoff():
    tasks = [make_task("t1", status=TaskStatus.PICKED_UP), make_task("t2", pickup=SHELTER)]

    waypoints = waypoints_for_tasks(tasks)

    assert [(w.task_id, w.stop_type) for w in waypoints] == [
        ("t1", StopType.DROPOFF), ("t2", StopType.PICKUP), ("t2", StopType.DROPOFF),
    ]
    assert respects_precedence(waypoints)


def test_courier_without_open_tasks_has_no_route(store):
    store.add_task(make_task("done", status=TaskStatus.DELIVERED))

    assert RouteOptimizer(GeoTrafficOracle(osrm_client=MockOSRM())).optimize_for_volunteer(store, "vol_1") is None


def test_optimizer_without_oracle_keeps_order():
    waypoints = waypoints_for_tasks([make_task("t1"), make_task("t2")])

    route = RouteOptimizer().optimize(waypoints)

    assert not route.optimized
    assert route.ordered_indices == [0, 1, 2, 3]


# -------------------------
# OSRM client
# -------------------------

def test_osrm_route_request_and_parsing(monkeypatch):
    calls = []

    def fake_get(url, params=None, timeout=None):
        calls.append((url, params, timeout))
        return FakeResponse({"code": "Ok", "routes": [{"distance": 1234.5, "duration": 321.0, "geometry": "xyz"}]})

    monkeypatch.setattr(osrm_client.requests, "get", fake_get)
    client = OSRMClient(base_url="http://osrm.test", timeout=3)

    route = client.compute_route([DONOR, KITCHEN], geometry=True)

    url, params, timeout = calls[0]
    assert url == "http://osrm.test/route/v1/driving/31.0522,-17.8292;31.03,-17.84"
    assert params["overview"] == "full"
    assert timeout == 3
    assert route == {"distance": 1234.5, "duration": 321.0, "polyline": "xyz"}


def test_osrm_trip_orders_by_waypoint_index(monkeypatch):
    payload = {
        "code": "Ok",
        "waypoints": [{"waypoint_index": 0}, {"waypoint_index": 2}, {"waypoint_index": 1}],
        "trips": [{"distance": 900.0, "duration": 100.0, "geometry": "trip"}],
    }
    monkeypatch.setattr(osrm_client.requests, "get", lambda url, params=None, timeout=None: FakeResponse(payload))

    trip = OSRMClient(base_url="http://osrm.test").compute_trip([DONOR, KITCHEN, SHELTER])

    assert trip["ordered_indices"] == [0, 2, 1]
    assert trip["distance"] == 900.0


def test_osrm_errors_are_wrapped(monkeypatch):
    def unreachable(url, params=None, timeout=None):
        raise requests.ConnectionError("refused")

    client = OSRMClient(base_url="http://osrm.test")

    monkeypatch.setattr(osrm_client.requests, "get", unreachable)
    with pytest.raises(OSRMError):
        client.compute_route([DONOR, KITCHEN])

    monkeypatch.setattr(
        osrm_client.requests, "get",
        lambda url, params=None, timeout=None: FakeResponse({"code": "NoRoute", "message": "Impossible route"}),
    )
    with pytest.raises(OSRMError, match="Impossible route"):
        client.compute_route([DONOR, KITCHEN])


def test_osrm_requires_base_url(monkeypatch):
    monkeypatch.setattr(osrm_client, "BASE_URL", None)

    with pytest.raises(ValueError):
        OSRMClient()


def test_osrm_route_needs_two_points():
    with pytest.raises(ValueError):
        OSRMClient(base_url="http://osrm.test").compute_route([DONOR])


# -------------------------
# cache
# -------------------------

def test_ttl_cache_expires_entries():
    now = [0.0]
    cache = TTLCache(ttl_seconds=300, clock=lambda: now[0])

    cache.set("k", "v")
    now[0] = 299.0
    assert cache.get("k") == "v"
    now[0] = 300.0
    assert cache.get("k") is None

    stats = cache.stats()
    assert (stats.hits, stats.misses, stats.size) == (1, 1, 0)
    assert stats.hit_rate == 0.5


def test_ttl_cache_sweeps_expired_keys_on_write():
    now = [0.0]
    cache = TTLCache(ttl_seconds=300, clock=lambda: now[0])

    # keys that are never read again, like courier coordinates
    for index in range(10000):
        cache.set(("courier", index), index)
    now[0] = 301.0
    cache.set("fresh", 1)

    assert cache.stats().size == 1
    assert cache.get("fresh") == 1


def test_ttl_cache_evicts_oldest_beyond_max_entries():
    cache = TTLCache(ttl_seconds=300, max_entries=3, clock=lambda: 0.0)

    for key in ("a", "b", "c", "d"):
        cache.set(key, key.upper())
    cache.set("b", "B2")
    cache.set("e", "E")

    assert cache.get("a") is None
    assert cache.get("c") is None
    assert [cache.get(key) for key in ("b", "d", "e")] == ["B2", "D", "E"]
    assert cache.stats().size == 3
    assert cache.stats().evictions == 2
