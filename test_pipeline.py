#!/usr/bin/env python3
"""End-to-end runs of both services against mocked operator APIs."""

import asyncio
import json

import httpx

from hktransport.ingest.citybus_client import CitybusCollector
from hktransport.ingest.http_client import ApiClient
from hktransport.services.citybus_service import CitybusService
from hktransport.services.kmb_service import KMBService

CTB_ROOT = "/v2/transport/citybus"
KMB_ROOT = "/v1/transport/kmb"


def stop_detail(stop_id, name, lat, long):
    return {"data": {"stop": stop_id, "name_en": name, "name_tc": f"{name}站", "name_sc": f"{name}站",
                     "lat": lat, "long": long, "data_timestamp": "2024-06-14T05:00:02+08:00"}}


def citybus_routes():
    return {
        f"{CTB_ROOT}/route/ctb": {"data": [{"co": "CTB", "route": "1A", "orig_en": "Central", "dest_en": "Stanley"}]},
        f"{CTB_ROOT}/route-stop/ctb/1A/inbound": {"data": [{"route": "1A", "dir": "I", "seq": 1, "stop": "S1"}]},
        f"{CTB_ROOT}/route-stop/ctb/1A/outbound": {"data": [{"route": "1A", "dir": "O", "seq": 1, "stop": "S2"}]},
        f"{CTB_ROOT}/stop/S1": stop_detail("S1", "Alpha", "22.28", "114.15"),
        f"{CTB_ROOT}/stop/S2": stop_detail("S2", "Beta", "22.29", "114.16"),
    }


def read_json(path):
    with open(path, encoding="utf-8") as f:
        return json.load(f)


def run_service(service_cls, config, transport):
    async def run():
        async with ApiClient.from_config(config, transport=transport) as client:
            return await service_cls(config, client=client, silent=True).collect_and_save_data()
    return asyncio.run(run())


def test_citybus_end_to_end(app_config, routing_transport, tmp_path):
    transport = routing_transport(citybus_routes())

    result = run_service(CitybusService, app_config, transport)

    assert result.is_success()
    stats = result.unwrap()
    assert (stats.total_routes, stats.total_stops, stats.successful_stops, stats.failed_stops) == (1, 2, 2, 0)
    assert stats.save_errors == 0

    base = tmp_path / "ctb"
    s1 = read_json(base / "stops" / "S1.json")
    s2 = read_json(base / "stops" / "S2.json")
    assert s1["routes"] == ["1A"] and s2["routes"] == ["1A"]
    assert s1["name_en"] == "Alpha"
    assert s1["nearbyStopIDs"] == []

    all_stops = read_json(base / "stops" / "allstops.json")
    assert set(all_stops) == {"S1", "S2"}

    route = read_json(base / "routes" / "1A.json")
    assert route["route"] == "1A"
    assert [(s["dir"], s["stop"]) for s in route["stops"]] == [("I", "S1"), ("O", "S2")]
    assert route["stops"][0]["name_en"] == "Alpha" and route["stops"][0]["lat"] == "22.28"
    assert route["stops"][1]["name_tc"] == "Beta站" and route["stops"][1]["long"] == "114.16"

    compact = read_json(base / "routes" / "allroutes.json")
    assert compact["routes"]["1A"] == {"I": ["S1"], "O": ["S2"]}
    assert compact["stops"]["S2"] == {"name_tc": "Beta站", "name_en": "Beta", "name_sc": "Beta站"}
    assert compact["info"]["1A"]["dest_en"] == "Stanley"


def test_citybus_stop_failure_is_not_fatal(app_config, routing_transport, tmp_path):
    routes = citybus_routes()
    routes[f"{CTB_ROOT}/stop/S2"] = httpx.Response(500)
    transport = routing_transport(routes)

    result = run_service(CitybusService, app_config, transport)

    assert result.is_success()
    stats = result.unwrap()
    assert stats.failed_stops == 1
    assert stats.successful_stops == 1
    # one try plus three retries
    assert transport.requested.count(f"{CTB_ROOT}/stop/S2") == 4

    base = tmp_path / "ctb"
    assert read_json(base / "stops" / "S1.json")["name_en"] == "Alpha"
    s2 = read_json(base / "stops" / "S2.json")
    assert s2["name_en"] == "Stop S2"
    assert s2["lat"] == "" and s2["long"] == ""
    assert s2["routes"] == ["1A"]

    route = read_json(base / "routes" / "1A.json")
    assert route["stops"][1] == {"route": "1A", "dir": "O", "seq": 1, "stop": "S2"}


def test_citybus_reuses_published_stops_with_unchanged_routes(app_config, routing_transport, tmp_path):
    routes = citybus_routes()
    published = {
        "S1": {**stop_detail("S1", "Published Alpha", "22.28", "114.15")["data"], "routes": ["1A"]},
        "S2": {**stop_detail("S2", "Published Beta", "22.29", "114.16")["data"], "routes": ["1A", "9X"]},
    }
    routes["/data/ctb/stops/allstops.json"] = published
    transport = routing_transport(routes)

    result = run_service(CitybusService, app_config, transport)

    stats = result.unwrap()
    assert stats.reused_stops == 1
    assert f"{CTB_ROOT}/stop/S1" not in transport.requested
    assert f"{CTB_ROOT}/stop/S2" in transport.requested

    base = tmp_path / "ctb"
    assert read_json(base / "stops" / "S1.json")["name_en"] == "Published Alpha"
    s2 = read_json(base / "stops" / "S2.json")
    assert s2["name_en"] == "Beta"
    assert s2["routes"] == ["1A"]


def test_citybus_unreachable_routes_is_fatal(app_config, routing_transport):
    routes = citybus_routes()
    routes[f"{CTB_ROOT}/route/ctb"] = httpx.Response(503)

    result = run_service(CitybusService, app_config, routing_transport(routes))

    assert result.is_failure()
    assert result.error.code == "PROCESSING_ERROR"
    assert "HTTP 503" in result.error.details["originalError"]
    assert "Traceback" in result.error.details["stack"]


def kmb_routes():
    same_spot = {"lat": "22.345415", "long": "114.192640"}
    return {
        f"{KMB_ROOT}/route/": {"data": [
            {"route": "1", "bound": "O", "service_type": "1", "orig_en": "CHUK YUEN ESTATE", "dest_en": "STAR FERRY"},
            {"route": "1", "bound": "I", "service_type": "1", "orig_en": "STAR FERRY", "dest_en": "CHUK YUEN ESTATE"},
            {"route": "1", "bound": "O", "service_type": "2", "orig_en": "CHUK YUEN ESTATE", "dest_en": "TST"},
        ]},
        f"{KMB_ROOT}/route-stop": {"data": [
            {"route": "1", "bound": "O", "service_type": "1", "seq": "2", "stop": "B"},
            {"route": "1", "bound": "O", "service_type": "1", "seq": "1", "stop": "A"},
            {"route": "1", "bound": "I", "service_type": "1", "seq": "1", "stop": "B"},
            {"route": "1", "bound": "O", "service_type": "2", "seq": "1", "stop": "C"},
            {"route": "2", "bound": "O", "service_type": "1", "seq": "1", "stop": "Z"},
        ]},
        f"{KMB_ROOT}/stop": {"data": [
            {"stop": "A", "name_en": "A STOP", "name_tc": "甲", "name_sc": "甲", **same_spot},
            {"stop": "B", "name_en": "B STOP", "name_tc": "乙", "name_sc": "乙", **same_spot},
            {"stop": "Z", "name_en": "Z STOP", "name_tc": "丙", "name_sc": "丙", "lat": "1", "long": "2"},
        ]},
        f"{KMB_ROOT}/stop/C": {"data": {"stop": "C", "name_en": "C STOP", "name_tc": "丁", "name_sc": "丁",
                                         "lat": "22.3", "long": "114.1"}},
    }


def test_kmb_end_to_end(app_config, routing_transport, tmp_path):
    transport = routing_transport(kmb_routes())

    result = run_service(KMBService, app_config, transport)

    stats = result.unwrap()
    assert (stats.total_routes, stats.total_stops, stats.successful_stops, stats.failed_stops) == (1, 3, 3, 0)
    # only the stop missing from the bulk listing is fetched on its own
    assert [p for p in transport.requested if p.startswith(f"{KMB_ROOT}/stop/")] == [f"{KMB_ROOT}/stop/C"]

    base = tmp_path / "kmb"
    assert read_json(base / "stops" / "A.json")["nearbyStopIDs"] == ["B"]
    assert read_json(base / "stops" / "B.json")["nearbyStopIDs"] == ["A"]
    assert read_json(base / "stops" / "C.json")["routes"] == ["1"]
    assert not (base / "stops" / "Z.json").exists()

    route = read_json(base / "routes" / "1.json")
    assert [(s["bound"], s["service_type"], s["stop"]) for s in route["stops"]] == [
        ("I", "1", "B"), ("O", "1", "A"), ("O", "1", "B"), ("O", "2", "C"),
    ]
    assert route["stops"][3]["name_en"] == "C STOP"

    compact = read_json(base / "routes" / "allroutes.json")
    assert compact["routes"]["1"] == {"I": {"1": ["B"]}, "O": {"1": ["A", "B"], "2": ["C"]}}
    assert compact["info"]["1"]["O"]["2"]["dest_en"] == "TST"
    assert set(compact["stops"]) == {"A", "B", "C"}


def test_kmb_bulk_stop_failure_falls_back_to_single_stops(app_config, routing_transport, tmp_path):
    routes = kmb_routes()
    routes[f"{KMB_ROOT}/stop"] = httpx.Response(502)
    transport = routing_transport(routes)

    stats = run_service(KMBService, app_config, transport).unwrap()

    assert stats.successful_stops == 1
    assert stats.failed_stops == 2
    a = read_json(tmp_path / "kmb" / "stops" / "A.json")
    assert a["name_en"] == "Stop A"
    assert a["nearbyStopIDs"] == []


def test_citybus_rows_without_direction_take_it_from_their_leg(app_config, routing_transport, tmp_path):
    routes = citybus_routes()
    routes[f"{CTB_ROOT}/route/ctb"] = {"data": [{"route": "1A"}]}
    routes[f"{CTB_ROOT}/route-stop/ctb/1A/inbound"] = {"data": [{"stop": "S1", "seq": 2}]}
    routes[f"{CTB_ROOT}/route-stop/ctb/1A/outbound"] = {"data": [{"stop": "S2", "seq": 1}]}

    stats = run_service(CitybusService, app_config, routing_transport(routes)).unwrap()

    assert stats.failed_routes == 0
    assert list(stats.phases) == ["routes", "route stops", "stop details", "publish"]
    base = tmp_path / "ctb"
    compact = read_json(base / "routes" / "allroutes.json")
    assert compact["routes"]["1A"] == {"I": ["S1"], "O": ["S2"]}
    route = read_json(base / "routes" / "1A.json")
    assert [(s["dir"], s["stop"]) for s in route["stops"]] == [("I", "S1"), ("O", "S2")]


def test_citybus_failed_leg_keeps_the_other_direction(app_config, routing_transport):
    routes = citybus_routes()
    routes[f"{CTB_ROOT}/route-stop/ctb/1A/outbound"] = httpx.Response(500)
    transport = routing_transport(routes)

    async def run():
        async with ApiClient.from_config(app_config, transport=transport) as client:
            collector = CitybusCollector.from_config(client, app_config, silent=True)
            return await collector.collect_route_stops("1A")

    result = asyncio.run(run())

    assert result == {
        "route": "1A",
        "inbound": [{"route": "1A", "dir": "I", "seq": 1, "stop": "S1"}],
        "outbound": [],
        "error": True,
    }
    assert transport.requested.count(f"{CTB_ROOT}/route-stop/ctb/1A/outbound") == 4


def test_kmb_route_stop_listing_failure_is_not_fatal(app_config, routing_transport, tmp_path):
    routes = kmb_routes()
    routes[f"{KMB_ROOT}/route-stop"] = httpx.Response(502)

    result = run_service(KMBService, app_config, routing_transport(routes))

    assert result.is_success()
    stats = result.unwrap()
    assert stats.total_routes == 1
    assert stats.failed_routes == 1
    assert stats.total_stops == 0
    compact = read_json(tmp_path / "kmb" / "routes" / "allroutes.json")
    assert compact["routes"]["1"] == {"I": {}, "O": {}}
