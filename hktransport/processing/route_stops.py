from typing import Dict, Iterator

from hktransport.common.ordered_set import OrderedSet
from hktransport.common.sources import SourceProfile

DIRECTIONS = ('inbound', 'outbound')
DIRECTION_NAMES = {'I': 'inbound', 'O': 'outbound'}


def iter_route_stops(entry: dict) -> Iterator[dict]:
    """Every stop row of a route entry, flat or nested by service type."""
    for direction in DIRECTIONS:
        rows = entry.get(direction) or []
        if isinstance(rows, dict):
            for service_rows in rows.values():
                yield from service_rows
        else:
            yield from rows


def build_stop_routes_map(route_stops: Dict[str, dict]) -> Dict[str, OrderedSet]:
    stop_routes_map: Dict[str, OrderedSet] = {}
    for route, entry in route_stops.items():
        for row in iter_route_stops(entry):
            stop_id = row.get('stop')
            if stop_id:
                stop_routes_map.setdefault(stop_id, OrderedSet()).add(route)
    return stop_routes_map


def process_route_stop_results(route_stop_results):
    """Citybus: settled per-route results -> (route_stops, stop_routes_map).

    Routes whose fetch failed, or where either direction failed, are left out.
    """
    route_stops = {}
    for outcome in route_stop_results:
        if not outcome.is_success():
            continue
        result = outcome.value
        if not result or result.get('error'):
            continue
        route_stops[result['route']] = {
            'inbound': result.get('inbound') or [],
            'outbound': result.get('outbound') or [],
        }
    return route_stops, build_stop_routes_map(route_stops)


def group_route_stops(all_route_stops, routes, profile: SourceProfile):
    """KMB: bulk route-stop rows -> {route: {inbound: {service_type: [...]}, outbound: {...}}}.

    Only routes present in the routes listing are kept.
    """
    route_stops = {}
    for r in routes:
        route = r.get('route')
        if route and route not in route_stops:
            route_stops[route] = {'inbound': {}, 'outbound': {}}

    for row in all_route_stops:
        entry = route_stops.get(row.get('route'))
        if entry is None:
            continue
        direction = DIRECTION_NAMES.get(profile.direction_of(row))
        if direction is None:
            continue
        entry[direction].setdefault(profile.service_type_of(row), []).append(row)

    return route_stops
