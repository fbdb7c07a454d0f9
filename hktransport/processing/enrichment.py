from datetime import datetime, timezone
from typing import Dict, Optional

from hktransport.common.sources import SourceProfile
from hktransport.processing.route_stops import iter_route_stops

STOP_DETAIL_FIELDS = ('name_tc', 'name_en', 'name_sc', 'lat', 'long')


def timestamp_now(now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    return now.astimezone(timezone.utc).isoformat(timespec='milliseconds').replace('+00:00', 'Z')


def _as_number(value):
    try:
        return int(value)
    except (TypeError, ValueError):
        try:
            return float(value)
        except (TypeError, ValueError):
            return 0


def process_stop_details_results(stop_details_results):
    """Stop detail results that succeeded and carried a payload."""
    successful = []
    for result in stop_details_results:
        # accept batcher Results as well as plain result dicts
        if hasattr(result, 'is_success'):
            if not result.is_success():
                continue
            result = result.value
        if result and not result.get('error') and result.get('data'):
            successful.append(result)
    return successful


def enrich_stop_with_routes(stop_data: dict, stop_routes_map, stop_id: str, now=None) -> dict:
    """Attach the freshly computed route set (over any embedded one) and a timestamp."""
    current = stop_routes_map.get(stop_id)
    routes = list(current) if current else list(stop_data.get('routes') or [])
    return {
        **stop_data,
        'routes': routes,
        'data_timestamp': timestamp_now(now),
    }


def create_fallback_stop(stop_id: str) -> dict:
    return {
        'stop': stop_id,
        'name_en': f"Stop {stop_id}",
        'name_tc': f"站點 {stop_id}",
        'name_sc': f"站点 {stop_id}",
        'lat': '',
        'long': '',
    }


def route_stop_sort_key(profile: SourceProfile):
    def key(row):
        return (
            profile.direction_of(row) or '',
            _as_number(profile.service_type_of(row)),
            _as_number(row.get('seq')),
        )
    return key


def create_enriched_route_data(route: str, route_stops: Dict[str, dict], successful_stops,
                               profile: SourceProfile) -> dict:
    """Both directions of one route in (direction, service type, seq) order, with stop names and coordinates."""
    details = {s['stopId']: s['data'] for s in successful_stops if s.get('data')}
    rows = sorted(iter_route_stops(route_stops[route]), key=route_stop_sort_key(profile))

    stops = []
    for row in rows:
        data = details.get(row.get('stop'))
        if data:
            stops.append({**row, **{field: data.get(field) for field in STOP_DETAIL_FIELDS}})
        else:
            stops.append(dict(row))
    return {'route': route, 'stops': stops}


def add_nearby_stop_ids(all_stops: Dict[str, dict]) -> int:
    """Set `nearbyStopIDs` to the other stops at identical coordinates. Returns the number of locations."""
    locations: Dict[tuple, list] = {}
    for stop_id, stop in all_stops.items():
        if stop.get('lat') and stop.get('long'):
            locations.setdefault((str(stop['lat']), str(stop['long'])), []).append(stop_id)

    for stop_id, stop in all_stops.items():
        if stop.get('lat') and stop.get('long'):
            same_spot = locations[(str(stop['lat']), str(stop['long']))]
            stop['nearbyStopIDs'] = [other for other in same_spot if other != stop_id]
        else:
            stop['nearbyStopIDs'] = []
    return len(locations)
