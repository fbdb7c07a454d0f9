import json
import logging
import os
from collections.abc import Set

from hktransport.common.errors import FileSystemError
from hktransport.common.result import Result
from hktransport.common.sources import SourceProfile

logger = logging.getLogger(__name__)

NAME_FIELDS = ('name_tc', 'name_en', 'name_sc')
ROUTE_INFO_FIELDS = ('orig_en', 'orig_tc', 'orig_sc', 'dest_en', 'dest_tc', 'dest_sc')


def _json_default(value):
    if isinstance(value, Set):
        return list(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _serialized_size(data) -> int:
    return len(json.dumps(data, ensure_ascii=False, separators=(',', ':'), default=_json_default))


def _safe_name(identifier) -> bool:
    name = str(identifier)
    return bool(name) and name not in ('.', '..') and '/' not in name and '\\' not in name


def build_compact_routes(all_routes_data: dict, profile: SourceProfile, route_metadata=None) -> dict:
    """Shrink the route map to stop ids per direction plus one shared name table.

    Routes: {route: {"I": [ids], "O": [ids]}}; for operators with service types
    each direction holds {service_type: [ids]}. Coordinates and route lists are
    left out of the shared stop table.
    """
    compact = {'routes': {}, 'stops': {}}

    for route, route_info in all_routes_data.items():
        stops = route_info.get('stops', []) if isinstance(route_info, dict) else route_info
        if route not in compact['routes']:
            empty = dict if profile.has_service_types else list
            compact['routes'][route] = {'I': empty(), 'O': empty()}
        entry = compact['routes'][route]

        for stop in stops:
            direction = profile.direction_of(stop)
            stop_id = stop.get('stop')
            if direction is None or not stop_id:
                continue
            if profile.has_service_types:
                entry[direction].setdefault(profile.service_type_of(stop), []).append(stop_id)
            else:
                entry[direction].append(stop_id)

            if stop_id not in compact['stops']:
                compact['stops'][stop_id] = {field: stop.get(field) for field in NAME_FIELDS}

    if route_metadata:
        compact['info'] = build_route_info(route_metadata, profile)
    return compact


def build_route_info(route_metadata, profile: SourceProfile) -> dict:
    info = {}
    for meta in route_metadata:
        route = meta.get('route')
        if not route:
            continue
        names = {field: meta.get(field) for field in ROUTE_INFO_FIELDS if meta.get(field) is not None}
        if profile.has_service_types:
            direction = profile.direction_of(meta)
            if direction is None:
                continue
            info.setdefault(route, {}).setdefault(direction, {})[profile.service_type_of(meta)] = names
        else:
            info[route] = names
    return info


class FileManager:
    """Writes one operator's stop/route JSON tree under `base_dir`."""

    def __init__(self, base_dir: str, profile: SourceProfile):
        self.base_dir = base_dir
        self.profile = profile
        self.stops_dir = os.path.join(base_dir, 'stops')
        self.routes_dir = os.path.join(base_dir, 'routes')

    def ensure_directories(self):
        try:
            os.makedirs(self.stops_dir, exist_ok=True)
            os.makedirs(self.routes_dir, exist_ok=True)
        except OSError as e:
            raise FileSystemError(f"Could not create output directories under {self.base_dir}",
                                  {'baseDir': self.base_dir, 'originalError': str(e)}) from e

    def _write_json(self, file_path: str, data):
        with open(file_path, 'w', encoding='utf-8') as f:
            json.dump(data, f, indent=2, ensure_ascii=False, default=_json_default)
            f.write('\n')

    def _save(self, directory: str, name, data, kind: str, details: dict) -> Result:
        if not _safe_name(name):
            error = FileSystemError(f"Refusing to save {kind} data with unsafe name {name!r}", details)
            logger.error(error.message)
            return Result.failure(error)
        file_path = os.path.join(directory, f"{name}.json")
        try:
            self._write_json(file_path, data)
        except (OSError, TypeError, ValueError) as e:
            error = FileSystemError(f"Failed to save {kind} data for {name}",
                                    {**details, 'originalError': str(e)})
            logger.error(f"{error.message}: {e}")
            return Result.failure(error)
        return Result.success({**details, 'filePath': file_path})

    def save_stop_data(self, stop_id: str, stop_data: dict) -> Result:
        return self._save(self.stops_dir, stop_id, stop_data, 'stop', {'stopId': stop_id})

    def save_route_data(self, route: str, route_data: dict) -> Result:
        return self._save(self.routes_dir, route, route_data, 'route', {'route': route})

    def save_all_stops(self, all_stops_data: dict) -> Result:
        logger.info("Generating allstops.json...")
        result = self._save(self.stops_dir, 'allstops', all_stops_data, 'aggregate stop', {})
        if result.is_success():
            logger.info(f"allstops.json generated with {len(all_stops_data)} stops")
            return result.map(lambda saved: {**saved, 'count': len(all_stops_data)})
        return result

    def save_all_routes(self, all_routes_data: dict, route_metadata=None) -> Result:
        logger.info("Generating compact allroutes.json...")
        compact = build_compact_routes(all_routes_data, self.profile, route_metadata)

        result = self._save(self.routes_dir, 'allroutes', compact, 'aggregate route', {})
        if result.is_failure():
            return result

        original_size = _serialized_size(all_routes_data)
        compact_size = _serialized_size(compact)
        reduction = round((original_size - compact_size) / original_size * 100) if original_size else 0
        logger.info(f"Compact allroutes.json generated: {original_size} -> {compact_size} characters "
                    f"({reduction}% reduction)")
        return result.map(lambda saved: {
            **saved,
            'count': len(compact['routes']),
            'originalSize': original_size,
            'compactSize': compact_size,
            'reduction': reduction,
        })
