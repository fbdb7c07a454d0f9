import logging
import traceback
from dataclasses import dataclass, field

from hktransport.common.errors import ProcessingError
from hktransport.common.result import Result
from hktransport.common.sources import SourceProfile
from hktransport.export.file_manager import FileManager
from hktransport.processing.enrichment import (
    add_nearby_stop_ids,
    create_enriched_route_data,
    create_fallback_stop,
    enrich_stop_with_routes,
)

logger = logging.getLogger(__name__)


@dataclass
class RunStats:
    total_routes: int = 0
    total_stops: int = 0
    successful_stops: int = 0
    failed_stops: int = 0
    reused_stops: int = 0
    failed_routes: int = 0
    stop_save_errors: int = 0
    route_save_errors: int = 0
    aggregate_save_errors: int = 0
    phases: dict = field(default_factory=dict)

    @property
    def save_errors(self) -> int:
        return self.stop_save_errors + self.route_save_errors + self.aggregate_save_errors


def build_all_stops(stop_ids, stop_routes_map, successful_stops, stats: RunStats) -> dict:
    """Enriched record for every discovered stop; placeholders where details are missing."""
    details = {s['stopId']: s['data'] for s in successful_stops}
    all_stops = {}
    for stop_id in stop_ids:
        data = details.get(stop_id)
        if data:
            stats.successful_stops += 1
        else:
            stats.failed_stops += 1
            data = create_fallback_stop(stop_id)
        all_stops[stop_id] = enrich_stop_with_routes(data, stop_routes_map, stop_id)

    locations = add_nearby_stop_ids(all_stops)
    logger.info(f"Found {locations} unique coordinate locations across {len(all_stops)} stops")
    return all_stops


def publish(file_manager: FileManager, profile: SourceProfile, all_stops: dict, route_stops: dict,
            successful_stops, route_metadata, stats: RunStats):
    for stop_id, stop_data in all_stops.items():
        if file_manager.save_stop_data(stop_id, stop_data).is_failure():
            stats.stop_save_errors += 1

    if file_manager.save_all_stops(all_stops).is_failure():
        stats.aggregate_save_errors += 1

    logger.info("Generating route files with enriched stop information...")
    all_routes = {}
    for route in route_stops:
        route_data = create_enriched_route_data(route, route_stops, successful_stops, profile)
        all_routes[route] = route_data
        if file_manager.save_route_data(route, route_data).is_failure():
            stats.route_save_errors += 1

    if file_manager.save_all_routes(all_routes, route_metadata).is_failure():
        stats.aggregate_save_errors += 1
    return all_routes


def failed_run(name: str, error: Exception) -> Result:
    logger.error(f"Error in {name} data collection process: {error}")
    return Result.failure(ProcessingError(
        f"{name} data collection failed",
        {'originalError': str(error), 'stack': traceback.format_exc()},
    ))
