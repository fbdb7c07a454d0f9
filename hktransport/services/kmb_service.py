import asyncio
import logging

from hktransport.common.config import AppConfig
from hktransport.common.errors import ValidationError
from hktransport.common.result import Result
from hktransport.common.sources import KMB
from hktransport.export.file_manager import FileManager
from hktransport.ingest.http_client import ApiClient
from hktransport.ingest.kmb_client import KMBCollector
from hktransport.processing.enrichment import process_stop_details_results
from hktransport.processing.route_stops import build_stop_routes_map, group_route_stops
from hktransport.services.publishing import RunStats, build_all_stops, failed_run, publish
from hktransport.services.timing import timed_phase

logger = logging.getLogger(__name__)


class KMBService:
    """Runs one KMB collection from the bulk route, route-stop and stop listings."""

    name = KMB.name

    def __init__(self, config: AppConfig, client: ApiClient = None, collector: KMBCollector = None,
                 file_manager: FileManager = None, silent=False):
        self.config = config
        self.client = client
        self.collector = collector
        self.file_manager = file_manager or FileManager(config.output.kmb_dir, KMB)
        self.silent = silent

    async def collect_and_save_data(self) -> Result:
        owns_client = self.client is None and self.collector is None
        client = self.client
        if self.collector is None:
            client = client or ApiClient.from_config(self.config)
            collector = KMBCollector.from_config(client, self.config, silent=self.silent)
        else:
            collector = self.collector

        try:
            return Result.success(await self._run(collector))
        except Exception as e:
            return failed_run(self.name, e)
        finally:
            if owns_client and client is not None:
                await client.aclose()

    async def _run(self, collector: KMBCollector) -> RunStats:
        stats = RunStats()
        self.file_manager.ensure_directories()

        with timed_phase(stats.phases, 'routes and route stops'):
            routes, all_route_stops = await asyncio.gather(
                collector.collect_routes(),
                collector.collect_all_route_stops_data(),
            )
        if not routes:
            raise ValidationError("KMB routes listing returned no routes")
        logger.info(f"Found {len(routes)} route variants and {len(all_route_stops)} route-stops")

        route_stops = group_route_stops(all_route_stops, routes, KMB)
        stop_routes_map = build_stop_routes_map(route_stops)
        stats.total_routes = len(route_stops)
        stats.failed_routes = sum(1 for entry in route_stops.values()
                                  if not entry['inbound'] and not entry['outbound'])

        stop_ids = list(stop_routes_map)
        stats.total_stops = len(stop_ids)
        logger.info(f"Found {len(stop_ids)} unique stops")

        with timed_phase(stats.phases, 'stop details'):
            stop_details_results = await collector.collect_stop_details_for_stops(stop_ids)
            successful_stops = process_stop_details_results(stop_details_results)

        with timed_phase(stats.phases, 'publish'):
            all_stops = build_all_stops(stop_ids, stop_routes_map, successful_stops, stats)
            await asyncio.to_thread(
                publish, self.file_manager, KMB, all_stops, route_stops, successful_stops, routes, stats
            )

        logger.info(f"Successfully processed {stats.successful_stops} out of {stats.total_stops} stops")
        if stats.save_errors:
            logger.warning(f"Encountered {stats.stop_save_errors} stop save errors and "
                           f"{stats.route_save_errors} route save errors")
        return stats
