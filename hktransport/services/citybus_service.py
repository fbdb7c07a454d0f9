import asyncio
import logging

from hktransport.common.config import AppConfig
from hktransport.common.errors import ValidationError
from hktransport.common.result import Result
from hktransport.common.sources import CTB
from hktransport.export.file_manager import FileManager
from hktransport.ingest.citybus_client import CitybusCollector
from hktransport.ingest.http_client import ApiClient
from hktransport.processing.enrichment import process_stop_details_results
from hktransport.processing.route_stops import process_route_stop_results
from hktransport.services.publishing import RunStats, build_all_stops, failed_run, publish
from hktransport.services.timing import timed_phase

logger = logging.getLogger(__name__)


class CitybusService:
    """Runs one Citybus collection: routes -> route stops -> stop details -> JSON tree."""

    name = CTB.name

    def __init__(self, config: AppConfig, client: ApiClient = None, collector: CitybusCollector = None,
                 file_manager: FileManager = None, silent=False):
        self.config = config
        self.client = client
        self.collector = collector
        self.file_manager = file_manager or FileManager(config.output.ctb_dir, CTB)
        self.silent = silent

    async def collect_and_save_data(self) -> Result:
        owns_client = self.client is None and self.collector is None
        client = self.client
        if self.collector is None:
            client = client or ApiClient.from_config(self.config)
            collector = CitybusCollector.from_config(client, self.config, silent=self.silent)
        else:
            collector = self.collector

        try:
            return Result.success(await self._run(collector))
        except Exception as e:
            return failed_run(self.name, e)
        finally:
            if owns_client and client is not None:
                await client.aclose()

    async def _run(self, collector: CitybusCollector) -> RunStats:
        stats = RunStats()
        self.file_manager.ensure_directories()

        with timed_phase(stats.phases, 'routes'):
            routes = await collector.collect_routes()
        if not routes:
            raise ValidationError("Citybus routes listing returned no routes")
        stats.total_routes = len(routes)

        with timed_phase(stats.phases, 'route stops'):
            route_stop_results = await collector.collect_all_route_stops(routes)
            route_stops, stop_routes_map = process_route_stop_results(route_stop_results)
        stats.failed_routes = len(route_stop_results) - len(route_stops)
        if stats.failed_routes:
            logger.warning(f"{stats.failed_routes} routes could not be fully collected")

        stop_ids = list(stop_routes_map)
        stats.total_stops = len(stop_ids)
        logger.info(f"Found {len(stop_ids)} unique stops")

        with timed_phase(stats.phases, 'stop details'):
            stop_details_results = await collector.collect_optimized_stop_details(stop_ids, stop_routes_map)
            successful_stops = process_stop_details_results(stop_details_results)
        stats.reused_stops = sum(1 for s in successful_stops if s.get('fromCache'))

        with timed_phase(stats.phases, 'publish'):
            all_stops = build_all_stops(stop_ids, stop_routes_map, successful_stops, stats)
            await asyncio.to_thread(
                publish, self.file_manager, CTB, all_stops, route_stops, successful_stops, routes, stats
            )

        logger.info(f"Successfully processed {stats.successful_stops} out of {stats.total_stops} stops")
        if stats.save_errors:
            logger.warning(f"Encountered {stats.stop_save_errors} stop save errors and "
                           f"{stats.route_save_errors} route save errors")
        return stats
