import logging
import time

from hktransport.common.config import AppConfig, Endpoints
from hktransport.ingest.http_client import LARGE, ApiClient
from hktransport.ingest.stop_details import collect_all_stop_details, collect_stop_details, stop_result

logger = logging.getLogger(__name__)


class KMBCollector:
    """Collects KMB data. Route-stops and stops come from bulk listings rather than per-route calls."""

    def __init__(self, client: ApiClient, endpoints: Endpoints, concurrency=2, silent=False):
        self.client = client
        self.endpoints = endpoints
        self.concurrency = concurrency
        self.silent = silent

    @classmethod
    def from_config(cls, client: ApiClient, config: AppConfig, silent=False) -> "KMBCollector":
        return cls(client, config.kmb, config.api.concurrent_requests, silent)

    async def collect_routes(self) -> list:
        logger.info("Fetching all KMB routes...")
        payload = await self.client.fetch_json(self.endpoints.routes)
        data = (payload or {}).get('data') or []
        logger.info(f"Found {len(data)} route variants")
        return data

    async def collect_all_route_stops_data(self) -> list:
        logger.info("Fetching all KMB route-stop sequences...")
        try:
            payload = await self.client.fetch_json(self.endpoints.route_stop, profile=LARGE)
        except Exception as e:
            logger.error(f"Error collecting all route stops: {e}")
            return []
        data = (payload or {}).get('data') or []
        logger.info(f"Collected {len(data)} route-stop records")
        return data

    async def collect_stop_details(self, stop_id: str) -> dict:
        return await collect_stop_details(self.client, self.endpoints.stop, stop_id)

    async def collect_all_stop_details(self, stop_ids) -> list:
        return await collect_all_stop_details(
            self.collect_stop_details, stop_ids, self.concurrency, silent=self.silent
        )

    async def collect_stop_details_for_stops(self, stop_ids) -> list:
        """One bulk /stop call, then individual fetches for ids the listing lacks."""
        start = time.monotonic()
        try:
            payload = await self.client.fetch_json(self.endpoints.stop, profile=LARGE)
            all_stops = (payload or {}).get('data') or []
            logger.info(f"Retrieved {len(all_stops)} stops from KMB API in {time.monotonic() - start:.1f}s")
        except Exception as e:
            logger.error(f"Error collecting bulk stop listing: {e}")
            logger.info("Falling back to per-stop requests")
            all_stops = []

        by_id = {s['stop']: s for s in all_stops if isinstance(s, dict) and s.get('stop')}
        stop_ids = list(stop_ids)
        results = [stop_result(stop_id, data=by_id[stop_id]) for stop_id in stop_ids if stop_id in by_id]
        missing = [stop_id for stop_id in stop_ids if stop_id not in by_id]
        if missing:
            logger.info(f"{len(missing)} stops absent from bulk listing, fetching individually")
            results.extend(await self.collect_all_stop_details(missing))
        return results
