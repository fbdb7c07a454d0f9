import asyncio
import logging
import os

from tqdm import tqdm

from hktransport.common.config import AppConfig, Endpoints
from hktransport.common.sources import CTB, DIRECTION_CODES
from hktransport.ingest.batching import process_with_concurrency
from hktransport.ingest.http_client import ApiClient
from hktransport.ingest.stop_details import (
    collect_all_stop_details,
    collect_stop_details,
    compare_routes,
    stop_result,
)

logger = logging.getLogger(__name__)


def _has_coordinates(stop: dict) -> bool:
    return bool(stop.get('lat')) and bool(stop.get('long'))


def _with_direction(rows: list, direction: str) -> list:
    """Rows lacking a `dir` take the direction of the leg they were fetched from."""
    code = DIRECTION_CODES[direction]
    return [row if CTB.direction_of(row) else {**row, CTB.direction_field: code} for row in rows]


class CitybusCollector:
    """Collects Citybus routes, per-route stop sequences and stop details."""

    def __init__(self, client: ApiClient, endpoints: Endpoints, concurrency=2,
                 existing_stops_url=None, silent=False):
        self.client = client
        self.endpoints = endpoints
        self.concurrency = concurrency
        self.existing_stops_url = existing_stops_url
        self.silent = silent

    @classmethod
    def from_config(cls, client: ApiClient, config: AppConfig, silent=False) -> "CitybusCollector":
        # the published tree mirrors the output directory name
        published_dir = os.path.basename(os.path.normpath(config.output.ctb_dir))
        existing = f"{config.published_base_url.rstrip('/')}/{published_dir}/stops/allstops.json"
        return cls(client, config.ctb, config.api.concurrent_requests, existing, silent)

    async def collect_routes(self) -> list:
        logger.info("Fetching all Citybus routes...")
        payload = await self.client.fetch_json(self.endpoints.routes)
        data = (payload or {}).get('data') or []
        logger.info(f"Found {len(data)} routes")
        return data

    async def collect_route_stops(self, route: str) -> dict:
        """Fetch both directions together; a failed leg is empty and flags `error`."""
        base = self.endpoints.route_stop.rstrip('/')
        inbound, outbound = await asyncio.gather(
            self.client.fetch_json(f"{base}/{route}/inbound"),
            self.client.fetch_json(f"{base}/{route}/outbound"),
            return_exceptions=True,
        )

        error = False
        legs = []
        for direction, leg in (('inbound', inbound), ('outbound', outbound)):
            if isinstance(leg, Exception):
                logger.error(f"Error collecting {direction} stops for route {route}: {leg}")
                error = True
                legs.append([])
            else:
                legs.append(_with_direction((leg or {}).get('data') or [], direction))

        return {'route': route, 'inbound': legs[0], 'outbound': legs[1], 'error': error}

    async def collect_all_route_stops(self, routes: list) -> list:
        route_list = [r['route'] for r in routes if r.get('route')]
        with tqdm(total=len(route_list), desc="Collecting route stops", disable=self.silent) as progress:
            results = await process_with_concurrency(
                route_list,
                self.collect_route_stops,
                self.concurrency,
                on_progress=lambda done, total: progress.update(1),
            )
        logger.info(f"Collected route stops for {len(route_list)} routes")
        return results

    async def collect_stop_details(self, stop_id: str) -> dict:
        return await collect_stop_details(self.client, self.endpoints.stop, stop_id)

    async def collect_all_stop_details(self, stop_ids) -> list:
        return await collect_all_stop_details(
            self.collect_stop_details, stop_ids, self.concurrency, silent=self.silent
        )

    async def fetch_existing_all_stops(self) -> dict:
        """Previously published allstops.json, or {} when it can't be had."""
        if not self.existing_stops_url:
            return {}
        logger.info(f"Fetching existing allstops.json from {self.existing_stops_url}")
        try:
            data = await self.client.fetch_json(self.existing_stops_url, profile='large')
        except Exception as e:
            logger.warning(f"Could not fetch existing allstops.json, will collect all data fresh ({e})")
            return {}
        if not isinstance(data, dict):
            logger.warning("Existing allstops.json is not an object, will collect all data fresh")
            return {}
        logger.info(f"Found {len(data)} existing stops")
        return data

    async def collect_optimized_stop_details(self, stop_ids, stop_routes_map) -> list:
        """Reuse published stop records whose route set is unchanged; fetch the rest.

        Only the route set is compared, so a renamed or moved stop keeps its old
        record until its routes change.
        """
        stop_ids = list(stop_ids)
        existing_all_stops = await self.fetch_existing_all_stops()

        reused = []
        to_fetch = []
        for stop_id in stop_ids:
            current_routes = list(stop_routes_map.get(stop_id) or [])
            existing = existing_all_stops.get(stop_id)
            if (isinstance(existing, dict) and _has_coordinates(existing)
                    and compare_routes(existing.get('routes'), current_routes)):
                reused.append(stop_result(stop_id, data=existing, from_cache=True))
            else:
                to_fetch.append(stop_id)

        logger.info(f"Using published data for {len(reused)} stops, fetching {len(to_fetch)} stops")

        fetched = await self.collect_all_stop_details(to_fetch) if to_fetch else []

        logger.info(f"Stop details optimization completed, reused {len(reused)}/{len(stop_ids)} stops")
        return reused + fetched
