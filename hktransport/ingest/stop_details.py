import logging
from typing import Iterable, Optional

from tqdm import tqdm

from hktransport.ingest.batching import process_with_concurrency
from hktransport.ingest.http_client import ApiClient

logger = logging.getLogger(__name__)


def compare_routes(existing_routes: Optional[Iterable[str]], new_routes: Optional[Iterable[str]]) -> bool:
    """Order-independent equality of two route lists; None on either side never matches."""
    if existing_routes is None or new_routes is None:
        return False
    return sorted(existing_routes) == sorted(new_routes)


def stop_result(stop_id, data=None, error=False, from_cache=False) -> dict:
    return {'stopId': stop_id, 'data': data, 'error': error, 'fromCache': from_cache}


async def collect_stop_details(client: ApiClient, stop_url: str, stop_id: str) -> dict:
    """Fetch one stop record. Failures come back as `{'error': True, 'data': None}`, never raised."""
    url = f"{stop_url.rstrip('/')}/{stop_id}"
    try:
        payload = await client.fetch_json(url)
    except Exception as e:
        logger.error(f"Error collecting details for stop {stop_id}: {e}")
        return stop_result(stop_id, error=True)
    data = payload.get('data') if isinstance(payload, dict) else None
    return stop_result(stop_id, data=data or None)


async def collect_all_stop_details(fetch_one, stop_ids, concurrency: int, silent=False) -> list:
    """Run `fetch_one(stop_id)` over every stop in barrier batches, one result dict per stop."""
    stop_ids = list(stop_ids)
    with tqdm(total=len(stop_ids), desc="Collecting stop details", disable=silent) as progress:
        settled = await process_with_concurrency(
            stop_ids,
            fetch_one,
            concurrency,
            on_progress=lambda done, total: progress.update(1),
        )

    results = []
    for stop_id, outcome in zip(stop_ids, settled):
        results.append(outcome.value if outcome.is_success() else stop_result(stop_id, error=True))
    failed = sum(1 for r in results if r['error'])
    logger.info(f"Collected details for {len(stop_ids) - failed}/{len(stop_ids)} stops")
    return results
