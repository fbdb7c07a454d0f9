import argparse
import asyncio
import logging
import sys

from hktransport.common.config import load_config
from hktransport.common.errors import ConfigurationError
from hktransport.ingest.cache import ApiCache
from hktransport.services.citybus_service import CitybusService
from hktransport.services.kmb_service import KMBService
from hktransport.services.timing import format_phases

SERVICES = {
    'ctb': CitybusService,
    'kmb': KMBService,
}


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="hong kong bus route and stop data collector")
    parser.add_argument('--source', choices=['ctb', 'kmb', 'all'], default='all',
                        help='which operator to collect (default: all)')
    parser.add_argument('--silent', action='store_true', help='run in silent mode, suppressing progress bars')
    parser.add_argument('--no-cache', action='store_true', help='ignore and do not write the local API cache')
    parser.add_argument('--clear-cache', action='store_true', help='delete cached API responses before running')
    return parser.parse_args(argv)


async def run_services(config, sources, silent=False) -> int:
    for source in sources:
        service = SERVICES[source](config, silent=silent)
        print(f"\n=== Collecting {service.name} data ===")
        result = await service.collect_and_save_data()

        if result.is_failure():
            error = result.error
            print(f"{service.name} data collection failed: {error}", file=sys.stderr)
            details = getattr(error, 'details', None)
            if details:
                print(f"Details: {details.get('originalError', details)}", file=sys.stderr)
            return 1

        stats = result.unwrap()
        print(f"{service.name} Summary: {stats.successful_stops}/{stats.total_stops} stops processed")
        if stats.phases:
            print(f"{service.name} Timing: {format_phases(stats.phases)}")
        if stats.failed_stops:
            print(f"{service.name} Warning: {stats.failed_stops} stops saved with placeholder details")
        if stats.failed_routes:
            print(f"{service.name} Warning: {stats.failed_routes} routes could not be collected")
        if stats.save_errors:
            print(f"{service.name} Warning: {stats.save_errors} file save errors occurred")
    return 0


def main(argv=None) -> int:
    args = parse_args(argv)

    try:
        config = load_config()
    except ConfigurationError as e:
        print(f"Configuration Error: {e.message}", file=sys.stderr)
        print(f"Details: {e.details}", file=sys.stderr)
        return 1

    if args.no_cache:
        config = config.model_copy(update={'cache': config.cache.model_copy(update={'enabled': False})})

    logging.basicConfig(level=config.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    logging.getLogger('httpx').setLevel(logging.WARNING)

    if args.clear_cache:
        removed = ApiCache(config.cache.dir, config.cache.ttl).clear()
        print(f"Removed {removed} cached responses from {config.cache.dir}")

    sources = list(SERVICES) if args.source == 'all' else [args.source]
    exit_code = asyncio.run(run_services(config, sources, silent=args.silent))
    if exit_code == 0:
        print("\nAll data collected successfully")
    return exit_code


if __name__ == "__main__":
    sys.exit(main())
