import logging
import os
from typing import Mapping, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from hktransport.common.errors import ConfigurationError

logger = logging.getLogger(__name__)

CTB_BASE_URL = "https://rt.data.gov.hk/v2/transport/citybus"
KMB_BASE_URL = "https://data.etabus.gov.hk/v1/transport/kmb"
PUBLISHED_BASE_URL = "https://winstonma.github.io/MMM-HK-Transport-ETA-Data"


def _check_url(value: str) -> str:
    parsed = urlparse(value)
    if parsed.scheme not in ('http', 'https') or not parsed.netloc:
        raise ValueError("must be a valid http(s) URL")
    return value


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, extra='forbid')


class Endpoints(_Frozen):
    routes: str
    route_stop: str
    stop: str

    @field_validator('routes', 'route_stop', 'stop')
    @classmethod
    def must_be_url(cls, v: str) -> str:
        return _check_url(v)


class ApiConfig(_Frozen):
    requests_per_second: float = Field(3, ge=1, le=100)
    concurrent_requests: int = Field(2, ge=1, le=50)
    timeout: float = Field(30, ge=1, le=300, description="seconds, small payload profile")
    large_timeout: float = Field(60, ge=1, le=600, description="seconds, bulk endpoints")
    retry_limit: int = Field(3, ge=0, le=10)
    retry_backoff: float = Field(2, ge=0, le=60, description="first backoff delay in seconds")


class CacheConfig(_Frozen):
    dir: str = Field(".cache", min_length=1)
    ttl: float = Field(24 * 60 * 60, ge=0, le=7 * 24 * 60 * 60, description="seconds")
    enabled: bool = True


class OutputConfig(_Frozen):
    ctb_dir: str = Field("ctb", min_length=1)
    kmb_dir: str = Field("kmb", min_length=1)


class AppConfig(_Frozen):
    """Validated run configuration. Built once by `load_config` and handed to every component."""

    api: ApiConfig = ApiConfig()
    cache: CacheConfig = CacheConfig()
    output: OutputConfig = OutputConfig()
    ctb: Endpoints = Endpoints(
        routes=f"{CTB_BASE_URL}/route/ctb",
        route_stop=f"{CTB_BASE_URL}/route-stop/ctb",
        stop=f"{CTB_BASE_URL}/stop",
    )
    kmb: Endpoints = Endpoints(
        routes=f"{KMB_BASE_URL}/route/",
        route_stop=f"{KMB_BASE_URL}/route-stop",
        stop=f"{KMB_BASE_URL}/stop",
    )
    published_base_url: str = PUBLISHED_BASE_URL
    log_level: str = "INFO"

    @field_validator('published_base_url')
    @classmethod
    def published_must_be_url(cls, v: str) -> str:
        return _check_url(v)

    @field_validator('log_level')
    @classmethod
    def known_log_level(cls, v: str) -> str:
        level = v.upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError("must be one of DEBUG, INFO, WARNING, ERROR, CRITICAL")
        return level


# (section, field) -> environment variable
ENV_VARS = {
    ('api', 'requests_per_second'): 'REQUESTS_PER_SECOND',
    ('api', 'concurrent_requests'): 'CONCURRENT_REQUESTS',
    ('api', 'timeout'): 'API_TIMEOUT',
    ('api', 'large_timeout'): 'API_LARGE_TIMEOUT',
    ('api', 'retry_limit'): 'API_RETRY_LIMIT',
    ('api', 'retry_backoff'): 'API_RETRY_BACKOFF',
    ('cache', 'dir'): 'CACHE_DIR',
    ('cache', 'ttl'): 'CACHE_TTL',
    ('cache', 'enabled'): 'ENABLE_API_CACHE',
    ('output', 'ctb_dir'): 'CTB_OUTPUT_DIR',
    ('output', 'kmb_dir'): 'KMB_OUTPUT_DIR',
    ('ctb', 'routes'): 'CTB_ROUTES_API',
    ('ctb', 'route_stop'): 'CTB_ROUTE_STOP_API',
    ('ctb', 'stop'): 'CTB_STOP_API',
    ('kmb', 'routes'): 'KMB_ROUTE_API',
    ('kmb', 'route_stop'): 'KMB_ROUTE_STOP_API',
    ('kmb', 'stop'): 'KMB_STOP_API',
    ('published_base_url',): 'PUBLISHED_BASE_URL',
    ('log_level',): 'LOG_LEVEL',
}


def _collect_overrides(environ: Mapping[str, str]) -> dict:
    raw: dict = {}
    for path, env_name in ENV_VARS.items():
        value = environ.get(env_name)
        if value is None and env_name == 'PUBLISHED_BASE_URL':
            value = environ.get('GITHUB_PAGES_BASE_URL')
        if value is None:
            continue
        target = raw
        for key in path[:-1]:
            target = target.setdefault(key, {})
        target[path[-1]] = value

    # CI runs always hit the live APIs unless caching is explicitly requested
    if 'ENABLE_API_CACHE' not in environ and environ.get('CI', '').lower() == 'true':
        raw.setdefault('cache', {})['enabled'] = False
    return raw


def _env_name_for(loc: tuple) -> str:
    path = tuple(str(part) for part in loc)
    while path:
        if path in ENV_VARS:
            return ENV_VARS[path]
        path = path[:-1]
    return '.'.join(str(part) for part in loc)


def load_config(environ: Optional[Mapping[str, str]] = None) -> AppConfig:
    """Build the run configuration from environment variables, failing fast on bad values."""
    if environ is None:
        environ = os.environ
    overrides = _collect_overrides(environ)

    defaults = AppConfig()
    merged = defaults.model_dump()
    for section, values in overrides.items():
        if isinstance(values, dict):
            merged[section].update(values)
        else:
            merged[section] = values

    try:
        config = AppConfig.model_validate(merged)
    except ValidationError as e:
        first = e.errors()[0]
        env_name = _env_name_for(first['loc'])
        message = f"{env_name} {first['msg']}".replace("Value error, ", "")
        raise ConfigurationError(
            message,
            {'name': env_name, 'value': first.get('input'), 'constraint': first['msg']},
        ) from e

    logger.debug(f"Loaded configuration: {config.model_dump()}")
    return config
