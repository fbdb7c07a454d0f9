#!/usr/bin/env python3

import pytest

from hktransport.common.config import load_config
from hktransport.common.errors import ConfigurationError


def test_defaults():
    config = load_config({})
    assert config.api.requests_per_second == 3
    assert config.api.concurrent_requests == 2
    assert config.api.timeout == 30
    assert config.api.large_timeout == 60
    assert config.api.retry_limit == 3
    assert config.cache.enabled is True
    assert config.cache.ttl == 24 * 60 * 60
    assert config.output.ctb_dir == "ctb"
    assert config.ctb.routes == "https://rt.data.gov.hk/v2/transport/citybus/route/ctb"
    assert config.kmb.route_stop == "https://data.etabus.gov.hk/v1/transport/kmb/route-stop"


def test_environment_overrides():
    config = load_config({
        "REQUESTS_PER_SECOND": "10",
        "CONCURRENT_REQUESTS": "8",
        "CTB_STOP_API": "http://localhost:8080/stop",
        "KMB_OUTPUT_DIR": "out/kmb",
        "ENABLE_API_CACHE": "false",
        "GITHUB_PAGES_BASE_URL": "https://example.org/data",
        "LOG_LEVEL": "debug",
    })
    assert config.api.requests_per_second == 10
    assert config.api.concurrent_requests == 8
    assert config.ctb.stop == "http://localhost:8080/stop"
    assert config.output.kmb_dir == "out/kmb"
    assert config.cache.enabled is False
    assert config.published_base_url == "https://example.org/data"
    assert config.log_level == "DEBUG"


def test_ci_disables_cache_unless_explicitly_enabled():
    assert load_config({"CI": "true"}).cache.enabled is False
    assert load_config({"CI": "true", "ENABLE_API_CACHE": "true"}).cache.enabled is True


@pytest.mark.parametrize("name,value", [
    ("REQUESTS_PER_SECOND", "0"),
    ("REQUESTS_PER_SECOND", "fast"),
    ("CONCURRENT_REQUESTS", "51"),
    ("API_RETRY_LIMIT", "11"),
    ("CACHE_TTL", "-1"),
    ("KMB_STOP_API", "not a url"),
    ("CTB_OUTPUT_DIR", ""),
    ("ENABLE_API_CACHE", "maybe"),
    ("LOG_LEVEL", "LOUD"),
])
def test_invalid_values_name_the_variable(name, value):
    with pytest.raises(ConfigurationError) as exc_info:
        load_config({name: value})
    assert exc_info.value.details["name"] == name
    assert str(exc_info.value).startswith(name)


def test_config_is_immutable():
    config = load_config({})
    with pytest.raises(Exception):
        config.api.requests_per_second = 99
