import hashlib
import json
import logging
import os
import tempfile
import time

logger = logging.getLogger(__name__)


class ApiCache:
    """File-backed cache of decoded API responses, one JSON file per URL."""

    def __init__(self, cache_dir=".cache", ttl=24 * 60 * 60, enabled=True, clock=time.time):
        self.cache_dir = cache_dir
        self.ttl = ttl
        self.enabled = enabled
        self._clock = clock

    @staticmethod
    def cache_key(url: str) -> str:
        return hashlib.md5(url.encode('utf-8')).hexdigest()

    def _path_for(self, url: str) -> str:
        return os.path.join(self.cache_dir, f"{self.cache_key(url)}.json")

    def is_enabled(self) -> bool:
        return self.enabled

    def get(self, url: str):
        if not self.enabled:
            return None

        cache_path = self._path_for(url)
        try:
            with open(cache_path, 'r', encoding='utf-8') as f:
                entry = json.load(f)
            written_at = float(entry['timestamp'])
            data = entry['data']
        except FileNotFoundError:
            return None
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.debug(f"Ignoring unreadable cache entry for {url}: {e}")
            return None

        if self._clock() - written_at >= self.ttl:
            try:
                os.unlink(cache_path)
            except OSError:
                pass
            return None
        return data

    def set(self, url: str, data) -> None:
        if not self.enabled:
            return

        try:
            os.makedirs(self.cache_dir, exist_ok=True)
            entry = {'url': url, 'data': data, 'timestamp': self._clock()}
            fd, tmp_path = tempfile.mkstemp(dir=self.cache_dir, suffix='.tmp')
            try:
                with os.fdopen(fd, 'w', encoding='utf-8') as f:
                    json.dump(entry, f, ensure_ascii=False)
                os.replace(tmp_path, self._path_for(url))
            except BaseException:
                if os.path.exists(tmp_path):
                    os.unlink(tmp_path)
                raise
        except (OSError, TypeError, ValueError) as e:
            logger.warning(f"Failed to cache response for {url}: {e}")

    def clear(self) -> int:
        removed = 0
        try:
            names = os.listdir(self.cache_dir)
        except FileNotFoundError:
            return 0
        for name in names:
            if not name.endswith('.json'):
                continue
            try:
                os.unlink(os.path.join(self.cache_dir, name))
                removed += 1
            except OSError as e:
                logger.warning(f"Could not remove cache file {name}: {e}")
        return removed
