from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from typing import Callable

from marksync.core.errors import DownloadTimeoutError
from marksync.storage.codec import decode_payload
from marksync.storage.filenames import GZIP_SUFFIX

logger = logging.getLogger("download_queue")

DEFAULT_TIMEOUT_SEC = 30


class DownloadQueue:
    """Process-local download dedup with a per-call timeout.

    Concurrent ``fetch`` calls for the same path share one in-flight future;
    the decoded text (gunzipped for ``.gz`` paths) is what callers receive.
    """

    def __init__(self, timeout_sec: float = DEFAULT_TIMEOUT_SEC, max_workers: int = 4):
        self.timeout_sec = timeout_sec
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="marksync-download")
        self._inflight: dict[str, Future] = {}
        self._lock = threading.RLock()

    @property
    def size(self) -> int:
        with self._lock:
            return len(self._inflight)

    def is_downloading(self, path: str) -> bool:
        with self._lock:
            return path in self._inflight

    def _forget(self, path: str, future: Future) -> None:
        with self._lock:
            if self._inflight.get(path) is future:
                del self._inflight[path]

    @staticmethod
    def _download(path: str, fetcher: Callable[[str], bytes]) -> str:
        raw = fetcher(path)
        return decode_payload(raw, compressed=path.endswith(GZIP_SUFFIX))

    def fetch(self, path: str, fetcher: Callable[[str], bytes]) -> str:
        with self._lock:
            future = self._inflight.get(path)
            if future is None:
                future = self._executor.submit(self._download, path, fetcher)
                self._inflight[path] = future
                future.add_done_callback(lambda f, p=path: self._forget(p, f))
                logger.debug("download_started path=%s", path)
            else:
                logger.debug("download_deduplicated path=%s", path)

        try:
            return future.result(timeout=self.timeout_sec)
        except FuturesTimeoutError:
            self._forget(path, future)
            logger.warning("download_timeout path=%s timeout_sec=%s", path, self.timeout_sec)
            raise DownloadTimeoutError(f"download_timeout: {path}")

    def clear(self) -> None:
        with self._lock:
            self._inflight.clear()

    def shutdown(self) -> None:
        self.clear()
        self._executor.shutdown(wait=False)
