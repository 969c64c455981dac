"""Key-value stores shared by independent browsing contexts."""

import threading
from collections import defaultdict
from typing import Callable, Dict, List, Optional

import redis
from loguru import logger
from redis.exceptions import WatchError

from seatbook.config import Settings

ChangeCallback = Callable[[str], None]


class KeyValueStore:
    """String store with atomic read-modify-write and change notification."""

    def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def set(self, key: str, value: str):
        raise NotImplementedError

    def delete(self, key: str):
        raise NotImplementedError

    def update(self, key: str, fn: Callable[[Optional[str]], Optional[str]]) -> Optional[str]:
        """Atomically replace the value with fn(old); None deletes the key.

        fn may be called more than once if another writer got in first, so
        it must compute its result from its argument alone.
        """
        raise NotImplementedError

    def subscribe(self, key: str, callback: ChangeCallback) -> Callable[[], None]:
        """Call callback(key) after every write to key; returns an unsubscribe."""
        raise NotImplementedError


class InMemoryKeyValueStore(KeyValueStore):
    """Thread-safe store for contexts inside one process."""

    def __init__(self):
        self._data: Dict[str, str] = {}
        self._lock = threading.RLock()
        self._subscribers: Dict[str, List[ChangeCallback]] = defaultdict(list)

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: str):
        with self._lock:
            self._data[key] = value
        self._notify(key)

    def delete(self, key: str):
        with self._lock:
            existed = self._data.pop(key, None) is not None
        if existed:
            self._notify(key)

    def update(self, key: str, fn: Callable[[Optional[str]], Optional[str]]) -> Optional[str]:
        with self._lock:
            old = self._data.get(key)
            new = fn(old)
            if new is None:
                self._data.pop(key, None)
            else:
                self._data[key] = new
        if new != old:
            self._notify(key)
        return new

    def subscribe(self, key: str, callback: ChangeCallback) -> Callable[[], None]:
        with self._lock:
            self._subscribers[key].append(callback)

        def unsubscribe():
            with self._lock:
                if callback in self._subscribers[key]:
                    self._subscribers[key].remove(callback)

        return unsubscribe

    def _notify(self, key: str):
        # Deliver outside the lock so callbacks may read or write the store
        with self._lock:
            callbacks = list(self._subscribers.get(key, []))
        for callback in callbacks:
            _deliver(callback, key)


class RedisKeyValueStore(KeyValueStore):
    """Store shared by every process that can reach one Redis server.

    update() is an optimistic WATCH/MULTI transaction that retries when the
    key changes underneath it. Change events are published on one channel
    per key and delivered to subscribers on a background thread.
    """

    def __init__(
        self,
        client: redis.Redis,
        channel_prefix: str = "seatbook:changed:",
        poll_interval: float = 0.05,
    ):
        self.client = client
        self.channel_prefix = channel_prefix
        self.poll_interval = poll_interval

    @classmethod
    def from_url(cls, url: str, **kwargs) -> "RedisKeyValueStore":
        client = redis.from_url(
            url,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_keepalive=True,
        )
        logger.info(f"Ledger store connected to {url}")
        return cls(client, **kwargs)

    def channel(self, key: str) -> str:
        return f"{self.channel_prefix}{key}"

    def get(self, key: str) -> Optional[str]:
        return _text(self.client.get(key))

    def set(self, key: str, value: str):
        self.client.set(key, value)
        self._notify(key)

    def delete(self, key: str):
        if self.client.delete(key):
            self._notify(key)

    def update(self, key: str, fn: Callable[[Optional[str]], Optional[str]]) -> Optional[str]:
        with self.client.pipeline() as pipe:
            while True:
                try:
                    pipe.watch(key)
                    old = _text(pipe.get(key))
                    new = fn(old)
                    pipe.multi()
                    if new is None:
                        pipe.delete(key)
                    else:
                        pipe.set(key, new)
                    pipe.execute()
                    break
                except WatchError:
                    logger.debug(f"Concurrent write to {key}, retrying update")

        if new != old:
            self._notify(key)
        return new

    def subscribe(self, key: str, callback: ChangeCallback) -> Callable[[], None]:
        pubsub = self.client.pubsub(ignore_subscribe_messages=True)
        pubsub.subscribe(**{self.channel(key): lambda message: _deliver(callback, key)})
        worker = pubsub.run_in_thread(sleep_time=self.poll_interval, daemon=True)

        def unsubscribe():
            # The worker closes its pubsub connection on the way out
            worker.stop()
            worker.join(timeout=1.0)

        return unsubscribe

    def _notify(self, key: str):
        self.client.publish(self.channel(key), key)


def create_store(settings: Settings) -> KeyValueStore:
    """Redis when a URL is configured, otherwise a store private to this process."""
    if settings.REDIS_URL:
        return RedisKeyValueStore.from_url(
            settings.REDIS_URL, channel_prefix=settings.REDIS_CHANNEL_PREFIX
        )
    return InMemoryKeyValueStore()


def _text(raw) -> Optional[str]:
    if isinstance(raw, bytes):
        return raw.decode("utf-8")
    return raw


def _deliver(callback: ChangeCallback, key: str):
    try:
        callback(key)
    except Exception:
        logger.exception(f"Change subscriber for {key} failed")
