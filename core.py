import asyncio
import logging
import threading
from collections.abc import Coroutine
from concurrent.futures import Future

log = logging.getLogger(__name__)


class ClientRuntime:
    """Owns an asyncio loop in a background thread so any thread can use the client."""

    def __init__(self, api_client):
        self.api_client = api_client
        self.loop: asyncio.AbstractEventLoop | None = None
        self._thread: threading.Thread | None = None
        self._ready = threading.Event()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self):
        if self.running:
            return
        self._ready.clear()
        self._thread = threading.Thread(target=self._run, name="api-client-loop", daemon=True)
        self._thread.start()
        self._ready.wait()
        log.info("Client runtime started")

    def _run(self):
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        self.loop = loop
        self._ready.set()
        try:
            loop.run_forever()
        finally:
            loop.close()
            self.loop = None

    def submit(self, coro: Coroutine) -> Future:
        if self.loop is None:
            coro.close()
            raise RuntimeError("Client runtime is not running")
        return asyncio.run_coroutine_threadsafe(coro, self.loop)

    def call(self, coro: Coroutine, timeout: float | None = None):
        """Run ``coro`` on the client loop and block for its result."""
        return self.submit(coro).result(timeout)

    def stop(self, timeout: float = 5.0):
        if not self.running or self.loop is None:
            return
        try:
            self.call(self.api_client.close(), timeout)
        except Exception:
            log.exception("Client close failed")
        self.loop.call_soon_threadsafe(self.loop.stop)
        self._thread.join(timeout)
        self._thread = None
        log.info("Client runtime stopped")
