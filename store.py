import asyncio

from constants import SAVE_MAX_ATTEMPTS, SAVE_RETRY_DELAY
from backend import StoreBackend
from errors import StoreWriteFailed
from schemas.signaling import State
from logging_config import get_logger

logger = get_logger(__name__)


class StateWriter:
    """Writes registry snapshots to a StoreBackend.

    Snapshots are versioned by the registry; a snapshot older than the last
    one written is skipped, so concurrent handlers can never overwrite newer
    state with older state. Each write is retried up to `max_attempts` times
    with a fixed delay. A snapshot stops retrying as soon as a newer one is
    waiting, since the newer one carries everything it holds. A write that
    still fails is logged and dropped: the in-memory registry stays
    authoritative for the running process.
    """

    def __init__(self, backend: StoreBackend, max_attempts: int = SAVE_MAX_ATTEMPTS,
                 retry_delay: float = SAVE_RETRY_DELAY):
        self.backend = backend
        self.max_attempts = max(1, max_attempts)
        self.retry_delay = retry_delay
        self.written_version = 0
        self.requested_version = 0
        self.failed_writes = 0
        self._lock = asyncio.Lock()

    def _superseded(self, version: int) -> bool:
        return version <= self.written_version or version < self.requested_version

    async def save(self, state: State, version: int) -> bool:
        self.requested_version = max(self.requested_version, version)
        async with self._lock:
            if self._superseded(version):
                logger.debug(f"Skipping state version {version} (written: {self.written_version}, "
                             f"latest: {self.requested_version})")
                return True

            loop = asyncio.get_running_loop()
            for attempt in range(1, self.max_attempts + 1):
                try:
                    # Backend I/O is blocking, keep it off the event loop
                    await loop.run_in_executor(None, self.backend.save, state)
                    self.written_version = version
                    logger.debug(f"State version {version} saved to {self.backend.name} store")
                    return True
                except Exception as e:
                    logger.error(f"Error saving state (attempt {attempt}/{self.max_attempts}): {e}")

                if attempt == self.max_attempts:
                    break
                if not self._superseded(version):
                    await asyncio.sleep(self.retry_delay)
                if self._superseded(version):
                    logger.info(f"State version {version} superseded by version {self.requested_version}, "
                                f"handing over the retry")
                    return True

            self.failed_writes += 1
            error = StoreWriteFailed(f"Gave up saving state version {version} after {self.max_attempts} attempts")
            logger.error(str(error))
            return False
