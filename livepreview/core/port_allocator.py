"""Port Allocator - hands out unused TCP ports from a configured range."""

import logging
import socket
import threading

from livepreview.core.exceptions import PortExhausted

logger = logging.getLogger(__name__)


class PortAllocator:
    """Finds bindable ports and keeps them reserved until released.

    Binding a throwaway listener only proves the port was free at that
    instant; the child process binds it later. Handing out each port
    once (until ``release``) keeps two concurrent launches from ever
    receiving the same one, but a third-party process can still grab it
    in between, so callers retry on a bind failure of the child.
    """

    def __init__(self, host: str = "127.0.0.1") -> None:
        self.host = host
        self._reserved: set[int] = set()
        self._lock = threading.Lock()

    def acquire(self, range_start: int, range_end: int) -> int:
        """Reserve and return the first bindable port in ``[range_start, range_end]``.

        Raises:
            PortExhausted: If every port in the range is reserved or busy.
        """
        if range_start > range_end:
            raise ValueError(f"Empty port range: {range_start}-{range_end}")

        with self._lock:
            for port in range(range_start, range_end + 1):
                if port in self._reserved:
                    continue
                if self._can_bind(port):
                    self._reserved.add(port)
                    logger.debug("Reserved port %d", port)
                    return port

        raise PortExhausted(f"No free port in range {range_start}-{range_end}")

    def claim(self, port: int) -> None:
        """Mark a port picked by someone else (e.g. the dev server itself) as taken."""
        with self._lock:
            self._reserved.add(port)

    def release(self, port: int) -> None:
        with self._lock:
            self._reserved.discard(port)
        logger.debug("Released port %d", port)

    def is_reserved(self, port: int) -> bool:
        with self._lock:
            return port in self._reserved

    @property
    def reserved(self) -> frozenset[int]:
        with self._lock:
            return frozenset(self._reserved)

    def _can_bind(self, port: int) -> bool:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            try:
                sock.bind((self.host, port))
            except OSError:
                return False
        return True
