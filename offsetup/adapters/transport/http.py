"""
HTTP transport — stream a URI to disk.

Uses ``urllib.request``; ``file://`` URIs work too, which is what
offline mirrors and tests rely on. The cancel signal is checked between
chunks so a cancelled run stops mid-download.
"""

from __future__ import annotations

import logging
import threading
import urllib.error
import urllib.request
from pathlib import Path

from offsetup import __version__
from offsetup.core.errors import CancelledError, DownloadTransportError

logger = logging.getLogger(__name__)

CHUNK_SIZE = 65536


class HttpTransport:
    """Download capability used by the artifact pipeline."""

    def __init__(self, timeout: int = 60, chunk_size: int = CHUNK_SIZE):
        self._timeout = timeout
        self._chunk_size = chunk_size

    def fetch(self, uri: str, dest: Path, cancel: threading.Event | None = None) -> int:
        """Write the bytes at ``uri`` into ``dest``; returns the byte count.

        Raises:
            DownloadTransportError: network/HTTP failure.
            CancelledError: the cancel signal was set mid-transfer.
        """
        req = urllib.request.Request(uri, headers={"User-Agent": f"offsetup/{__version__}"})
        written = 0
        try:
            with urllib.request.urlopen(req, timeout=self._timeout) as resp:
                total = resp.headers.get("Content-Length") if resp.headers else None
                logger.debug("GET %s (%s bytes)", uri, total or "unknown")
                with open(dest, "wb") as f:
                    while True:
                        if cancel is not None and cancel.is_set():
                            raise CancelledError(f"Download of {uri} cancelled")
                        chunk = resp.read(self._chunk_size)
                        if not chunk:
                            break
                        f.write(chunk)
                        written += len(chunk)
        except urllib.error.HTTPError as e:
            raise DownloadTransportError(f"GET {uri}: HTTP {e.code} {e.reason}") from e
        except urllib.error.URLError as e:
            raise DownloadTransportError(f"GET {uri}: {e.reason}") from e
        except TimeoutError as e:
            raise DownloadTransportError(f"GET {uri}: timed out after {self._timeout}s") from e
        return written
