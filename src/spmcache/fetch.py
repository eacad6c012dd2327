"""Module containing the HTTP fetcher used by the remote cache."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Protocol

import requests
from tqdm import tqdm

from .errors import SourceUnavailable

DEFAULT_TIMEOUT = 30.0

log = logging.getLogger("spmcache/fetch")


class HTTPFetcher(Protocol):
    """
    Downloads a URL into a local file.

    Methods:
        fetch: write the body of the URL to dest or raise SourceUnavailable
            on network errors, timeouts and non-2xx statuses.
    """

    def fetch(self, url: str, dest: Path) -> None: ...


class RequestsFetcher:
    """HTTPFetcher implementation based on a requests Session."""

    def __init__(
        self,
        *,
        session: requests.Session | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        progress: bool = True,
    ) -> None:
        self.session = session if session is not None else requests.Session()
        self.timeout = timeout
        self.progress = progress

    def fetch(self, url: str, dest: Path) -> None:
        log.debug("fetching %s... start", url)
        try:
            self._fetch(url, dest)
        except requests.RequestException as exc:
            log.debug("fetching %s... failure: %s", url, exc)
            dest.unlink(missing_ok=True)
            raise SourceUnavailable(url, exc) from exc
        log.debug("fetching %s... ok", url)

    def _fetch(self, url: str, dest: Path) -> None:
        # GitHub "raw" URLs redirect to the content host, requests follows them.
        with self.session.get(url, stream=True, timeout=self.timeout) as resp:
            resp.raise_for_status()
            total = resp.headers.get("Content-Length")
            total = int(total) if total is not None else None

            with (
                open(dest, "wb") as filep,
                tqdm(
                    total=total,
                    unit="B",
                    unit_scale=True,
                    unit_divisor=1024,
                    desc=dest.name,
                    leave=False,
                    disable=not self.progress,
                ) as pbar,
            ):
                for chunk in resp.iter_content(chunk_size=8192):
                    filep.write(chunk)
                    pbar.update(len(chunk))
