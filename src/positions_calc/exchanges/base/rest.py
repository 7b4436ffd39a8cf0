# src/positions_calc/exchanges/base/rest.py
from __future__ import annotations

import logging
import time
from typing import Any

import requests

log = logging.getLogger("positions_calc.exchanges.rest")


class PublicREST:
    """
    Public (unsigned) REST client shared by venue adapters,
    with retry/backoff for 429/5xx and network errors.
    """

    def __init__(
        self,
        *,
        timeout: float = 10.0,
        max_retries: int = 3,
        backoff_base: float = 1.5,
        session: requests.Session | None = None,
    ):
        self.timeout = float(timeout)
        self.max_retries = max(1, int(max_retries))
        self.backoff_base = float(backoff_base)
        self.sess = session or requests.Session()

    # ---------------------------------------------------------------------
    # CORE REQUEST (WITH BACKOFF)
    # ---------------------------------------------------------------------

    def _request(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: Any = None,
    ) -> Any:
        last_err: Exception | None = None

        for attempt in range(1, self.max_retries + 1):
            try:
                r = self.sess.request(
                    method=method,
                    url=url,
                    params=params,
                    json=json_body,
                    timeout=self.timeout,
                )
            except requests.RequestException as e:
                last_err = e
                sleep = self.backoff_base * attempt
                log.warning(
                    "REST request error (%s %s), retry %d/%d, sleep %.1fs | %r",
                    method, url, attempt, self.max_retries, sleep, e,
                )
                if attempt < self.max_retries:
                    time.sleep(sleep)
                continue

            # --- RATE LIMIT / TEMP SERVER ERRORS ---
            if r.status_code == 429 or r.status_code >= 500:
                last_err = RuntimeError(f"HTTP {r.status_code}")
                sleep = self.backoff_base * attempt
                log.warning(
                    "REST %d (%s %s), retry %d/%d, sleep %.1fs",
                    r.status_code, method, url, attempt, self.max_retries, sleep,
                )
                if attempt < self.max_retries:
                    time.sleep(sleep)
                continue

            # --- OTHER ERRORS ---
            if r.status_code >= 400:
                raise RuntimeError(f"HTTP {r.status_code} {method} {url}: {r.text[:500]}")

            # --- OK ---
            if not r.text:
                return {}
            try:
                return r.json()
            except ValueError:
                raise RuntimeError(f"non-JSON response {method} {url}: {r.text[:200]}")

        raise RuntimeError(
            f"request failed after {self.max_retries} retries: {method} {url} | last_err={last_err!r}"
        )

    # ---------------------------------------------------------------------
    # HTTP WRAPPERS
    # ---------------------------------------------------------------------

    def get(self, url: str, *, params: dict[str, Any] | None = None) -> Any:
        return self._request("GET", url, params=params)

    def post(self, url: str, *, params: dict[str, Any] | None = None, json_body: Any = None) -> Any:
        return self._request("POST", url, params=params, json_body=json_body)
