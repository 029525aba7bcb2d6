from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional
from urllib.parse import urlencode

import requests

from parcel_signals.errors import RecordError, SourceError
from parcel_signals.normalize import source_sequence
from parcel_signals.retry import RETRY_STATUS, RetryableStatus, RetryPolicy
from parcel_signals.settings import PAGE_SIZE
from parcel_signals.sources import SourceAdapter


logger = logging.getLogger("parcel_signals.fetch")

STOP_COMPLETE = "complete"
STOP_DEADLINE = "deadline"


def build_cursor_where(adapter: SourceAdapter, cursor: int) -> str:
    return f"({adapter.row_filter}) AND {adapter.sequence_field} > {int(cursor)}"


def build_cursor_params(adapter: SourceAdapter, cursor: int, page_size: int = PAGE_SIZE) -> Dict[str, Any]:
    return {
        "where": build_cursor_where(adapter, cursor),
        "outFields": ",".join(adapter.out_fields()),
        "orderByFields": f"{adapter.sequence_field} ASC",
        "resultRecordCount": int(page_size),
        "returnGeometry": "true",
        "outSR": int(adapter.out_sr),
        "f": "json",
    }


def query_endpoint(layer_url: str) -> str:
    return f"{layer_url.rstrip('/')}/query"


def build_query_url(layer_url: str, params: Dict[str, Any]) -> str:
    return f"{query_endpoint(layer_url)}?{urlencode(params)}"


class Deadline:
    """Wall-clock budget for one invocation."""

    def __init__(self, seconds: float, clock: Callable[[], float] = time.monotonic) -> None:
        self.clock = clock
        self.started = clock()
        self.seconds = float(seconds)

    def remaining(self) -> float:
        return self.seconds - (self.clock() - self.started)

    def expired(self) -> bool:
        return self.remaining() <= 0


@dataclass
class Page:
    cursor: int
    features: List[Dict[str, Any]]
    max_sequence: Optional[int]
    url: str
    params: Dict[str, Any] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.features)


def page_max_sequence(features: List[Dict[str, Any]], adapter: SourceAdapter) -> Optional[int]:
    best: Optional[int] = None
    for feat in features:
        try:
            seq = source_sequence(feat, adapter)
        except RecordError:
            continue
        if best is None or seq > best:
            best = seq
    return best


class CursorFetcher:
    """Pages through an ArcGIS layer in ascending sequence order.

    ``pages()`` is a generator: the caller processes and checkpoints each page
    before asking for the next one, so a crash never loses more than the page
    in flight.
    """

    def __init__(
        self,
        adapter: SourceAdapter,
        session: Optional[requests.Session] = None,
        *,
        retry: Optional[RetryPolicy] = None,
        timeout_seconds: float = 30.0,
        user_agent: str = "parcel-signals/0.1",
        page_size: int = PAGE_SIZE,
    ) -> None:
        self.adapter = adapter
        self.session = session or requests.Session()
        self.retry = retry or RetryPolicy()
        self.timeout_seconds = float(timeout_seconds)
        self.user_agent = user_agent
        self.page_size = int(page_size)
        self.stop_reason: Optional[str] = None

    def pages(self, cursor: int = 0, *, deadline: Optional[Deadline] = None) -> Iterator[Page]:
        self.stop_reason = None
        cursor = int(cursor or 0)
        while True:
            if deadline is not None and deadline.expired():
                logger.info(
                    "deadline reached jurisdiction=%s cursor=%s", self.adapter.jurisdiction, cursor
                )
                self.stop_reason = STOP_DEADLINE
                return
            page = self.fetch_page(cursor)
            if not page.features:
                self.stop_reason = STOP_COMPLETE
                return
            yield page
            cursor = max(cursor, page.max_sequence)

    def fetch_page(self, cursor: int) -> Page:
        params = build_cursor_params(self.adapter, cursor, self.page_size)
        url = query_endpoint(self.adapter.layer_url)
        payload = self._get_json(url, params)

        features = payload.get("features")
        if not isinstance(features, list):
            raise SourceError(
                "malformed payload: features missing",
                url=url,
                params=params,
                status=200,
                body=_preview(payload),
            )
        max_seq = page_max_sequence(features, self.adapter) if features else None
        if features and max_seq is None:
            raise SourceError(
                f"malformed payload: no {self.adapter.sequence_field} values in page",
                url=url,
                params=params,
                status=200,
                body=_preview(payload),
            )
        logger.debug(
            "page fetched jurisdiction=%s cursor=%s records=%s max_seq=%s",
            self.adapter.jurisdiction,
            cursor,
            len(features),
            max_seq,
        )
        return Page(cursor=cursor, features=features, max_sequence=max_seq, url=url, params=params)

    def _get_json(self, url: str, params: Dict[str, Any]) -> Dict[str, Any]:
        headers = {"User-Agent": self.user_agent, "Accept": "application/json"}

        def attempt() -> Dict[str, Any]:
            resp = self.session.get(url, params=params, headers=headers, timeout=self.timeout_seconds)
            status = int(resp.status_code)
            if status in RETRY_STATUS:
                raise RetryableStatus(status, resp)
            if status < 200 or status >= 300:
                raise SourceError(
                    f"HTTP {status}", url=url, params=params, status=status, body=_text(resp)
                )
            try:
                payload = resp.json()
            except ValueError as exc:
                raise SourceError(
                    "malformed payload: response is not JSON",
                    url=url,
                    params=params,
                    status=status,
                    body=_text(resp),
                ) from exc
            if not isinstance(payload, dict):
                raise SourceError(
                    "malformed payload: expected a JSON object",
                    url=url,
                    params=params,
                    status=status,
                    body=_text(resp),
                )
            err = payload.get("error")
            if err:
                # ArcGIS reports server errors inside a 200 response.
                code = err.get("code") if isinstance(err, dict) else None
                if isinstance(code, int) and code in RETRY_STATUS:
                    raise RetryableStatus(code, resp)
                message = err.get("message") if isinstance(err, dict) else str(err)
                raise SourceError(
                    f"ArcGIS error: {message}",
                    url=url,
                    params=params,
                    status=code if isinstance(code, int) else status,
                    body=_text(resp),
                )
            return payload

        try:
            return self.retry.call(attempt)
        except RetryableStatus as exc:
            raise SourceError(
                f"HTTP {exc.status} after {self.retry.max_attempts} attempts",
                url=url,
                params=params,
                status=exc.status,
                body=_text(exc.response),
            ) from exc
        except requests.RequestException as exc:
            raise SourceError(
                f"request failed: {exc.__class__.__name__}: {exc}",
                url=url,
                params=params,
            ) from exc


def _text(resp: Any) -> str:
    if resp is None:
        return ""
    return str(getattr(resp, "text", "") or "")


def _preview(payload: Any) -> str:
    try:
        return json.dumps(payload, default=str)
    except (TypeError, ValueError):
        return str(payload)
