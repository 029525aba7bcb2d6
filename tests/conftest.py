import json
import logging
import os
import re
import socket
import sys
import urllib.request
from pathlib import Path

import pytest


REPO_ROOT = Path(__file__).resolve().parents[1]
SRC = REPO_ROOT / "src"

# Prefer repo sources over any installed package.
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))


@pytest.fixture(autouse=True)
def block_network(monkeypatch):
    if os.getenv("LIVE") == "1":
        return

    real_connect = socket.socket.connect

    def guarded_connect(sock, address):
        host = address[0]
        if host not in ("127.0.0.1", "localhost"):
            raise RuntimeError("Network access blocked in tests")
        return real_connect(sock, address)

    monkeypatch.setattr(socket.socket, "connect", guarded_connect)
    monkeypatch.setattr(
        urllib.request,
        "urlopen",
        lambda *args, **kwargs: (_ for _ in ()).throw(
            RuntimeError("Network access blocked in tests")
        ),
    )


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch, tmp_path):
    from parcel_signals.settings import reset_settings_cache

    monkeypatch.setenv("PARCEL_SIGNALS_DB", str(tmp_path / "parcels.sqlite"))
    reset_settings_cache()
    yield
    reset_settings_cache()


@pytest.fixture(autouse=True)
def reset_logging():
    yield
    logger = logging.getLogger("parcel_signals")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


@pytest.fixture
def store():
    from parcel_signals.storage import ParcelStore

    s = ParcelStore(":memory:")
    yield s
    s.close()


def square(x0=0.0, y0=0.0, side=208.71):
    # Clockwise, so an Esri exterior ring. 208.71 ft square is ~1 acre.
    return [[x0, y0], [x0, y0 + side], [x0 + side, y0 + side], [x0 + side, y0], [x0, y0]]


def make_feature(oid, pin=None, *, land=100000.0, total=250000.0, use="R1", owner="SMITH JOHN", deed=None, geometry="square"):
    attrs = {
        "OBJECTID": oid,
        "PIN_NUM": pin if pin is not None else f"P{oid:07d}",
        "LAND_VAL": land,
        "TOTAL_VALUE_ASSD": total,
        "TYPE_AND_USE": use,
        "OWNER": owner,
        "SITE_ADDRESS": f"{oid} MAIN ST",
        "DEED_DATE": deed,
    }
    if geometry == "square":
        geom = {"rings": [square(float(oid) * 1000.0, 0.0)]}
    else:
        geom = geometry
    return {"attributes": attrs, "geometry": geom}


class FakeResponse:
    def __init__(self, status_code=200, payload=None, text=None):
        self.status_code = status_code
        self._payload = payload
        if text is None:
            text = json.dumps(payload) if payload is not None else ""
        self.text = text

    def json(self):
        if self._payload is None:
            raise ValueError("not json")
        return self._payload


class FakeSession:
    """Scripted responses, consumed in order; records every request."""

    def __init__(self, responses):
        self.responses = list(responses)
        self.calls = []
        self.closed = False

    def get(self, url, params=None, headers=None, timeout=None):
        self.calls.append({"url": url, "params": dict(params or {}), "headers": headers, "timeout": timeout})
        if not self.responses:
            raise AssertionError("unexpected request")
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def close(self):
        self.closed = True


_CURSOR_RE = re.compile(r"OBJECTID > (\d+)")


class FakeLayer:
    """Serves an in-memory ArcGIS layer honouring the cursor where-clause."""

    def __init__(self, features, page_size=None):
        self.features = sorted(features, key=lambda f: f["attributes"]["OBJECTID"])
        self.page_size = page_size
        self.calls = []
        self.closed = False

    def get(self, url, params=None, headers=None, timeout=None):
        params = dict(params or {})
        self.calls.append({"url": url, "params": params})
        cursor = int(_CURSOR_RE.search(params["where"]).group(1))
        limit = self.page_size or int(params["resultRecordCount"])
        rows = [f for f in self.features if f["attributes"]["OBJECTID"] > cursor][:limit]
        return FakeResponse(200, {"features": rows})

    def close(self):
        self.closed = True


class FakeClock:
    def __init__(self, start=1_700_000_000.0):
        self.now = float(start)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += float(seconds)


@pytest.fixture
def fake_session():
    return FakeSession


@pytest.fixture
def fake_layer():
    return FakeLayer


@pytest.fixture
def fake_response():
    return FakeResponse


@pytest.fixture
def feature():
    return make_feature


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def no_sleep():
    from parcel_signals.retry import RetryPolicy

    def build(max_attempts=3):
        return RetryPolicy(max_attempts=max_attempts, sleep_fn=lambda _s: None, rand_fn=lambda: 0.5)

    return build
