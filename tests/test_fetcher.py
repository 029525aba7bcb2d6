import pytest
import requests

from parcel_signals.errors import SourceError
from parcel_signals.fetcher import STOP_COMPLETE, STOP_DEADLINE, CursorFetcher, Deadline
from parcel_signals.sources import get_source


WAKE = get_source("wake")


def _fetcher(session, no_sleep, attempts=3):
    return CursorFetcher(WAKE, session, retry=no_sleep(attempts), timeout_seconds=5)


def test_pages_until_empty_page(fake_layer, feature, no_sleep):
    layer = fake_layer([feature(i) for i in range(1, 6)], page_size=2)
    fetcher = _fetcher(layer, no_sleep)

    pages = list(fetcher.pages(0))

    assert [p.max_sequence for p in pages] == [2, 4, 5]
    assert fetcher.stop_reason == STOP_COMPLETE
    wheres = [c["params"]["where"] for c in layer.calls]
    assert wheres == [
        "(1=1) AND OBJECTID > 0",
        "(1=1) AND OBJECTID > 2",
        "(1=1) AND OBJECTID > 4",
        "(1=1) AND OBJECTID > 5",
    ]
    assert layer.calls[0]["url"].endswith("/FeatureServer/0/query")


def test_resume_cursor_is_used_in_first_request(fake_session, fake_response, no_sleep):
    session = fake_session([fake_response(200, {"features": []})])
    fetcher = _fetcher(session, no_sleep)

    assert list(fetcher.pages(50000)) == []
    assert session.calls[0]["params"]["where"] == "(1=1) AND OBJECTID > 50000"
    assert fetcher.stop_reason == STOP_COMPLETE


def test_deadline_checked_before_each_request(fake_layer, feature, no_sleep, clock):
    layer = fake_layer([feature(i) for i in range(1, 10)], page_size=3)
    fetcher = _fetcher(layer, no_sleep)
    deadline = Deadline(10, clock=clock)

    got = []
    for page in fetcher.pages(0, deadline=deadline):
        got.append(page)
        clock.advance(6)

    assert len(got) == 2
    assert len(layer.calls) == 2
    assert fetcher.stop_reason == STOP_DEADLINE


def test_retryable_status_is_retried_then_succeeds(fake_session, fake_response, feature, no_sleep):
    session = fake_session(
        [
            fake_response(503, None, text="busy"),
            fake_response(200, {"features": [feature(1)]}),
            fake_response(200, {"features": []}),
        ]
    )
    pages = list(_fetcher(session, no_sleep).pages(0))
    assert len(pages) == 1
    assert len(session.calls) == 3


def test_retries_exhausted_raise_source_error_with_context(fake_session, fake_response, no_sleep):
    body = "x" * 1000
    session = fake_session([fake_response(500, None, text=body), fake_response(500, None, text=body)])
    fetcher = _fetcher(session, no_sleep, attempts=2)

    with pytest.raises(SourceError) as exc:
        list(fetcher.pages(7))
    err = exc.value
    assert err.status == 500
    assert err.params["where"] == "(1=1) AND OBJECTID > 7"
    assert err.url.endswith("/query")
    assert len(err.body) == 300


def test_client_error_is_not_retried(fake_session, fake_response, no_sleep):
    session = fake_session([fake_response(400, None, text="bad request")])
    with pytest.raises(SourceError) as exc:
        list(_fetcher(session, no_sleep).pages(0))
    assert exc.value.status == 400
    assert len(session.calls) == 1


def test_arcgis_error_body_with_http_200_is_a_failure(fake_session, fake_response, no_sleep):
    payload = {"error": {"code": 400, "message": "Invalid query parameters"}}
    session = fake_session([fake_response(200, payload)])
    with pytest.raises(SourceError) as exc:
        list(_fetcher(session, no_sleep).pages(0))
    assert "Invalid query parameters" in str(exc.value)
    assert exc.value.status == 400


def test_non_json_body_is_malformed(fake_session, fake_response, no_sleep):
    session = fake_session([fake_response(200, None, text="<html>maintenance</html>")])
    with pytest.raises(SourceError) as exc:
        list(_fetcher(session, no_sleep).pages(0))
    assert exc.value.body.startswith("<html>")


def test_page_without_any_sequence_is_malformed(fake_session, fake_response, no_sleep):
    payload = {"features": [{"attributes": {"PIN_NUM": "A"}}, {"attributes": {"PIN_NUM": "B"}}]}
    session = fake_session([fake_response(200, payload)])
    with pytest.raises(SourceError):
        list(_fetcher(session, no_sleep).pages(0))


def test_connection_errors_retry_then_fail(fake_session, no_sleep):
    session = fake_session([requests.ConnectionError("reset"), requests.ConnectionError("reset")])
    with pytest.raises(SourceError) as exc:
        list(_fetcher(session, no_sleep, attempts=2).pages(0))
    assert "ConnectionError" in str(exc.value)
    assert len(session.calls) == 2


def test_cursor_never_moves_backwards(fake_session, fake_response, feature, no_sleep):
    session = fake_session(
        [
            fake_response(200, {"features": [feature(10), feature(12)]}),
            fake_response(200, {"features": [feature(11)]}),
            fake_response(200, {"features": []}),
        ]
    )
    list(_fetcher(session, no_sleep).pages(0))
    wheres = [c["params"]["where"] for c in session.calls]
    assert wheres[1].endswith("> 12")
    assert wheres[2].endswith("> 12")
