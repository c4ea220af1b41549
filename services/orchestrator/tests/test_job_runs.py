from datetime import datetime, timedelta, timezone

import httpx
import pytest

from services.orchestrator.app.invalidate import CacheInvalidator
from services.orchestrator.app.job_runs import JobRunRecorder, time_since
from shared.schemas.messages import JobRunMetrics

NOW = datetime(2025, 7, 16, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def recorder(session_factory):
    return JobRunRecorder(session_factory)


def test_latest_is_none_before_any_run(recorder):
    assert recorder.latest("orchestrator") is None


def test_terminal_write_overwrites_started(recorder):
    recorder.record("orchestrator", "started", NOW, host="worker-1")
    assert recorder.latest("orchestrator").status == "started"

    recorder.record(
        "orchestrator",
        "success",
        NOW,
        metrics=JobRunMetrics(inserted_count=5, duplicate_count=2, images_enriched_count=1),
        duration_ms=1234,
        host="worker-1",
    )
    run = recorder.latest("orchestrator")
    assert run.status == "success"
    assert run.inserted_count == 5
    assert run.duplicate_count == 2
    assert run.images_enriched_count == 1
    assert run.duration_ms == 1234
    assert run.host == "worker-1"


def test_error_write_keeps_message(recorder):
    recorder.record("orchestrator", "error", NOW, metrics=JobRunMetrics(inserted_count=3), error_message="boom")
    run = recorder.latest("orchestrator")
    assert run.error_message == "boom"
    assert run.inserted_count == 3


def test_one_row_per_job_name(recorder):
    recorder.record("orchestrator", "success", NOW)
    recorder.record("backfill", "started", NOW)
    assert recorder.latest("orchestrator").status == "success"
    assert recorder.latest("backfill").status == "started"


def test_lease(recorder):
    recorder.record("orchestrator", "started", NOW)
    assert recorder.holds_lease("orchestrator", 600, now=NOW + timedelta(minutes=5))
    assert not recorder.holds_lease("orchestrator", 600, now=NOW + timedelta(minutes=11))
    assert not recorder.holds_lease("orchestrator", 0, now=NOW)

    recorder.record("orchestrator", "success", NOW)
    assert not recorder.holds_lease("orchestrator", 600, now=NOW)


@pytest.mark.parametrize(
    "delta,expected",
    [
        (timedelta(seconds=20), "Just now"),
        (timedelta(minutes=1), "1 minute ago"),
        (timedelta(minutes=45), "45 minutes ago"),
        (timedelta(hours=3, minutes=5), "3 hours ago"),
        (timedelta(days=2, hours=1), "2 days ago"),
    ],
)
def test_time_since(delta, expected):
    assert time_since(NOW - delta, now=NOW) == expected


def test_time_since_accepts_naive_timestamps():
    assert time_since(NOW.replace(tzinfo=None) - timedelta(hours=1), now=NOW) == "1 hour ago"


def test_invalidator_without_url_is_a_noop():
    assert CacheInvalidator(None, ["/"]).invalidate() is False


def test_invalidator_posts_paths():
    seen = []

    def handler(request):
        seen.append((request.url, request.headers.get("x-cron-secret"), request.content))
        return httpx.Response(200, json={"revalidated": True})

    invalidator = CacheInvalidator(
        "https://site.example/api/revalidate", ["/", "/finance"], secret="s", transport=httpx.MockTransport(handler)
    )
    assert invalidator.invalidate() is True
    url, secret, body = seen[0]
    assert str(url) == "https://site.example/api/revalidate"
    assert secret == "s"
    assert b'"/finance"' in body


def test_invalidator_raises_on_http_error():
    invalidator = CacheInvalidator(
        "https://site.example/api/revalidate", ["/"], transport=httpx.MockTransport(lambda r: httpx.Response(500))
    )
    with pytest.raises(httpx.HTTPStatusError):
        invalidator.invalidate()
