"""Tests for festivals_api.client.webservice -- the blocking dispatcher.

Uses :class:`httpx.MockTransport` so that no real network traffic is
generated. The response cache runs on a temporary directory driven by the
fake clock from ``conftest.py``.
"""

from __future__ import annotations

import json
from typing import Callable
from unittest.mock import MagicMock

import httpx
import pytest
from cryptography.hazmat.primitives import serialization

from festivals_api.cache import CacheTier, ResponseCache
from festivals_api.client import Webservice
from festivals_api.exceptions import (
    RecordDoesNotExistError,
    RequestFailedError,
    ServiceError,
)
from festivals_api.models import MINUTE, RequestConfig
from festivals_api.tls import TrustEvaluator

from conftest import BASE_URL, SERVER_NAME, event_record, festival_record, json_response

FESTIVAL_KEY = f"{BASE_URL}/festivals/1"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class Recorder:
    """Mock transport handler that records requests and replays responses."""

    def __init__(self, *responses: httpx.Response | Exception | Callable) -> None:
        self._responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if not self._responses:
            raise AssertionError(f"Unexpected request {request.method} {request.url}")
        response = self._responses.pop(0) if len(self._responses) > 1 else self._responses[0]
        if isinstance(response, Exception):
            raise response
        if callable(response):
            return response(request)
        return response

    @property
    def count(self) -> int:
        return len(self.requests)


@pytest.fixture()
def cache(tmp_path, clock):
    c = ResponseCache(tmp_path / "requestscache", clock=clock)
    yield c
    c.close()


@pytest.fixture()
def no_sleep(monkeypatch):
    sleep = MagicMock()
    monkeypatch.setattr("festivals_api.client.webservice.time.sleep", sleep)
    return sleep


def make_service(handler, **kwargs) -> Webservice:
    kwargs.setdefault("request", RequestConfig(max_retries=0))
    return Webservice(BASE_URL, "test-key", transport=httpx.MockTransport(handler), **kwargs)


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


class TestRequests:
    def test_headers(self):
        handler = Recorder(json_response([]))
        with make_service(handler, jwt="user-token") as service:
            service.fetch("festival")
        request = handler.requests[0]
        assert request.headers["API-KEY"] == "test-key"
        assert request.headers["Accept"] == "application/json"
        assert request.headers["Authorization"] == "Bearer user-token"

    def test_no_authorization_without_token(self):
        handler = Recorder(json_response([]))
        with make_service(handler) as service:
            service.fetch("festival")
        assert "Authorization" not in handler.requests[0].headers

    def test_fetch_url(self):
        handler = Recorder(json_response([festival_record(1), festival_record(2)]))
        with make_service(handler) as service:
            records = service.fetch("festival", ids=[2, 1], includes=["tag", "image"])
        assert str(handler.requests[0].url) == f"{BASE_URL}/festivals?ids=1,2&include=image,tag"
        assert [r["festival_id"] for r in records] == [1, 2]

    def test_search_url(self):
        handler = Recorder(json_response([]))
        with make_service(handler) as service:
            service.search("artist", "The Band")
        assert handler.requests[0].url.raw_path == b"/artists?name=The%20Band"

    def test_fetch_resource_url(self):
        handler = Recorder(json_response([event_record()]))
        with make_service(handler) as service:
            service.fetch_resource("events", "festival", 1, ["artist"])
        assert handler.requests[0].url.raw_path == b"/festivals/1/events?include=artist"

    def test_null_data_is_empty(self):
        handler = Recorder(json_response(None))
        with make_service(handler) as service:
            assert service.fetch("tag") == []


# ---------------------------------------------------------------------------
# Caching
# ---------------------------------------------------------------------------


class TestCaching:
    def test_second_read_is_served_from_memory(self, cache):
        handler = Recorder(json_response([festival_record()]))
        with make_service(handler, cache=cache) as service:
            first = service.fetch("festival", [1])
            second = service.fetch("festival", [1])
        assert first == second
        assert handler.count == 1

    def test_cold_hit_after_hot_expiry(self, cache, clock):
        """After the hot lifetime the read is served from disk and promoted."""
        handler = Recorder(json_response([festival_record()]))
        with make_service(handler, cache=cache) as service:
            service.fetch("festival", [1])
            clock.advance(11 * MINUTE)
            assert service.fetch("festival", [1])[0]["festival_id"] == 1
        assert handler.count == 1
        assert cache.get(CacheTier.HOT, FESTIVAL_KEY) is not None

    def test_cold_hit_across_dispatchers(self, cache, clock):
        """A new process finds the previous process's records on disk."""
        first = Recorder(json_response([festival_record()]))
        with make_service(first, cache=cache) as service:
            service.fetch("festival", [1])
        cache.flush()

        fresh_cache = ResponseCache(cache.directory, clock=clock)
        second = Recorder(json_response([]))
        try:
            with make_service(second, cache=fresh_cache) as service:
                assert service.fetch("festival", [1])[0]["festival_id"] == 1
        finally:
            fresh_cache.close()
        assert second.count == 0

    def test_cold_tier_can_be_skipped(self, cache, clock):
        handler = Recorder(json_response([festival_record()]))
        with make_service(handler, cache=cache, use_cold_cache=False) as service:
            service.fetch("festival", [1])
            clock.advance(11 * MINUTE)
            service.fetch("festival", [1])
        assert handler.count == 2

    def test_expired_in_both_tiers_refetches(self, cache, clock):
        handler = Recorder(json_response([festival_record()]))
        with make_service(handler, cache=cache) as service:
            service.fetch("festival", [1])
            clock.advance(8 * 24 * 60 * MINUTE)
            service.fetch("festival", [1])
        assert handler.count == 2

    def test_key_is_the_full_url(self, cache):
        handler = Recorder(json_response([festival_record()]))
        with make_service(handler, cache=cache) as service:
            service.fetch("festival", [1])
        assert json.loads(cache.get(CacheTier.COLD, FESTIVAL_KEY)) == {"data": [festival_record()]}

    def test_error_status_is_not_cached(self, cache):
        handler = Recorder(json_response(None, status_code=404), json_response([festival_record()]))
        with make_service(handler, cache=cache) as service:
            with pytest.raises(ServiceError):
                service.fetch("festival", [1])
            assert cache.get(CacheTier.COLD, FESTIVAL_KEY) is None
            service.fetch("festival", [1])
        assert handler.count == 2

    def test_error_envelope_is_not_cached(self, cache):
        handler = Recorder(httpx.Response(200, json={"error": "database offline"}))
        with make_service(handler, cache=cache) as service:
            with pytest.raises(ServiceError, match="database offline"):
                service.fetch("festival", [1])
        assert cache.get(CacheTier.HOT, FESTIVAL_KEY) is None

    def test_undecodable_cache_entry_is_replaced(self, cache):
        cache.put(b"not json", FESTIVAL_KEY)
        handler = Recorder(json_response([festival_record()]))
        with make_service(handler, cache=cache) as service:
            records = service.fetch("festival", [1])
        assert records[0]["festival_id"] == 1
        assert handler.count == 1
        assert json.loads(cache.get(CacheTier.HOT, FESTIVAL_KEY))["data"][0]["festival_id"] == 1

    def test_permuted_reads_share_an_entry(self, cache):
        handler = Recorder(json_response([]))
        with make_service(handler, cache=cache) as service:
            service.fetch("festival", [2, 1], ["tag", "image"])
            service.fetch("festival", [1, 2], ["image", "tag"])
        assert handler.count == 1


# ---------------------------------------------------------------------------
# Invalidation
# ---------------------------------------------------------------------------


class TestInvalidation:
    def test_update_evicts_reads_of_the_type(self, cache):
        handler = Recorder(
            json_response([festival_record()]),
            json_response([festival_record(name="Renamed")]),
            json_response([festival_record(name="Renamed")]),
        )
        with make_service(handler, cache=cache) as service:
            service.fetch("festival", [1])
            updated = service.update("festival", 1, {"festival_name": "Renamed"})
            assert updated["festival_name"] == "Renamed"
            assert cache.get(CacheTier.HOT, FESTIVAL_KEY) is None
            assert cache.get(CacheTier.COLD, FESTIVAL_KEY) is None
            assert service.fetch("festival", [1])[0]["festival_name"] == "Renamed"
        assert handler.count == 3
        assert handler.requests[1].method == "PATCH"
        assert json.loads(handler.requests[1].content) == {"festival_name": "Renamed"}

    def test_update_evicts_reads_cached_by_an_earlier_process(self, cache, clock):
        """A new dispatcher on the same directory evicts records it never stored."""
        first = Recorder(json_response([festival_record(name="Old")]))
        with make_service(first, cache=cache) as service:
            service.fetch("festival", [1])
        cache.close()

        fresh_cache = ResponseCache(cache.directory, clock=clock)
        second = Recorder(
            json_response([festival_record(name="New")]),
            json_response([festival_record(name="New")]),
        )
        try:
            with make_service(second, cache=fresh_cache) as service:
                service.update("festival", 1, {"festival_name": "New"})
                assert service.fetch("festival", [1])[0]["festival_name"] == "New"
        finally:
            fresh_cache.close()
        assert second.count == 2

    def test_mutation_evicts_reads_that_embed_the_type(self, cache):
        """Changing an artist evicts event reads that included artists."""
        events_key = f"{BASE_URL}/events?include=artist"
        handler = Recorder(json_response([event_record()]), json_response(None))
        with make_service(handler, cache=cache) as service:
            service.fetch("event", includes=["artist"])
            service.delete("artist", 9)
        assert cache.get(CacheTier.HOT, events_key) is None
        assert cache.get(CacheTier.COLD, events_key) is None

    def test_linking_a_resource_evicts_resource_reads(self, cache):
        resource_key = f"{BASE_URL}/festivals/1/tags"
        handler = Recorder(json_response([]), json_response(None))
        with make_service(handler, cache=cache) as service:
            service.fetch_resource("tags", "festival", 1)
            service.set_resource("tags", 4, "festival", 1)
        assert handler.requests[1].method == "POST"
        assert handler.requests[1].url.raw_path == b"/festivals/1/tags/4"
        assert cache.get(CacheTier.HOT, resource_key) is None

    def test_unrelated_reads_survive(self, cache):
        tags_key = f"{BASE_URL}/tags"
        handler = Recorder(json_response([]), json_response(None))
        with make_service(handler, cache=cache) as service:
            service.fetch("tag")
            service.delete("place", 3)
        assert cache.get(CacheTier.HOT, tags_key) is not None

    def test_failed_mutation_keeps_cache(self, cache):
        handler = Recorder(json_response([festival_record()]), httpx.Response(500))
        with make_service(handler, cache=cache) as service:
            service.fetch("festival", [1])
            with pytest.raises(ServiceError):
                service.delete("festival", 1)
        assert cache.get(CacheTier.HOT, FESTIVAL_KEY) is not None

    def test_mutations_are_never_cached(self, cache):
        handler = Recorder(json_response([festival_record()]))
        with make_service(handler, cache=cache) as service:
            service.create("festival", {"festival_name": "New"})
            service.create("festival", {"festival_name": "New"})
        assert handler.count == 2


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------


class TestMutations:
    def test_create_posts_body(self):
        handler = Recorder(json_response([festival_record(5)]))
        with make_service(handler) as service:
            created = service.create("festival", {"festival_name": "New"})
        assert created["festival_id"] == 5
        request = handler.requests[0]
        assert (request.method, request.url.raw_path) == ("POST", b"/festivals")
        assert request.headers["Content-Type"] == "application/json"

    def test_create_without_record_raises(self):
        handler = Recorder(json_response([]))
        with make_service(handler) as service:
            with pytest.raises(RecordDoesNotExistError):
                service.create("festival", {"festival_name": "New"})

    def test_delete_and_remove_resource(self):
        handler = Recorder(json_response(None))
        with make_service(handler) as service:
            service.delete("festival", 2)
            service.remove_resource("tags", 4, "festival", 1)
        assert [(r.method, r.url.raw_path) for r in handler.requests] == [
            ("DELETE", b"/festivals/2"),
            ("DELETE", b"/festivals/1/tags/4"),
        ]


# ---------------------------------------------------------------------------
# Failures and retries
# ---------------------------------------------------------------------------


class TestFailures:
    def test_transport_error_is_request_failed(self, cache):
        handler = Recorder(httpx.ConnectError("connection refused"))
        with make_service(handler, cache=cache) as service:
            with pytest.raises(RequestFailedError, match="connection refused"):
                service.fetch("festival", [1])
        assert cache.get(CacheTier.COLD, FESTIVAL_KEY) is None

    def test_read_retries_on_server_error(self, no_sleep):
        handler = Recorder(httpx.Response(503), httpx.Response(502), json_response([]))
        with make_service(handler, request=RequestConfig(max_retries=2)) as service:
            assert service.fetch("tag") == []
        assert handler.count == 3
        assert [c.args[0] for c in no_sleep.call_args_list] == [1, 2]

    def test_read_retries_on_transport_error(self, no_sleep):
        handler = Recorder(httpx.ReadTimeout("slow"), json_response([]))
        with make_service(handler, request=RequestConfig(max_retries=1)) as service:
            assert service.fetch("tag") == []
        assert handler.count == 2

    def test_retries_exhausted(self, no_sleep):
        handler = Recorder(httpx.Response(503))
        with make_service(handler, request=RequestConfig(max_retries=2)) as service:
            with pytest.raises(ServiceError) as exc_info:
                service.fetch("tag")
        assert exc_info.value.status_code == 503
        assert handler.count == 3

    def test_mutation_is_sent_once(self, no_sleep):
        handler = Recorder(httpx.Response(503))
        with make_service(handler, request=RequestConfig(max_retries=2)) as service:
            with pytest.raises(ServiceError):
                service.delete("tag", 1)
        assert handler.count == 1
        no_sleep.assert_not_called()

    def test_client_error_is_not_retried(self, no_sleep):
        handler = Recorder(httpx.Response(400, json={"error": "bad include"}))
        with make_service(handler, request=RequestConfig(max_retries=2)) as service:
            with pytest.raises(ServiceError, match="bad include"):
                service.fetch("tag")
        assert handler.count == 1


# ---------------------------------------------------------------------------
# Mutual TLS
# ---------------------------------------------------------------------------


class _SSLObject:
    def __init__(self, chain):
        self._chain = chain

    def get_unverified_chain(self):
        return self._chain


class _NetworkStream:
    def __init__(self, chain):
        self._ssl_object = _SSLObject(chain)

    def get_extra_info(self, name):
        return self._ssl_object if name == "ssl_object" else None


def _presenting(chain, records):
    """Handler returning *records* over a connection that presented *chain*."""
    der = [cert.public_bytes(serialization.Encoding.DER) for cert in chain]

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={"data": records},
            extensions={"network_stream": _NetworkStream(der)},
        )

    return handler


class TestMutualTLS:
    def test_pinned_chain_is_accepted(self, trust_material, pki, cache):
        trust = TrustEvaluator(trust_material, server_name=SERVER_NAME)
        handler = _presenting([pki.server, pki.intermediate], [festival_record()])
        with make_service(handler, trust=trust, cache=cache) as service:
            assert service.trust is trust
            assert service.fetch("festival", [1])[0]["festival_id"] == 1

    def test_foreign_chain_fails_the_request(self, trust_material, pki, cache):
        """A server chain from another CA never yields data and is never cached."""
        trust = TrustEvaluator(trust_material, server_name=SERVER_NAME)
        handler = _presenting([pki.rogue_server, pki.rogue_root], [festival_record()])
        with make_service(handler, trust=trust, cache=cache) as service:
            with pytest.raises(RequestFailedError):
                service.fetch("festival", [1])
        assert cache.get(CacheTier.HOT, FESTIVAL_KEY) is None
        assert cache.get(CacheTier.COLD, FESTIVAL_KEY) is None
