"""Tests for the serving side, driven with raw protocol messages."""

import asyncio
import logging

import pytest

from pyremote import Exposer, MessageChannel, expose
from pyremote._internal.exposer import resolve_path


async def _drain():
    for _ in range(10):
        await asyncio.sleep(0)


class Counter:
    def __init__(self):
        self.counter = 0

    def inc(self):
        self.counter += 1
        return self.counter


def _response(endpoint, request_id):
    matches = [payload for payload, _ in endpoint.posted if payload.get("id") == request_id]
    assert len(matches) == 1, f"expected exactly one response for {request_id}"
    return matches[0]


class TestResolvePath:
    """Navigation through attributes, mappings and sequences."""

    def test_attribute_mapping_and_index(self):
        root = {"users": [Counter()]}
        assert resolve_path(root, ["users", "0", "counter"]) == 0

    def test_missing_segment_resolves_to_none(self):
        assert resolve_path(Counter(), ["missing", "deeper"]) is None

    def test_scalar_navigation_resolves_to_none(self):
        assert resolve_path({"n": 5}, ["n", "real"]) is None

    def test_empty_path_is_root(self):
        root = Counter()
        assert resolve_path(root, []) is root

    @pytest.mark.parametrize("segment", ["--1", "-", "1-", "\u00b2", "\u0663", " 1", "1.0"])
    def test_non_index_segments_on_sequences_resolve_to_none(self, segment):
        assert resolve_path({"items": [1, 2, 3]}, ["items", segment]) is None

    def test_negative_and_out_of_range_indexes(self):
        root = {"items": [1, 2, 3]}
        assert resolve_path(root, ["items", "-1"]) == 3
        assert resolve_path(root, ["items", "7"]) is None


@pytest.mark.asyncio
class TestExposerRequests:
    """One response per request, with the request id echoed."""

    async def test_get(self, recording_endpoint):
        expose(Counter(), recording_endpoint)
        recording_endpoint.deliver({"id": "1", "type": "GET", "path": ["counter"]})
        await _drain()
        assert _response(recording_endpoint, "1") == {"type": "RAW", "value": 0, "id": "1"}

    async def test_get_missing_path_is_none(self, recording_endpoint):
        expose(Counter(), recording_endpoint)
        recording_endpoint.deliver({"id": "1", "type": "GET", "path": ["nope", "deeper"]})
        await _drain()
        assert _response(recording_endpoint, "1")["value"] is None

    async def test_get_with_malformed_index_is_none(self, recording_endpoint):
        expose({"items": [1, 2]}, recording_endpoint)
        recording_endpoint.deliver({"id": "1", "type": "GET", "path": ["items", "--1"]})
        await _drain()
        assert _response(recording_endpoint, "1") == {"type": "RAW", "value": None, "id": "1"}

    async def test_set_then_get(self, recording_endpoint):
        root = Counter()
        expose(root, recording_endpoint)
        recording_endpoint.deliver(
            {"id": "s", "type": "SET", "path": ["counter"], "value": {"type": "RAW", "value": 7}}
        )
        await _drain()
        assert _response(recording_endpoint, "s")["value"] is True
        assert root.counter == 7

    async def test_set_into_mapping_and_list(self, recording_endpoint):
        root = {"config": {}, "items": [0, 0]}
        expose(root, recording_endpoint)
        recording_endpoint.deliver(
            {"id": "a", "type": "SET", "path": ["config", "k"], "value": {"type": "RAW", "value": "v"}}
        )
        recording_endpoint.deliver(
            {"id": "b", "type": "SET", "path": ["items", "1"], "value": {"type": "RAW", "value": 9}}
        )
        await _drain()
        assert root == {"config": {"k": "v"}, "items": [0, 9]}

    async def test_set_with_empty_path_is_malformed(self, recording_endpoint):
        expose(Counter(), recording_endpoint)
        recording_endpoint.deliver(
            {"id": "s", "type": "SET", "path": [], "value": {"type": "RAW", "value": 1}}
        )
        await _drain()
        response = _response(recording_endpoint, "s")
        assert response["name"] == "throw"
        assert response["value"]["value"]["name"] == "MalformedRequestError"

    async def test_set_on_none_parent_is_malformed(self, recording_endpoint):
        expose(Counter(), recording_endpoint)
        recording_endpoint.deliver(
            {"id": "s", "type": "SET", "path": ["missing", "x"], "value": {"type": "RAW", "value": 1}}
        )
        await _drain()
        assert _response(recording_endpoint, "s")["value"]["value"]["name"] == "MalformedRequestError"

    async def test_apply(self, recording_endpoint):
        root = Counter()
        expose(root, recording_endpoint)
        recording_endpoint.deliver({"id": "1", "type": "APPLY", "path": ["inc"], "argumentList": []})
        recording_endpoint.deliver({"id": "2", "type": "APPLY", "path": ["inc"], "argumentList": []})
        await _drain()
        assert _response(recording_endpoint, "1")["value"] == 1
        assert _response(recording_endpoint, "2")["value"] == 2

    async def test_apply_with_arguments(self, recording_endpoint):
        expose({"add": lambda a, b: a + b}, recording_endpoint)
        recording_endpoint.deliver(
            {
                "id": "1",
                "type": "APPLY",
                "path": ["add"],
                "argumentList": [
                    {"value": {"type": "RAW", "value": 2}, "portCount": 0},
                    {"value": {"type": "RAW", "value": 3}, "portCount": 0},
                ],
            }
        )
        await _drain()
        assert _response(recording_endpoint, "1")["value"] == 5

    async def test_apply_awaits_coroutine_results(self, recording_endpoint):
        async def slow_double(x):
            await asyncio.sleep(0)
            return x * 2

        expose({"double": slow_double}, recording_endpoint)
        recording_endpoint.deliver(
            {
                "id": "1",
                "type": "APPLY",
                "path": ["double"],
                "argumentList": [{"value": {"type": "RAW", "value": 21}, "portCount": 0}],
            }
        )
        await _drain()
        assert _response(recording_endpoint, "1")["value"] == 42

    async def test_apply_non_callable(self, recording_endpoint):
        expose(Counter(), recording_endpoint)
        recording_endpoint.deliver({"id": "1", "type": "APPLY", "path": ["counter"], "argumentList": []})
        await _drain()
        record = _response(recording_endpoint, "1")["value"]["value"]
        assert record["name"] == "NotCallableError"

    async def test_raised_exception_is_answered(self, recording_endpoint):
        def boom():
            raise ValueError("boom")

        expose({"boom": boom}, recording_endpoint)
        recording_endpoint.deliver({"id": "1", "type": "APPLY", "path": ["boom"], "argumentList": []})
        await _drain()
        response = _response(recording_endpoint, "1")
        assert response["value"]["isError"] is True
        assert response["value"]["value"]["message"] == "boom"
        assert "ValueError" in response["value"]["value"]["stack"]

    async def test_unsendable_result_is_answered(self, recording_endpoint):
        expose({"make": lambda: object()}, recording_endpoint)
        recording_endpoint.deliver({"id": "1", "type": "APPLY", "path": ["make"], "argumentList": []})
        await _drain()
        record = _response(recording_endpoint, "1")["value"]["value"]
        assert record["name"] == "NotSendableError"

    async def test_construct_returns_sub_channel(self, recording_endpoint):
        expose({"Counter": Counter}, recording_endpoint)
        recording_endpoint.deliver({"id": "1", "type": "CONSTRUCT", "path": ["Counter"], "argumentList": []})
        await _drain()
        payload, ports = recording_endpoint.posted[0]
        assert payload == {"type": "HANDLER", "name": "proxy", "value": 0, "id": "1"}
        assert len(ports) == 1

    async def test_release_acknowledges_then_closes(self, recording_endpoint):
        exposer = expose(Counter(), recording_endpoint)
        recording_endpoint.deliver({"id": "r", "type": "RELEASE"})
        await _drain()
        assert _response(recording_endpoint, "r") == {"type": "RAW", "value": None, "id": "r"}
        assert recording_endpoint.closed == 1
        assert recording_endpoint.listeners == []

        exposer.close()
        assert recording_endpoint.closed == 1


@pytest.mark.asyncio
class TestExposerIgnoredMessages:
    """Messages that must not produce a response."""

    async def test_message_without_type_dropped(self, recording_endpoint, caplog):
        expose(Counter(), recording_endpoint)
        with caplog.at_level(logging.WARNING, logger="pyremote"):
            recording_endpoint.deliver({"id": "1", "path": ["counter"]})
            recording_endpoint.deliver("not a mapping")
            await _drain()
        assert recording_endpoint.posted == []
        assert "malformed" in caplog.text

    async def test_responses_ignored(self, recording_endpoint):
        expose(Counter(), recording_endpoint)
        recording_endpoint.deliver({"id": "1", "type": "RAW", "value": 3})
        await _drain()
        assert recording_endpoint.posted == []


@pytest.mark.asyncio
async def test_expose_over_message_channel():
    """The Exposer starts its port; a peer sees responses on the other port."""
    port1, port2 = MessageChannel()
    exposer = expose(Counter(), port1)
    assert isinstance(exposer, Exposer)
    assert port1.started

    received = []
    port2.add_listener(lambda payload, ports: received.append(payload))
    port2.start()
    port2.post({"id": "1", "type": "APPLY", "path": ["inc"], "argumentList": []})
    await _drain()

    assert received == [{"type": "RAW", "value": 1, "id": "1"}]
