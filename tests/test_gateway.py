import asyncio
import json

import pytest
from google.api_core import exceptions as google_exceptions

from orchestrator.errors import (
    CredentialsExhaustedError,
    GenerationError,
    InvalidCredentialError,
    MalformedResponseError,
    ModelOverloadedError,
)
from orchestrator.gateway import (
    FATAL,
    INVALID_KEY,
    MALFORMED,
    OVERLOAD,
    QUOTA,
    ModelGateway,
    classify_error,
    clean_line,
)
from orchestrator.models import TripHeader
from orchestrator import prompts

from fakes import FakeBackend, RecordingSleep


HEADER_JSON = json.dumps({"tripTitle": "Kyoto Calm", "tripSummary": "Temples and tea."})


def _call_header(gateway: ModelGateway):
    return asyncio.run(
        gateway.call_structured("prompt", prompts.HEADER.schema, prompts.HEADER.response_type)
    )


def _collect(gateway: ModelGateway, prompt: str = "pack"):
    async def run():
        return [line async for line in gateway.call_stream(prompt)]
    return asyncio.run(run())


def test_structured_call_returns_validated_model():
    backend = FakeBackend(structured=lambda key, prompt, schema: HEADER_JSON)
    gateway = ModelGateway(["k1"], backend=backend, sleep=RecordingSleep())
    header = _call_header(gateway)
    assert isinstance(header, TripHeader)
    assert header.trip_title == "Kyoto Calm"
    assert len(backend.calls) == 1


def test_quota_error_rotates_to_next_key_and_succeeds():
    def structured(key, prompt, schema):
        if key == "k1":
            raise google_exceptions.ResourceExhausted("You exceeded your current quota")
        return HEADER_JSON

    backend = FakeBackend(structured=structured)
    sleep = RecordingSleep()
    gateway = ModelGateway(["k1", "k2"], backend=backend, sleep=sleep)
    header = _call_header(gateway)

    assert header.trip_summary == "Temples and tea."
    assert [c[1] for c in backend.calls] == ["k1", "k2"]
    assert gateway.key_index == 1
    assert sleep.delays == []


def test_rotation_resets_backoff_budget():
    attempts = {"k1": 0, "k2": 0}

    def structured(key, prompt, schema):
        attempts[key] += 1
        if key == "k1":
            if attempts[key] <= 2:
                raise google_exceptions.ServiceUnavailable("The model is overloaded")
            raise google_exceptions.ResourceExhausted("quota")
        if attempts[key] <= 3:
            raise google_exceptions.ServiceUnavailable("The model is overloaded")
        return HEADER_JSON

    sleep = RecordingSleep()
    gateway = ModelGateway(["k1", "k2"], backend=FakeBackend(structured=structured), sleep=sleep)
    _call_header(gateway)

    assert sleep.delays == [5.0, 10.0, 5.0, 10.0, 20.0]
    assert attempts == {"k1": 3, "k2": 4}


def test_overload_backoff_sequence_then_fatal():
    def structured(key, prompt, schema):
        raise google_exceptions.ServiceUnavailable("503 overloaded")

    backend = FakeBackend(structured=structured)
    sleep = RecordingSleep()
    gateway = ModelGateway(["k1"], backend=backend, sleep=sleep)
    with pytest.raises(ModelOverloadedError):
        _call_header(gateway)

    assert sleep.delays == [5.0, 10.0, 20.0]
    assert len(backend.calls) == 4


def test_all_keys_exhausted_is_fatal():
    def structured(key, prompt, schema):
        raise google_exceptions.ResourceExhausted("quota")

    backend = FakeBackend(structured=structured)
    gateway = ModelGateway(["k1", "k2"], backend=backend, sleep=RecordingSleep())
    with pytest.raises(CredentialsExhaustedError) as info:
        _call_header(gateway)

    assert "exceeded their daily quota" in info.value.message
    assert [c[1] for c in backend.calls] == ["k1", "k2"]


def test_no_keys_configured():
    backend = FakeBackend(structured=lambda key, prompt, schema: HEADER_JSON)
    gateway = ModelGateway([], backend=backend, sleep=RecordingSleep())
    with pytest.raises(CredentialsExhaustedError):
        _call_header(gateway)
    assert backend.calls == []


def test_malformed_response_is_not_retried():
    backend = FakeBackend(structured=lambda key, prompt, schema: "Sure! Here is your trip:")
    sleep = RecordingSleep()
    gateway = ModelGateway(["k1", "k2"], backend=backend, sleep=sleep)
    with pytest.raises(MalformedResponseError):
        _call_header(gateway)
    assert len(backend.calls) == 1
    assert sleep.delays == []


def test_schema_mismatch_is_malformed():
    backend = FakeBackend(structured=lambda key, prompt, schema: json.dumps({"tripTitle": "Only a title"}))
    gateway = ModelGateway(["k1"], backend=backend, sleep=RecordingSleep())
    with pytest.raises(MalformedResponseError):
        _call_header(gateway)


def test_invalid_key_is_fatal_without_rotation():
    def structured(key, prompt, schema):
        raise google_exceptions.InvalidArgument("API key not valid. Please pass a valid API key.")

    backend = FakeBackend(structured=structured)
    gateway = ModelGateway(["k1", "k2"], backend=backend, sleep=RecordingSleep())
    with pytest.raises(InvalidCredentialError):
        _call_header(gateway)
    assert gateway.key_index == 0
    assert len(backend.calls) == 1


def test_network_fault_is_fatal():
    def structured(key, prompt, schema):
        raise ConnectionResetError("connection reset by peer")

    backend = FakeBackend(structured=structured)
    gateway = ModelGateway(["k1"], backend=backend, sleep=RecordingSleep())
    with pytest.raises(GenerationError) as info:
        _call_header(gateway)
    assert info.value.message.startswith("Failed to generate content:")
    assert len(backend.calls) == 1


def test_rotation_is_shared_between_calls():
    def structured(key, prompt, schema):
        if key == "k1":
            raise google_exceptions.ResourceExhausted("quota")
        return HEADER_JSON

    backend = FakeBackend(structured=structured)
    gateway = ModelGateway(["k1", "k2", "k3"], backend=backend, sleep=RecordingSleep())
    _call_header(gateway)
    _call_header(gateway)

    # the second call starts on the rotated key
    assert [c[1] for c in backend.calls] == ["k1", "k2", "k2"]
    assert gateway.key_index == 1


def test_concurrent_quota_failures_rotate_once():
    async def structured(key, prompt, schema):
        await asyncio.sleep(0)
        if key == "k1":
            raise google_exceptions.ResourceExhausted("quota")
        return HEADER_JSON

    backend = FakeBackend(structured=structured)
    gateway = ModelGateway(["k1", "k2", "k3"], backend=backend, sleep=RecordingSleep())

    async def run():
        return await asyncio.gather(*[
            gateway.call_structured("p", prompts.HEADER.schema, prompts.HEADER.response_type)
            for _ in range(3)
        ])

    results = asyncio.run(run())
    assert len(results) == 3
    assert gateway.key_index == 1


def test_stream_splits_lines_and_strips_bullets():
    backend = FakeBackend(stream=lambda key, prompt: ["* Passport\n- Sun", "screen\n\n*   Hat (1)\n", "* Umbrella"])
    gateway = ModelGateway(["k1"], backend=backend, sleep=RecordingSleep())
    assert _collect(gateway) == ["Passport", "Sunscreen", "Hat (1)", "Umbrella"]


def test_stream_retries_when_nothing_was_yielded():
    attempts = []

    def stream(key, prompt):
        attempts.append(key)
        if len(attempts) == 1:
            return [google_exceptions.ServiceUnavailable("overloaded")]
        return ["* Socks\n"]

    sleep = RecordingSleep()
    gateway = ModelGateway(["k1"], backend=FakeBackend(stream=stream), sleep=sleep)
    assert _collect(gateway) == ["Socks"]
    assert sleep.delays == [5.0]


def test_stream_rotates_key_on_quota():
    def stream(key, prompt):
        if key == "k1":
            return [google_exceptions.ResourceExhausted("quota")]
        return ["* Hat\n"]

    gateway = ModelGateway(["k1", "k2"], backend=FakeBackend(stream=stream), sleep=RecordingSleep())
    assert _collect(gateway) == ["Hat"]
    assert gateway.key_index == 1


def test_stream_failure_after_output_is_not_restarted():
    backend = FakeBackend(stream=lambda key, prompt: ["* Passport\n", google_exceptions.ServiceUnavailable("overloaded")])
    gateway = ModelGateway(["k1"], backend=backend, sleep=RecordingSleep())
    received = []

    async def run():
        async for line in gateway.call_stream("pack"):
            received.append(line)

    with pytest.raises(GenerationError):
        asyncio.run(run())
    assert received == ["Passport"]
    assert len(backend.calls) == 1


def test_clean_line():
    assert clean_line("*   Comfortable Shoes (2 pairs)  ") == "Comfortable Shoes (2 pairs)"
    assert clean_line("- Rain jacket") == "Rain jacket"
    assert clean_line("Passport") == "Passport"
    assert clean_line("   ") == ""


def test_classify_error():
    assert classify_error(google_exceptions.ResourceExhausted("x")) == QUOTA
    assert classify_error(RuntimeError("Quota exceeded for metric")) == QUOTA
    assert classify_error(google_exceptions.ServiceUnavailable("x")) == OVERLOAD
    assert classify_error(RuntimeError("got status 503")) == OVERLOAD
    assert classify_error(json.JSONDecodeError("bad", "doc", 0)) == MALFORMED
    assert classify_error(google_exceptions.PermissionDenied("denied")) == INVALID_KEY
    assert classify_error(RuntimeError("API key not valid")) == INVALID_KEY
    assert classify_error(TimeoutError("timed out")) == FATAL


def test_call_in_backoff_retries_with_key_rotated_by_another_call():
    def structured(key, prompt, schema):
        if key == "k1" and prompt == "overloaded":
            raise google_exceptions.ServiceUnavailable("The model is overloaded")
        if key == "k1" and prompt == "quota":
            raise google_exceptions.ResourceExhausted("You exceeded your current quota")
        return HEADER_JSON

    backend = FakeBackend(structured=structured)
    delays = []

    async def run():
        in_backoff = asyncio.Event()
        release = asyncio.Event()

        async def sleep(seconds):
            delays.append(seconds)
            in_backoff.set()
            await release.wait()

        gateway = ModelGateway(["k1", "k2"], backend=backend, sleep=sleep)
        first = asyncio.ensure_future(
            gateway.call_structured("overloaded", prompts.HEADER.schema, prompts.HEADER.response_type)
        )
        await in_backoff.wait()
        await gateway.call_structured("quota", prompts.HEADER.schema, prompts.HEADER.response_type)
        release.set()
        await first
        return gateway

    gateway = asyncio.run(run())
    assert [c[1] for c in backend.calls if c[2] == "overloaded"] == ["k1", "k2"]
    assert [c[1] for c in backend.calls if c[2] == "quota"] == ["k1", "k2"]
    assert gateway.key_index == 1
    assert delays == [5.0]
