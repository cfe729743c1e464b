"""Tests for the submission pipeline gates and outcomes."""

import pytest

from contact_relay.pipeline import (
    RATE_LIMIT_BODY,
    FormRequestContext,
    Outcome,
    OutcomeKind,
    SubmissionPipeline,
)
from contact_relay.prometheus import ContactMetrics

from conftest import HONEYPOT, TENANT_KEY, RecordingHandler


def ctx(fields, ip="203.0.113.5"):
    return FormRequestContext(fields=fields, client_ip=ip)


class SpyObserver:
    def __init__(self):
        self.events = []
        self.failures = []

    def record(self, event, realm=None):
        self.events.append((event, realm))

    def record_dispatch_failure(self, handler):
        self.failures.append(handler)


class CountingLimiter:
    """Stands in for RateLimiter to observe whether it was consulted."""

    def __init__(self, allow=True):
        self.allow = allow
        self.calls = []

    async def should_allow_access(self, identity):
        self.calls.append(identity)
        return self.allow


@pytest.mark.asyncio
async def test_end_to_end_accepted(make_pipeline, valid_fields):
    calls = []
    handler = RecordingHandler("only", calls)
    pipeline = make_pipeline(handlers=[handler])

    outcome = await pipeline.handle(ctx(valid_fields))

    assert outcome == Outcome(OutcomeKind.ACCEPTED)
    assert outcome.status == 200
    assert outcome.accepted
    assert calls == ["only"]
    message, client = handler.received[0]
    assert message.name == "Ann"
    assert message.body == "Hello"
    assert message.sender_address == "ann@example.com"
    assert client.public_key == TENANT_KEY


@pytest.mark.asyncio
async def test_non_empty_honeypot_rejected(make_pipeline, valid_fields):
    calls = []
    pipeline = make_pipeline(handlers=[RecordingHandler("only", calls)])

    outcome = await pipeline.handle(ctx({**valid_fields, HONEYPOT: "spam"}))

    assert outcome.kind is OutcomeKind.HONEYPOT
    assert outcome.status == 400
    assert calls == []


@pytest.mark.asyncio
@pytest.mark.parametrize("missing", ["name", "message", "email", HONEYPOT, "realm"])
async def test_missing_required_field(make_pipeline, valid_fields, missing):
    calls = []
    pipeline = make_pipeline(handlers=[RecordingHandler("only", calls)])
    fields = {k: v for k, v in valid_fields.items() if k != missing}

    outcome = await pipeline.handle(ctx(fields))

    assert outcome.kind is OutcomeKind.MISSING_FIELDS
    assert outcome.status == 400
    assert outcome.body is None
    assert calls == []


@pytest.mark.asyncio
async def test_honeypot_checked_before_message_validity(make_pipeline, valid_fields):
    pipeline = make_pipeline()
    fields = {**valid_fields, HONEYPOT: "x", "email": "broken", "realm": "nobody"}
    outcome = await pipeline.handle(ctx(fields))
    assert outcome.kind is OutcomeKind.HONEYPOT


@pytest.mark.asyncio
@pytest.mark.parametrize("realm", ["", "unknown", "tenantKey12", "tenantKey1234", "TENANTKEY123"])
async def test_unresolvable_realm(make_pipeline, valid_fields, realm):
    calls = []
    pipeline = make_pipeline(handlers=[RecordingHandler("only", calls)])

    outcome = await pipeline.handle(ctx({**valid_fields, "realm": realm}))

    assert outcome.kind is OutcomeKind.UNKNOWN_REALM
    assert outcome.status == 400
    assert calls == []


@pytest.mark.asyncio
async def test_invalid_email_carries_reason(make_pipeline, valid_fields):
    calls = []
    pipeline = make_pipeline(handlers=[RecordingHandler("only", calls)])

    outcome = await pipeline.handle(ctx({**valid_fields, "email": "not-an-email"}))

    assert outcome.kind is OutcomeKind.INVALID_MESSAGE
    assert outcome.status == 400
    assert outcome.body.startswith("email: ")
    assert calls == []


@pytest.mark.asyncio
async def test_empty_message_rejected(make_pipeline, valid_fields):
    pipeline = make_pipeline()
    outcome = await pipeline.handle(ctx({**valid_fields, "message": "  "}))
    assert outcome.kind is OutcomeKind.INVALID_MESSAGE
    assert outcome.body.startswith("message: ")


@pytest.mark.asyncio
async def test_rate_limit_exceeded(make_pipeline, valid_fields):
    calls = []
    pipeline = make_pipeline(handlers=[RecordingHandler("only", calls)], limit=2)

    outcomes = [await pipeline.handle(ctx(valid_fields)) for _ in range(3)]
    other_ip = await pipeline.handle(ctx(valid_fields, ip="198.51.100.7"))

    assert [o.status for o in outcomes] == [200, 200, 429]
    assert outcomes[2].kind is OutcomeKind.RATE_LIMITED
    assert outcomes[2].body == RATE_LIMIT_BODY
    assert other_ip.status == 200
    assert calls == ["only", "only", "only"]


@pytest.mark.asyncio
async def test_rejected_requests_do_not_consume_rate_limit(registry, valid_fields):
    limiter = CountingLimiter()
    pipeline = SubmissionPipeline(registry, limiter, observer=SpyObserver())

    await pipeline.handle(ctx({**valid_fields, HONEYPOT: "bot"}))
    await pipeline.handle(ctx({**valid_fields, "realm": "nobody"}))
    await pipeline.handle(ctx({**valid_fields, "email": "nope"}))
    await pipeline.handle(ctx({"name": "only"}))
    assert limiter.calls == []

    await pipeline.handle(ctx(valid_fields))
    assert limiter.calls == ["203.0.113.5"]


@pytest.mark.asyncio
async def test_rejection_is_idempotent(make_pipeline, valid_fields):
    pipeline = make_pipeline(limit=1)
    bad = ctx({**valid_fields, "email": "nope"})

    first = await pipeline.handle(bad)
    second = await pipeline.handle(bad)

    assert first == second
    # The malformed replays left the single allowed slot untouched
    assert (await pipeline.handle(ctx(valid_fields))).status == 200


@pytest.mark.asyncio
@pytest.mark.parametrize("failing_index", [0, 1, 2])
async def test_handler_failure_aborts_fan_out(make_pipeline, valid_fields, failing_index):
    calls = []
    handlers = [RecordingHandler(f"h{i}", calls, fail=(i == failing_index)) for i in range(3)]
    observer = SpyObserver()
    pipeline = make_pipeline(handlers=handlers, observer=observer)

    outcome = await pipeline.handle(ctx(valid_fields))

    assert outcome.kind is OutcomeKind.DISPATCH_FAILED
    assert outcome.status == 500
    assert calls == [f"h{i}" for i in range(failing_index + 1)]
    assert observer.failures == [f"h{failing_index}"]


@pytest.mark.asyncio
async def test_all_handlers_invoked_once_in_order(make_pipeline, valid_fields):
    calls = []
    handlers = [RecordingHandler(f"h{i}", calls) for i in range(4)]
    pipeline = make_pipeline(handlers=handlers)

    outcome = await pipeline.handle(ctx(valid_fields))

    assert outcome.status == 200
    assert calls == ["h0", "h1", "h2", "h3"]


@pytest.mark.asyncio
async def test_set_and_add_message_handlers(make_pipeline, valid_fields):
    calls = []
    pipeline = make_pipeline(handlers=[RecordingHandler("old", calls)])
    pipeline.set_message_handlers([RecordingHandler("a", calls)])
    pipeline.add_message_handler(RecordingHandler("b", calls))

    await pipeline.handle(ctx(valid_fields))

    assert calls == ["a", "b"]
    assert pipeline.handler_set.names() == ["a", "b"]


@pytest.mark.asyncio
async def test_observer_receives_outcomes(make_pipeline, valid_fields):
    observer = SpyObserver()
    pipeline = make_pipeline(observer=observer, limit=1)

    await pipeline.handle(ctx({}))
    await pipeline.handle(ctx({**valid_fields, HONEYPOT: "x"}))
    await pipeline.handle(ctx(valid_fields))
    await pipeline.handle(ctx(valid_fields))

    assert observer.events == [
        ("missing_fields", None),
        ("honeypot", None),
        ("accepted", TENANT_KEY),
        ("rate_limited", TENANT_KEY),
    ]


@pytest.mark.asyncio
async def test_prometheus_observer_counts(make_pipeline, valid_fields):
    metrics = ContactMetrics()
    pipeline = make_pipeline(handlers=[RecordingHandler("a", [])], observer=metrics)

    await pipeline.handle(ctx(valid_fields))

    output = metrics.generate_latest()
    assert b'crl_submissions_total{outcome="accepted",realm="tenantKey123"} 1.0' in output
    assert b"crl_registered_handlers 1.0" in output


@pytest.mark.asyncio
async def test_custom_honeypot_field(registry, valid_fields):
    pipeline = SubmissionPipeline(registry, CountingLimiter(), honeypot_field="website", observer=SpyObserver())
    fields = {k: v for k, v in valid_fields.items() if k != HONEYPOT}

    assert (await pipeline.handle(ctx(fields))).kind is OutcomeKind.MISSING_FIELDS
    assert (await pipeline.handle(ctx({**fields, "website": ""}))).kind is OutcomeKind.ACCEPTED


def test_form_context_lookup():
    context = FormRequestContext(fields={"a": ""}, client_ip="1.2.3.4")
    assert context.has_field("a")
    assert context.get_field("a") == ""
    assert not context.has_field("b")
    assert context.get_field("b") is None
