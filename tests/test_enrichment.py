from __future__ import annotations

import asyncio
import json
from types import SimpleNamespace

import httpx
import pytest
from sqlalchemy import select

from reelsync.core.errors import InvalidRequest, SignatureInvalid, TranscriptUnavailable, UpstreamError
from reelsync.core.jobs import EnrichmentJobSpec, ImmediateJobBackend, RQJobBackend, WorkflowJobBackend
from reelsync.db.models import EnrichmentJob, EnrichmentKind, JobStatus
from reelsync.services.enrichment import EnrichmentTrigger, idempotency_key
from reelsync.services.text_generator import OpenAITextGenerator
from reelsync.services.transcripts import TranscriptFetcher
from reelsync.webhooks.signatures import Verified, verify_workflow_signature
from reelsync.workers.tasks import InProcessEnrichmentRunner, execute_enrichment, run_enrichment_job, sign_completion
from tests.conftest import WORKFLOW_KEY, encode, workflow_delivery

CALLBACK = "http://test/v1/webhooks/workflow"


def _spec(**overrides) -> EnrichmentJobSpec:
    values = dict(
        job_id="job-1",
        external_asset_id="asset-1",
        kind=EnrichmentKind.title,
        transcript_url="https://stream.media.test/pb-1/text/track-1.txt",
        callback_url=CALLBACK,
    )
    values.update(overrides)
    return EnrichmentJobSpec(**values)


class RecordingRunner:
    def __init__(self, fail: bool = False):
        self.specs: list[EnrichmentJobSpec] = []
        self.fail = fail

    async def __call__(self, spec):
        self.specs.append(spec)
        if self.fail:
            raise UpstreamError("runner_down")


def test_idempotency_key_is_asset_and_kind():
    assert idempotency_key("asset-1", EnrichmentKind.title) == "asset-1:title"
    assert idempotency_key("asset-1", EnrichmentKind.description, "manual:abc") == "asset-1:description:manual:abc"


def test_job_spec_payload_round_trips_kind():
    payload = _spec(kind=EnrichmentKind.description).to_payload()
    assert payload["kind"] == "description"
    assert EnrichmentJobSpec.from_payload(payload).kind == EnrichmentKind.description


def test_repeated_enqueue_runs_once_and_reuses_ledger_row(make_services):
    runner = RecordingRunner()

    async def scenario():
        async with make_services() as services:
            trigger = EnrichmentTrigger(ImmediateJobBackend(runner), services.session_factory, callback_url=CALLBACK)
            first = await trigger.enqueue("asset-1", EnrichmentKind.title, "https://t/1.txt")
            second = await trigger.enqueue("asset-1", EnrichmentKind.title, "https://t/1.txt")
            manual = await trigger.enqueue("asset-1", EnrichmentKind.title, "https://t/1.txt", key_suffix="manual:1")
            async with services.session_factory() as session:
                rows = (await session.execute(select(EnrichmentJob))).scalars().all()
            return first, second, manual, rows

    first, second, manual, rows = asyncio.run(scenario())
    assert not first.duplicate
    assert second.duplicate and second.job_id == first.job_id
    assert manual.job_id != first.job_id
    assert [spec.job_id for spec in runner.specs] == [first.job_id, manual.job_id]
    assert runner.specs[0].callback_url == CALLBACK
    assert sorted(row.idempotency_key for row in rows) == ["asset-1:title", "asset-1:title:manual:1"]
    assert all(row.status == JobStatus.queued for row in rows)


def test_failed_run_releases_key_for_retry(make_services):
    runner = RecordingRunner(fail=True)

    async def scenario():
        async with make_services() as services:
            trigger = EnrichmentTrigger(ImmediateJobBackend(runner), services.session_factory, callback_url=CALLBACK)
            with pytest.raises(UpstreamError):
                await trigger.enqueue("asset-1", EnrichmentKind.title, "https://t/1.txt")
            runner.fail = False
            return await trigger.enqueue("asset-1", EnrichmentKind.title, "https://t/1.txt")

    retried = asyncio.run(scenario())
    assert not retried.duplicate
    assert len(runner.specs) == 2
    assert runner.specs[0].job_id == runner.specs[1].job_id == retried.job_id


def test_record_completion_updates_ledger(make_services):
    async def scenario():
        async with make_services() as services:
            trigger = EnrichmentTrigger(ImmediateJobBackend(RecordingRunner()), services.session_factory, callback_url=CALLBACK)
            done = await trigger.enqueue("asset-1", EnrichmentKind.title, "https://t/1.txt")
            failed = await trigger.enqueue("asset-1", EnrichmentKind.description, "https://t/1.txt")
            await trigger.record_completion(done.job_id, result_text="Harbour walk", error=None)
            await trigger.record_completion(failed.job_id, result_text=None, error="transcript_not_found")
            await trigger.record_completion("job-unknown", result_text="ignored", error=None)
            return await trigger.get_job(done.job_id), await trigger.get_job(failed.job_id)

    done, failed = asyncio.run(scenario())
    assert done.status == JobStatus.succeeded
    assert done.result == {"text": "Harbour walk"}
    assert done.finished_at is not None
    assert failed.status == JobStatus.failed
    assert failed.error == {"message": "transcript_not_found"}
    assert failed.result is None


class FakeRedis:
    def __init__(self):
        self.values: dict[str, bytes] = {}

    def set(self, key, value, nx=False, ex=None):
        if nx and key in self.values:
            return None
        self.values[key] = value.encode("utf-8")
        return True

    def get(self, key):
        return self.values.get(key)


class FakeQueue:
    def __init__(self):
        self.enqueued: list[tuple] = []

    def enqueue(self, func, *args, **kwargs):
        self.enqueued.append((func, args, kwargs))


def test_rq_backend_submits_once_per_key():
    connection = FakeRedis()
    queue = FakeQueue()
    backend = RQJobBackend(queue, connection, ttl_seconds=60)

    async def scenario():
        first = await backend.enqueue(_spec(), "asset-1:title")
        second = await backend.enqueue(_spec(job_id="job-2"), "asset-1:title")
        return first, second

    first, second = asyncio.run(scenario())
    assert first.job_id == "job-1" and not first.duplicate
    assert second.job_id == "job-1" and second.duplicate
    assert len(queue.enqueued) == 1
    func, args, kwargs = queue.enqueued[0]
    assert func is run_enrichment_job
    assert args == (_spec().to_payload(),)
    assert kwargs == {"job_id": "job-1"}


def test_workflow_backend_publishes_with_deduplication_id():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(201, json={"messageId": "msg-1", "deduplicated": len(seen) > 1})

    async def scenario():
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        backend = WorkflowJobBackend("https://queue.test", "token", "https://api.test/v1/workers/enrichment", client=client)
        try:
            return await backend.enqueue(_spec(), "asset-1:title"), await backend.enqueue(_spec(), "asset-1:title")
        finally:
            await backend.aclose()

    first, second = asyncio.run(scenario())
    assert not first.duplicate
    assert second.duplicate
    request = seen[0]
    assert request.url.path.startswith("/v2/publish/")
    assert request.headers["Upstash-Deduplication-Id"] == "asset-1:title"
    assert request.headers["Upstash-Retries"] == "3"
    assert json.loads(request.content) == _spec().to_payload()


def test_workflow_backend_maps_http_failures():
    async def scenario():
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(500)))
        backend = WorkflowJobBackend("https://queue.test", "token", "https://api.test/w", client=client)
        try:
            await backend.enqueue(_spec(), "asset-1:title")
        finally:
            await backend.aclose()

    with pytest.raises(UpstreamError):
        asyncio.run(scenario())


def test_execute_enrichment_reports_generated_text(fake_fetcher, fake_generator):
    envelope = asyncio.run(execute_enrichment(_spec(), fake_fetcher, fake_generator))
    assert envelope["type"] == "enrichment.completed"
    assert envelope["data"]["result_text"] == "Generated title: a walk along the harbour"
    assert envelope["data"]["error"] is None
    assert envelope["data"]["job_id"] == "job-1"


def test_execute_enrichment_reports_failures(fake_fetcher, fake_generator):
    fake_generator.fail = True
    envelope = asyncio.run(execute_enrichment(_spec(), fake_fetcher, fake_generator))
    assert envelope["data"]["result_text"] is None
    assert envelope["data"]["error"] == "generator_error:FakeError"


def test_completion_callback_is_signed_with_workflow_key(configure_environment):
    body = b'{"type":"enrichment.completed"}'
    headers = sign_completion(body, _spec(), configure_environment)
    assert headers["Content-Type"] == "application/json"
    assert verify_workflow_signature(body, headers, WORKFLOW_KEY) == Verified("workflow", delivery_id="job-1")


def test_in_process_runner_requires_delivery(configure_environment, fake_fetcher, fake_generator):
    runner = InProcessEnrichmentRunner(configure_environment, fake_fetcher, fake_generator)
    with pytest.raises(RuntimeError):
        asyncio.run(runner(_spec()))


def test_in_process_runner_delivers_signed_envelope(configure_environment, fake_fetcher, fake_generator):
    runner = InProcessEnrichmentRunner(configure_environment, fake_fetcher, fake_generator)
    delivered = []

    async def deliver(body, headers):
        delivered.append((body, headers))

    runner.deliver = deliver
    asyncio.run(runner(_spec()))
    body, headers = delivered[0]
    assert json.loads(body)["data"]["kind"] == "title"
    assert isinstance(verify_workflow_signature(body, headers, WORKFLOW_KEY), Verified)


def _fetcher(handler, **kwargs) -> TranscriptFetcher:
    return TranscriptFetcher(client=httpx.AsyncClient(transport=httpx.MockTransport(handler)), **kwargs)


def _fetch(fetcher: TranscriptFetcher, url: str = "https://stream.test/t.txt"):
    async def scenario():
        try:
            return await fetcher.fetch(url)
        finally:
            await fetcher.aclose()

    return asyncio.run(scenario())


def test_transcript_fetcher_truncates_text():
    fetcher = _fetcher(lambda request: httpx.Response(200, text="  hello harbour  "), max_chars=5)
    assert _fetch(fetcher) == "hello"


@pytest.mark.parametrize(
    "response, error, reason",
    [
        (httpx.Response(404), TranscriptUnavailable, "transcript_not_found"),
        (httpx.Response(200, text="   "), TranscriptUnavailable, "transcript_empty"),
        (httpx.Response(503), UpstreamError, "transcript_fetch_status:503"),
    ],
)
def test_transcript_fetcher_failures(response, error, reason):
    with pytest.raises(error) as excinfo:
        _fetch(_fetcher(lambda request: response))
    assert excinfo.value.reason == reason


def test_openai_generator_trims_quotes_and_length():
    captured = {}

    async def create(**kwargs):
        captured.update(kwargs)
        message = SimpleNamespace(content='"' + "A" * 150 + '"')
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])

    generator = OpenAITextGenerator("key", "test-model")
    generator._client = SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))
    text = asyncio.run(generator.generate(EnrichmentKind.title, "transcript"))
    assert text == "A" * 100
    assert captured["model"] == "test-model"
    assert captured["messages"][1] == {"role": "user", "content": "transcript"}


def test_worker_delivery_runs_signed_job(make_services):
    ran = []

    async def run(spec):
        ran.append(spec)

    async def scenario():
        async with make_services() as services:
            body, headers = workflow_delivery(_spec().to_payload())
            spec = await services.webhooks.handle_worker(body, headers, run)
            with pytest.raises(InvalidRequest):
                bad_body, bad_headers = workflow_delivery({"job_id": "job-1"})
                await services.webhooks.handle_worker(bad_body, bad_headers, run)
            with pytest.raises(SignatureInvalid):
                await services.webhooks.handle_worker(encode(_spec().to_payload()), {}, run)
            return spec

    spec = asyncio.run(scenario())
    assert spec == _spec()
    assert ran == [_spec()]


def test_blank_completion_is_recorded_as_failed(make_services):
    async def scenario():
        async with make_services() as services:
            trigger = EnrichmentTrigger(ImmediateJobBackend(RecordingRunner()), services.session_factory, callback_url=CALLBACK)
            blank = await trigger.enqueue("asset-1", EnrichmentKind.title, "https://t/1.txt")
            await trigger.record_completion(blank.job_id, result_text="   ", error=None)
            return await trigger.get_job(blank.job_id)

    job = asyncio.run(scenario())
    assert job.status == JobStatus.failed
    assert job.result is None
    assert job.error == {"message": "empty_result"}
