import asyncio
import json

import httpx
import jwt
import pytest

from conftest import API_BASE, FakeKling, poll_envelope
from forge.schemas.job import (
    ImageGenerationRequest,
    ImageToVideoRequest,
    Job,
    JobKind,
    TaskStatus,
    TextToVideoRequest,
)
from forge.services.providers.kling_errors import (
    ConfigurationError,
    InvalidTransitionError,
    KlingError,
    MissingResultError,
    NetworkError,
    PollError,
    PollTimeoutError,
    SubmissionError,
    TaskFailureError,
)
from forge.services.providers.kling_payloads import build
from forge.services.providers.kling_tasks import (
    POLLING_POLICIES,
    PollingPolicy,
    policy_for,
    poll,
    resolve,
    run_job,
    submit,
)

VIDEO = {"videos": [{"id": "v1", "url": "https://cdn/video.mp4", "duration": "5.1"}]}


def test_polling_policies_are_bounded():
    video = POLLING_POLICIES[JobKind.TEXT_TO_VIDEO]
    image = POLLING_POLICIES[JobKind.IMAGE_GENERATION]

    assert image.interval_seconds < video.interval_seconds
    assert image.max_attempts < video.max_attempts
    assert video.max_wait_seconds == 600


def test_policy_for_reads_settings(settings):
    settings.KLING_IMAGE_POLL_ATTEMPTS = 7
    settings.KLING_IMAGE_POLL_INTERVAL = 0.5

    assert policy_for(JobKind.IMAGE_GENERATION, settings) == PollingPolicy(7, 0.5)
    assert policy_for(JobKind.AVATAR_VIDEO) == POLLING_POLICIES[JobKind.AVATAR_VIDEO]


def test_policy_for_defaults_to_table(settings):
    for kind in JobKind:
        assert policy_for(kind, settings) == POLLING_POLICIES[kind]


def test_policy_for_partial_override(settings):
    settings.KLING_VIDEO_POLL_INTERVAL = 1.0

    assert policy_for(JobKind.TEXT_TO_VIDEO, settings) == PollingPolicy(120, 1.0)
    assert policy_for(JobKind.IMAGE_GENERATION, settings) == POLLING_POLICIES[JobKind.IMAGE_GENERATION]


def test_polling_policy_rejects_unbounded():
    with pytest.raises(ValueError):
        PollingPolicy(max_attempts=0, interval_seconds=1)


@pytest.mark.asyncio
async def test_submit_returns_job(settings):
    fake = FakeKling()
    built = build(TextToVideoRequest(prompt="p"))

    async with fake.client() as client:
        job = await submit(built, client=client, settings=settings)

    assert job.id == "task-1"
    assert job.kind is JobKind.TEXT_TO_VIDEO
    assert job.status is TaskStatus.SUBMITTED
    assert job.created_at is not None
    assert str(fake.posts[0].url) == f"{API_BASE}/v1/videos/text2video"
    assert fake.body()["prompt"] == "p"


@pytest.mark.asyncio
async def test_submit_embedded_error_code_is_failure(settings):
    fake = FakeKling(submit={"code": 1201, "message": "invalid model_name", "data": None})

    async with fake.client() as client:
        with pytest.raises(SubmissionError) as exc:
            await submit(build(TextToVideoRequest(prompt="p")), client=client, settings=settings)

    assert exc.value.code == 1201
    assert exc.value.http_status == 200
    assert "invalid model_name" in str(exc.value)
    assert len(fake.requests) == 1


@pytest.mark.asyncio
async def test_submit_http_error(settings):
    def handler(request):
        return httpx.Response(401, json={"code": 1004, "message": "token expired"})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        with pytest.raises(SubmissionError) as exc:
            await submit(build(TextToVideoRequest(prompt="p")), client=client, settings=settings)

    assert exc.value.http_status == 401
    assert exc.value.code == 1004


@pytest.mark.asyncio
async def test_submit_without_task_id(settings):
    fake = FakeKling(submit={"code": 0, "message": "SUCCEED", "data": {}})

    async with fake.client() as client:
        with pytest.raises(SubmissionError):
            await submit(build(TextToVideoRequest(prompt="p")), client=client, settings=settings)


@pytest.mark.asyncio
async def test_submit_tolerates_unparseable_timestamp(settings):
    fake = FakeKling(
        submit={
            "code": 0,
            "message": "SUCCEED",
            "data": {"task_id": "task-7", "task_status": "submitted", "created_at": "2024-08-04T10:00:00Z"},
        }
    )

    async with fake.client() as client:
        job = await submit(build(TextToVideoRequest(prompt="p")), client=client, settings=settings)

    assert job.id == "task-7"
    assert job.created_at is None


@pytest.mark.asyncio
async def test_transport_failure_is_network_error(settings):
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        with pytest.raises(NetworkError) as exc:
            await submit(build(TextToVideoRequest(prompt="p")), client=client, settings=settings)

    assert exc.value.retriable


@pytest.mark.asyncio
async def test_missing_credentials_fail_before_network(settings):
    settings.KLING_SECRET_KEY = ""
    fake = FakeKling()

    async with fake.client() as client:
        with pytest.raises(ConfigurationError):
            await submit(build(TextToVideoRequest(prompt="p")), client=client, settings=settings)

    assert fake.requests == []


@pytest.mark.asyncio
async def test_poll_until_succeed(settings, fast_policy):
    fake = FakeKling(
        polls=[
            poll_envelope("processing"),
            poll_envelope("processing"),
            poll_envelope("succeed", task_result={"images": [{"index": 0, "url": "X"}]}),
        ]
    )
    job = Job(id="task-1", kind=JobKind.IMAGE_GENERATION, poll_endpoint="/v1/images/generations")

    async with fake.client() as client:
        envelope = await poll(job, client=client, settings=settings, policy=fast_policy)

    result = resolve(job.kind, envelope, job_id=job.id)
    assert len(fake.gets) == 3
    assert str(fake.gets[0].url) == f"{API_BASE}/v1/images/generations/task-1"
    assert job.status is TaskStatus.SUCCEED
    assert len(result.images) == 1
    assert result.images[0].url == "X"


@pytest.mark.asyncio
async def test_poll_timeout_carries_job_id(settings, fast_policy):
    fake = FakeKling(polls=[poll_envelope("processing")])
    job = Job(id="task-9", kind=JobKind.TEXT_TO_VIDEO, poll_endpoint="/v1/videos/text2video")

    async with fake.client() as client:
        with pytest.raises(PollTimeoutError) as exc:
            await poll(job, client=client, settings=settings, policy=fast_policy)

    assert exc.value.job_id == "task-9"
    assert exc.value.last_status == "processing"
    assert exc.value.attempts == fast_policy.max_attempts
    assert len(fake.gets) == fast_policy.max_attempts
    assert not isinstance(exc.value, TaskFailureError)


@pytest.mark.asyncio
async def test_poll_sleeps_between_attempts_only(settings, monkeypatch):
    sleeps = []

    async def fake_sleep(seconds):
        sleeps.append(seconds)

    monkeypatch.setattr("forge.services.providers.kling_tasks.asyncio.sleep", fake_sleep)
    fake = FakeKling(polls=[poll_envelope("submitted")])
    job = Job(id="task-1", kind=JobKind.TEXT_TO_VIDEO, poll_endpoint="/v1/videos/text2video")

    async with fake.client() as client:
        with pytest.raises(PollTimeoutError):
            await poll(job, client=client, settings=settings, policy=PollingPolicy(4, 2.5))

    assert sleeps == [2.5, 2.5, 2.5]


@pytest.mark.asyncio
async def test_poll_rejected_credential_is_poll_error(settings, fast_policy):
    fake = FakeKling(polls=[poll_envelope("processing", code=1004)])
    job = Job(id="task-1", kind=JobKind.TEXT_TO_VIDEO, poll_endpoint="/v1/videos/text2video")

    async with fake.client() as client:
        with pytest.raises(PollError) as exc:
            await poll(job, client=client, settings=settings, policy=fast_policy)

    assert exc.value.code == 1004
    assert exc.value.job_id == "task-1"
    assert len(fake.gets) == 1


@pytest.mark.asyncio
async def test_poll_http_error_is_poll_error(settings, fast_policy):
    fake = FakeKling(polls=[httpx.Response(500, text="boom")])
    job = Job(id="task-1", kind=JobKind.TEXT_TO_VIDEO, poll_endpoint="/v1/videos/text2video")

    async with fake.client() as client:
        with pytest.raises(PollError) as exc:
            await poll(job, client=client, settings=settings, policy=fast_policy)

    assert exc.value.http_status == 500


@pytest.mark.asyncio
async def test_poll_backward_status_rejected(settings, fast_policy):
    fake = FakeKling(polls=[poll_envelope("processing"), poll_envelope("submitted")])
    job = Job(id="task-1", kind=JobKind.TEXT_TO_VIDEO, poll_endpoint="/v1/videos/text2video")

    async with fake.client() as client:
        with pytest.raises(InvalidTransitionError):
            await poll(job, client=client, settings=settings, policy=fast_policy)


def test_resolve_video():
    result = resolve(
        JobKind.IMAGE_TO_VIDEO,
        {"task_id": "t", "task_status": "succeed", "task_result": VIDEO},
    )

    assert result.job_id == "t"
    assert result.first_url == "https://cdn/video.mp4"
    assert result.videos[0].duration == "5.1"
    assert result.images == []


def test_resolve_keeps_every_artifact():
    images = [{"index": 0, "url": "A"}, {"index": 1, "url": "B"}]
    result = resolve(
        JobKind.IMAGE_GENERATION,
        {"task_status": "succeed", "task_result": {"images": images}},
    )

    assert [i.url for i in result.images] == ["A", "B"]
    assert result.first_url == "A"


@pytest.mark.parametrize(
    "task_result",
    [None, {}, {"videos": []}, {"videos": [{"id": "v"}]}, {"images": [{"index": 0, "url": "X"}]}],
)
def test_resolve_success_without_artifact(task_result):
    with pytest.raises(MissingResultError) as exc:
        resolve(
            JobKind.TEXT_TO_VIDEO,
            {"task_status": "succeed", "task_result": task_result},
            job_id="t",
        )

    assert exc.value.job_id == "t"


@pytest.mark.parametrize(
    "task_result",
    [
        {"videos": ["https://cdn/v.mp4"]},
        {"videos": "https://cdn/v.mp4"},
        {"videos": 3},
        ["https://cdn/v.mp4"],
    ],
)
def test_resolve_malformed_task_result(task_result):
    with pytest.raises(MissingResultError) as exc:
        resolve(
            JobKind.TEXT_TO_VIDEO,
            {"task_status": "succeed", "task_result": task_result},
            job_id="t",
        )

    assert exc.value.job_id == "t"


def test_resolve_invalid_artifact_fields():
    with pytest.raises(MissingResultError) as exc:
        resolve(
            JobKind.IMAGE_GENERATION,
            {"task_status": "succeed", "task_result": {"images": [{"index": "first", "url": "X"}]}},
            job_id="t",
        )

    assert exc.value.job_id == "t"
    assert isinstance(exc.value, KlingError)


def test_resolve_failed_carries_provider_message():
    with pytest.raises(TaskFailureError) as exc:
        resolve(
            JobKind.TEXT_TO_VIDEO,
            {"task_status": "failed", "task_status_msg": "content policy"},
            job_id="t",
        )

    assert "content policy" in str(exc.value)
    assert exc.value.job_id == "t"


def test_resolve_failed_generic_message():
    with pytest.raises(TaskFailureError, match="Unknown error"):
        resolve(JobKind.IMAGE_GENERATION, {"task_status": "failed"})


def test_resolve_non_terminal():
    with pytest.raises(KlingError):
        resolve(JobKind.IMAGE_GENERATION, {"task_status": "processing"})


@pytest.mark.asyncio
async def test_run_job_signs_every_call(settings, fast_policy):
    fake = FakeKling(
        polls=[
            poll_envelope("processing"),
            poll_envelope("succeed", task_result=VIDEO),
        ]
    )

    async with fake.client() as client:
        result = await run_job(
            ImageToVideoRequest(prompt="p", input_image="data:image/jpeg;base64,AAAA"),
            settings=settings,
            http_client=client,
            policy=fast_policy,
        )

    assert result.kind is JobKind.IMAGE_TO_VIDEO
    assert result.first_url == "https://cdn/video.mp4"
    assert [r.method for r in fake.requests] == ["POST", "GET", "GET"]
    assert str(fake.gets[0].url).endswith("/v1/videos/image2video/task-1")
    for request in fake.requests:
        token = request.headers["Authorization"].removeprefix("Bearer ")
        claims = jwt.decode(token, "test-secret-key", algorithms=["HS256"])
        assert claims["iss"] == "test-access-key"
    assert json.loads(fake.posts[0].content)["image"] == "AAAA"


@pytest.mark.asyncio
async def test_run_job_task_failure(settings, fast_policy):
    fake = FakeKling(polls=[poll_envelope("failed", task_status_msg="nsfw")])

    async with fake.client() as client:
        with pytest.raises(TaskFailureError) as exc:
            await run_job(
                TextToVideoRequest(prompt="p"),
                settings=settings,
                http_client=client,
                policy=fast_policy,
            )

    assert exc.value.job_id == "task-1"


@pytest.mark.asyncio
async def test_concurrent_jobs_poll_independently(settings, fast_policy):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            prompt = json.loads(request.content)["prompt"]
            return httpx.Response(200, json={"code": 0, "data": {"task_id": prompt}})
        task_id = request.url.path.rsplit("/", 1)[-1]
        return httpx.Response(
            200,
            json=poll_envelope(
                "succeed",
                task_id=task_id,
                task_result={"images": [{"index": 0, "url": f"https://cdn/{task_id}.png"}]},
            ),
        )

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        results = await asyncio.gather(
            *(
                run_job(
                    ImageGenerationRequest(prompt=name),
                    settings=settings,
                    http_client=client,
                    policy=fast_policy,
                )
                for name in ("a", "b", "c")
            )
        )

    assert [r.job_id for r in results] == ["a", "b", "c"]
    assert [r.first_url for r in results] == [f"https://cdn/{n}.png" for n in "abc"]


@pytest.mark.asyncio
async def test_poll_is_cancellable(settings):
    fake = FakeKling(polls=[poll_envelope("processing")])
    job = Job(id="task-1", kind=JobKind.TEXT_TO_VIDEO, poll_endpoint="/v1/videos/text2video")

    async with fake.client() as client:
        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(
                poll(job, client=client, settings=settings, policy=PollingPolicy(100, 10)),
                timeout=0.05,
            )

    assert len(fake.gets) == 1
