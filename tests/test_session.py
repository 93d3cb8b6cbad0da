"""Tests for the upload session, scheduler and completion flow."""

import asyncio
import io
import time

import pytest

from bos_storage.core.exceptions import (
    CancelledError,
    ClockSkewError,
    CompletionError,
    InvalidStateError,
    ServiceError,
    TransientTransportError,
    UploadIncompleteError,
    ValidationError,
)
from bos_storage.core.models import ListedPart, PartStatus, UploadState
from bos_storage.core.session import UploadSession
from tests.fake_client import FakeMultipartClient

DATA = b"0123456789AB"  # three 4-byte parts


async def wait_until(predicate, rounds=200):
    for _ in range(rounds):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition not reached")


def make_session(client, data=DATA, **options):
    options.setdefault("chunk_size", 4)
    options.setdefault("min_part_size", 1)
    return UploadSession(client, "bucket", "dir/object.bin", data, **options)


class TestUploadSession:
    """Test the happy path and lifecycle rules."""

    @pytest.mark.asyncio
    async def test_upload_completes_with_parts_in_order(self, fake_client):
        session = make_session(fake_client, part_concurrency=3)
        fake_client.gates[1] = asyncio.Event()

        task = asyncio.create_task(session.start())
        await fake_client.started(3).wait()
        await wait_until(lambda: session.part(3).status is PartStatus.DONE)
        fake_client.gates[1].set()
        result = await task

        assert result.etag == "final-etag"
        assert session.state is UploadState.COMPLETED
        assert fake_client.calls["initiate"] == [
            ("bucket", "dir/object.bin", "application/octet-stream", "STANDARD")
        ]
        request = fake_client.calls["complete"][0]
        assert [(p.part_number, p.etag) for p in request.parts] == [
            (1, "etag-1"),
            (2, "etag-2"),
            (3, "etag-3"),
        ]
        assert fake_client.calls["abort"] == []

    @pytest.mark.asyncio
    async def test_start_twice_never_initiates_twice(self, fake_client):
        session = make_session(fake_client)
        fake_client.initiate_gate = asyncio.Event()

        task = asyncio.create_task(session.start())
        await wait_until(lambda: fake_client.calls["initiate"])
        with pytest.raises(InvalidStateError):
            await session.start()

        fake_client.initiate_gate.set()
        await task
        with pytest.raises(InvalidStateError) as exc_info:
            await session.start()

        assert exc_info.value.upload_id == "upload-1"
        assert len(fake_client.calls["initiate"]) == 1

    @pytest.mark.asyncio
    async def test_concurrency_limit(self):
        observed = []

        class ProbingClient(FakeMultipartClient):
            async def upload_part(self, *args):
                observed.append(
                    sum(p.status is PartStatus.UPLOADING for p in session.parts)
                )
                return await super().upload_part(*args)

        client = ProbingClient()
        session = make_session(client, data=b"x" * 20, part_concurrency=2)

        await session.start()

        assert len(session.parts) == 5
        assert max(observed) <= 2
        assert client.max_in_flight == 2
        assert session._scheduler.max_in_flight == 2
        assert sorted(client.calls["upload_part"]) == [1, 2, 3, 4, 5]

    @pytest.mark.asyncio
    async def test_pause_then_resume_uploads_only_remaining_parts(self, fake_client):
        session = make_session(fake_client, data=b"x" * 16, part_concurrency=1)
        fake_client.gates[2] = asyncio.Event()

        task = asyncio.create_task(session.start())
        await fake_client.started(2).wait()
        assert session.pause() is True
        assert session.pause() is False

        fake_client.gates[2].set()
        await wait_until(lambda: session.part(2).status is PartStatus.DONE)
        for _ in range(10):
            await asyncio.sleep(0)

        assert session.state is UploadState.PAUSED
        assert fake_client.calls["upload_part"] == [1, 2]
        assert fake_client.calls["complete"] == []

        assert session.resume() is True
        await task

        assert fake_client.calls["upload_part"] == [1, 2, 3, 4]
        assert session.state is UploadState.COMPLETED

    @pytest.mark.asyncio
    async def test_pause_after_last_dispatch_still_completes(self, fake_client):
        session = make_session(fake_client, part_concurrency=3)
        fake_client.gates[3] = asyncio.Event()

        task = asyncio.create_task(session.start())
        await fake_client.started(3).wait()
        assert session.pause() is True
        fake_client.gates[3].set()
        result = await asyncio.wait_for(task, timeout=5)

        assert result.etag == "final-etag"
        assert session.state is UploadState.COMPLETED
        assert len(fake_client.calls["complete"]) == 1
        assert session.resume() is False

    @pytest.mark.asyncio
    async def test_pause_and_resume_outside_running_state(self, fake_client):
        session = make_session(fake_client)

        assert session.pause() is False
        assert session.resume() is False

    @pytest.mark.asyncio
    async def test_progress_and_state_notifications(self, fake_client):
        progress, states = [], []
        session = make_session(
            fake_client,
            data=b"x" * 10,
            on_progress=progress.append,
            on_state_change=states.append,
        )

        await session.start()

        assert [e.uploaded_bytes for e in progress][-1] == 10
        assert progress[-1].percent == pytest.approx(100.0)
        assert sorted(e.part_number for e in progress) == [1, 2, 3]
        assert [e.state for e in states] == [
            UploadState.INITIATED,
            UploadState.RUNNING,
            UploadState.COMPLETED,
        ]

    @pytest.mark.asyncio
    async def test_listener_errors_do_not_break_the_upload(self, fake_client):
        def broken(event):
            raise RuntimeError("listener bug")

        session = make_session(fake_client, on_progress=broken, on_state_change=broken)

        await session.start()

        assert session.state is UploadState.COMPLETED


class TestRetries:
    """Test per-part retry and clock-skew recovery."""

    @pytest.mark.asyncio
    async def test_transient_failures_are_retried(self, fake_client):
        fake_client.errors[2] = [TransientTransportError("reset") for _ in range(3)]
        session = make_session(fake_client, max_retry_count=3)

        await session.start()

        assert session.part(2).retry_count == 3
        assert session.part(2).status is PartStatus.DONE
        assert fake_client.uploads_of(2) == 4
        assert session.state is UploadState.COMPLETED

    @pytest.mark.asyncio
    async def test_clock_skew_resyncs_offset_and_succeeds(self, fake_client):
        server_time = time.time() + 3600
        fake_client.errors[1] = [
            ClockSkewError("skewed", 403, "RequestTimeTooSkewed", server_time=server_time)
            for _ in range(3)
        ]
        retries = []
        session = make_session(
            fake_client,
            max_retry_count=3,
            on_state_change=lambda e: e.message == "part-retry" and retries.append(e.data),
        )

        await session.start()

        assert session.state is UploadState.COMPLETED
        assert session.part(1).retry_count == 3
        assert fake_client.clock.offset == pytest.approx(3600, abs=5)
        assert [r["retry_count"] for r in retries] == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_exhausted_part_blocks_completion_only(self, fake_client):
        fake_client.errors[2] = [TransientTransportError("reset") for _ in range(4)]
        failed = []
        session = make_session(
            fake_client,
            max_retry_count=3,
            on_state_change=lambda e: e.message == "part-failed" and failed.append(e.data),
        )

        with pytest.raises(UploadIncompleteError) as exc_info:
            await session.start()

        assert list(exc_info.value.failures) == [2]
        assert exc_info.value.failures[2].retry_count == 3
        assert session.part(1).status is PartStatus.DONE
        assert session.part(2).status is PartStatus.FAILED
        assert session.part(3).status is PartStatus.DONE
        assert session.state is UploadState.FAILED
        assert fake_client.calls["complete"] == []
        assert fake_client.calls["abort"] == []
        assert failed[0]["part_number"] == 2

    @pytest.mark.asyncio
    async def test_service_rejection_is_not_retried(self, fake_client):
        fake_client.errors[1] = [ServiceError("no such upload", 404, "NoSuchUpload")]
        session = make_session(fake_client)

        with pytest.raises(UploadIncompleteError):
            await session.start()

        assert fake_client.uploads_of(1) == 1
        assert session.part(1).retry_count == 0


class TestCancel:
    """Test cancellation."""

    @pytest.mark.asyncio
    async def test_cancel_with_part_in_flight(self, fake_client):
        session = make_session(fake_client, part_concurrency=1)
        fake_client.gates[2] = asyncio.Event()

        task = asyncio.create_task(session.start())
        await fake_client.started(2).wait()
        assert session.part(1).status is PartStatus.DONE
        assert session.part(2).status is PartStatus.UPLOADING
        assert session.part(3).status is PartStatus.PENDING

        assert await session.cancel() is True
        with pytest.raises(CancelledError):
            await task

        assert fake_client.calls["abort"] == ["upload-1"]
        assert session.state is UploadState.CANCELLED
        assert session.part(2).status is not PartStatus.DONE
        assert session.part(2).etag is None
        assert 3 not in fake_client.calls["upload_part"]
        assert fake_client.calls["complete"] == []

        assert await session.cancel() is False
        assert session.resume() is False
        with pytest.raises(InvalidStateError):
            await session.start()
        assert len(fake_client.calls["abort"]) == 1

    @pytest.mark.asyncio
    async def test_cancel_while_paused(self, fake_client):
        session = make_session(fake_client, part_concurrency=1)
        fake_client.gates[2] = asyncio.Event()

        task = asyncio.create_task(session.start())
        await fake_client.started(2).wait()
        session.pause()
        fake_client.gates[2].set()
        await wait_until(lambda: session.part(2).status is PartStatus.DONE)

        assert await session.cancel() is True
        with pytest.raises(CancelledError):
            await task
        assert fake_client.calls["abort"] == ["upload-1"]

    @pytest.mark.asyncio
    async def test_cancel_before_start(self, fake_client):
        session = make_session(fake_client)

        assert await session.cancel() is False

        assert session.state is UploadState.CANCELLED
        assert fake_client.calls["abort"] == []
        with pytest.raises(InvalidStateError):
            await session.start()


class TestCompletion:
    """Test the final assembly."""

    @pytest.mark.asyncio
    async def test_rejected_completion_fails_without_abort(self, fake_client):
        fake_client.complete_error = ServiceError("etag mismatch", 400, "InvalidPart")
        session = make_session(fake_client)

        with pytest.raises(CompletionError) as exc_info:
            await session.start()

        assert exc_info.value.upload_id == "upload-1"
        assert session.state is UploadState.FAILED
        assert fake_client.calls["abort"] == []


class TestResume:
    """Test resuming an existing uploadId."""

    @pytest.mark.asyncio
    async def test_resume_uploads_only_missing_parts(self, fake_client):
        fake_client.stored_parts = [
            ListedPart(partNumber=1, eTag='"stored-1"', size=4),
            ListedPart(partNumber=2, eTag="stored-2", size=4),
        ]
        session = make_session(fake_client, upload_id="existing")

        await session.start()

        assert fake_client.calls["initiate"] == []
        assert fake_client.calls["list_parts"] == ["existing"]
        assert fake_client.calls["upload_part"] == [3]
        request = fake_client.calls["complete"][0]
        assert [p.etag for p in request.parts] == ["stored-1", "stored-2", "etag-3"]

    @pytest.mark.asyncio
    async def test_resume_reuploads_parts_with_wrong_size(self, fake_client):
        fake_client.stored_parts = [
            ListedPart(partNumber=3, eTag="short", size=1),
            ListedPart(partNumber=7, eTag="stray", size=4),
        ]
        session = make_session(fake_client, upload_id="existing")

        await session.start()

        assert sorted(fake_client.calls["upload_part"]) == [1, 2, 3]


class TestValidation:
    """Arguments are rejected before any request."""

    def test_rejects_bad_arguments(self, fake_client):
        with pytest.raises(ValidationError):
            make_session(fake_client, chunk_size=0)
        with pytest.raises(ValidationError):
            make_session(fake_client, data=b"")
        with pytest.raises(ValidationError):
            UploadSession(fake_client, "", "key", DATA)
        with pytest.raises(ValidationError):
            make_session(fake_client, data=object())

        assert dict(fake_client.calls) == {}

    def test_rejects_unseekable_stream(self, fake_client):
        class Stream(io.RawIOBase):
            def readable(self):
                return True

        with pytest.raises(ValidationError):
            make_session(fake_client, data=Stream())

    def test_content_type_is_guessed_from_object_name(self, fake_client):
        session = UploadSession(fake_client, "bucket", "photo.png", DATA)

        assert session.content_type == "image/png"
        assert len(session.parts) == 1
