"""Tests for the high-level API."""

from unittest.mock import patch

import pytest

from bos_storage import BosStorageAPI, UploadSession, UploadState
from bos_storage.core.client import AsyncBosClient
from bos_storage.core.exceptions import ValidationError
from bos_storage.core.models import BosConfig
from tests.fake_client import FakeMultipartClient


@pytest.fixture
def api():
    return BosStorageAPI(config=BosConfig(access_key_id="ak", secret_access_key="sk"))


def test_put_super_object_returns_created_session(api):
    session = api.put_super_object("bucket", "key", b"x" * 10, chunk_size=4, min_part_size=1)

    assert isinstance(session, UploadSession)
    assert isinstance(session.client, AsyncBosClient)
    assert session.state is UploadState.CREATED
    assert [p.size for p in session.parts] == [4, 4, 2]


def test_put_super_object_validates_eagerly(api):
    with pytest.raises(ValidationError):
        api.put_super_object("bucket", "key", b"x" * 10, part_concurrency=0)


def test_upload_file(api, tmp_path):
    path = tmp_path / "report.csv"
    path.write_bytes(b"a,b\n" * 3)
    fake = FakeMultipartClient()

    with patch.object(api, "client", fake):
        result = api.upload_file(path, "bucket")

    assert result.etag == "final-etag"
    assert fake.calls["initiate"][0] == ("bucket", "report.csv", "text/csv", "STANDARD")


def test_upload_file_requires_a_file(api, tmp_path):
    with pytest.raises(ValidationError):
        api.upload_file(tmp_path / "missing.bin", "bucket")
