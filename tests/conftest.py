import pytest

from tests.fake_client import FakeMultipartClient


@pytest.fixture
def fake_client():
    return FakeMultipartClient()
