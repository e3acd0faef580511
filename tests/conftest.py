import pytest

from chat import CompletionError
from tests.fakes import FakeCompletionClient


@pytest.fixture
def fake_client():
    return FakeCompletionClient(replies=["Hello!"])


@pytest.fixture
def failing_client():
    return FakeCompletionClient(replies=[CompletionError("network down")])
