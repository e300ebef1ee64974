import pytest

from tests.helpers import make_store


@pytest.fixture
def store():
    return make_store()
