import pytest

from .helpers import FakeTokenEstimator, Router


@pytest.fixture
def router():
    return Router()


@pytest.fixture
def tokens():
    return FakeTokenEstimator()
