import pytest

from fakes import FakeNotifier, make_config


@pytest.fixture
def product_config():
    return make_config()


@pytest.fixture
def notifier():
    return FakeNotifier()
