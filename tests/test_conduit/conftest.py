"""Fixtures shared by the Conduit and facade tests."""

import pytest

from conduit_fakes import CountingExecutor, FakePageProvider, make_config


@pytest.fixture
def page_provider():
    return FakePageProvider()


@pytest.fixture
def executor():
    return CountingExecutor()


@pytest.fixture
def config(tmp_path):
    return make_config(tmp_path)
