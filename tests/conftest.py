import pytest

from swapsnipr.diagnostics import Diagnostics

from fakes import FakeBrowser


@pytest.fixture
def browser():
    return FakeBrowser()


@pytest.fixture
def diagnostics(tmp_path):
    return Diagnostics(tmp_path / "logs")
