import pytest

from stream_config import AppConfig
from stream_fixtures import FakeCdn


@pytest.fixture
def cdn():
    return FakeCdn()


@pytest.fixture
def config(tmp_path):
    return AppConfig(
        downloads_directory=str(tmp_path / "music"),
        temp_directory=str(tmp_path / "tmp"),
        remux=False,
    )
