import pytest

from poolteam import db


@pytest.fixture
def database_url(tmp_path):
    url = f"sqlite:///{tmp_path / 'league.db'}"
    db.ensure_schema(url)
    return url
