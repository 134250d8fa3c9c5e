import asyncio

import pytest
from databases import Database
from sqlalchemy import create_engine

from feedpipe.models import metadata


@pytest.fixture
def db_url(tmp_path):
    url = f"sqlite:///{tmp_path / 'feedpipe.db'}"
    engine = create_engine(url)
    metadata.create_all(engine)
    engine.dispose()
    return url


@pytest.fixture
def run_db(db_url):
    """Run ``scenario(db)`` on a fresh event loop against a connected database."""

    def _run(scenario):
        async def _main():
            db = Database(db_url)
            await db.connect()
            try:
                return await scenario(db)
            finally:
                await db.disconnect()

        return asyncio.run(_main())

    return _run
