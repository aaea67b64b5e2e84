import os
import sys
import tempfile
from pathlib import Path

import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.append(str(ROOT))

# app.db builds its engine at import time; keep it off PostgreSQL under test.
os.environ.setdefault(
    "DB_DSN", f"sqlite+aiosqlite:///{Path(tempfile.gettempdir()) / 'custody-tracking-tests.sqlite'}"
)

from app.db import Base  # noqa: E402
from app import models  # noqa: E402,F401


@pytest_asyncio.fixture()
async def session_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'custody.sqlite'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
    await engine.dispose()
