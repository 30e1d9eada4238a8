"""
Shielded Stage Tests

A cancelled caller must not abort an in-flight stage.
"""

import asyncio

import pytest

from api.models import Analysis
from api.services.tasks import run_shielded, run_stage
from tests.conftest import make_analysis


async def test_stage_survives_caller_cancellation():
    finished = asyncio.Event()

    async def stage():
        await asyncio.sleep(0.05)
        finished.set()
        return "done"

    caller = asyncio.create_task(run_shielded(stage()))
    await asyncio.sleep(0.01)
    caller.cancel()

    with pytest.raises(asyncio.CancelledError):
        await caller

    await asyncio.wait_for(finished.wait(), timeout=1)
    assert finished.is_set()


async def test_run_stage_uses_its_own_session(database, db_session):
    analysis = make_analysis(db_session, warning=None)

    async def stage(db):
        row = db.get(Analysis, analysis.id)
        row.warning = "reviewed"
        db.commit()
        return row.id

    assert await run_stage(database, stage) == analysis.id
    db_session.expire_all()
    assert db_session.get(Analysis, analysis.id).warning == "reviewed"
