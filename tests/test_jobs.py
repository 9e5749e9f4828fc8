import asyncio
import logging

import pytest

from stackupdater.jobs import JobRegistry


class TestJobRegistry:
    @pytest.mark.asyncio
    async def test_only_one_update_at_a_time(self):
        registry = JobRegistry()
        release = asyncio.Event()

        async def body():
            await release.wait()
            return "STATUS=SUCCESS", 0

        first = await registry.start("update", body)
        second = await registry.start("update", body)
        backup = await registry.start("backup", body)

        assert first is not None
        assert second is None
        assert backup is not None
        assert registry.is_active("update") is True

        release.set()
        await registry.wait(first.id)
        await registry.wait(backup.id)

        assert registry.is_active("update") is False
        assert registry.get(first.id).state == "completed"
        assert registry.get(first.id).report == "STATUS=SUCCESS"

    @pytest.mark.asyncio
    async def test_failed_and_crashed_jobs(self):
        registry = JobRegistry()

        async def failing():
            logging.getLogger("stackupdater.orchestrator").info("Step 2/4: Pulling latest images")
            return "STATUS=FAILURE", 1

        async def crashing():
            raise RuntimeError("kaboom")

        failed = await registry.start("update", failing)
        await registry.wait(failed.id)
        crashed = await registry.start("update", crashing)
        await registry.wait(crashed.id)

        status = registry.get(failed.id).status()
        assert status.state == "failed"
        assert status.exit_code == 1
        assert any("Pulling latest images" in line for line in status.log_tail)
        assert registry.get(crashed.id).state == "failed"
        assert registry.get(crashed.id).report == "Error: kaboom"
