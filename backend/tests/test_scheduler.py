"""Tests for the background scheduler jobs."""

from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from app.tasks import scheduler as scheduler_module
from app.tasks.scheduler import (
    daily_digest_job,
    setup_scheduler,
    shutdown_scheduler,
    sla_sweep_job,
)


class TestScheduler:
    """Tests for job registration and failure containment."""

    @pytest.mark.asyncio
    async def test_setup_registers_jobs(self, services):
        """Test that both jobs are registered with stable ids."""
        scheduler = setup_scheduler(services)
        try:
            assert scheduler.running
            assert scheduler.get_job("sla_sweep") is not None
            assert scheduler.get_job("daily_digest") is not None
        finally:
            shutdown_scheduler()

        assert scheduler_module.scheduler is None

    @pytest.mark.asyncio
    async def test_sweep_job_runs_sweep(self):
        """Test that the job delegates to the issue service."""
        issues = SimpleNamespace(sweep_sla_breaches=AsyncMock(return_value=2))

        await sla_sweep_job(SimpleNamespace(issues=issues))

        issues.sweep_sla_breaches.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_job_failures_are_logged(self, caplog):
        """Test that job exceptions never escape."""
        issues = SimpleNamespace(
            sweep_sla_breaches=AsyncMock(side_effect=RuntimeError("db down")),
            send_daily_digest=AsyncMock(side_effect=RuntimeError("db down")),
        )
        services = SimpleNamespace(issues=issues)

        await sla_sweep_job(services)
        await daily_digest_job(services)

        assert "SLA sweep failed: db down" in caplog.text
        assert "Daily digest failed: db down" in caplog.text

    def test_shutdown_without_scheduler(self):
        """Test that shutdown is a no-op when nothing was started."""
        shutdown_scheduler()

        assert scheduler_module.scheduler is None
