import pytest

from panelshop.jobs.scheduler import JobScheduler, _MinuteLimiter


def test_limiter_window():
    limiter = _MinuteLimiter(2)

    assert limiter.acquire(now=0.0)
    assert limiter.acquire(now=10.0)
    assert not limiter.acquire(now=30.0)
    assert limiter.acquire(now=60.0)


def test_unlimited_limiter():
    limiter = _MinuteLimiter(0)

    assert all(limiter.acquire(now=float(i)) for i in range(100))


@pytest.mark.asyncio
async def test_retries_until_success():
    calls = 0

    async def flaky():
        nonlocal calls
        calls += 1
        if calls < 3:
            raise RuntimeError("panel timeout")
        return "done"

    scheduler = JobScheduler(attempts=3, backoff_seconds=0)
    scheduler.register("flaky", "*/5 * * * *", flaky)

    assert await scheduler.execute("flaky") == "done"
    assert calls == 3


@pytest.mark.asyncio
async def test_gives_up_after_last_attempt():
    calls = 0

    async def broken():
        nonlocal calls
        calls += 1
        raise RuntimeError("still down")

    scheduler = JobScheduler(attempts=2, backoff_seconds=0)
    scheduler.register("broken", "0 * * * *", broken)

    with pytest.raises(RuntimeError, match="still down"):
        await scheduler.execute("broken")
    assert calls == 2


@pytest.mark.asyncio
async def test_per_minute_cap_skips_extra_runs():
    calls = 0

    async def job():
        nonlocal calls
        calls += 1

    scheduler = JobScheduler(backoff_seconds=0)
    scheduler.register("capped", "* * * * *", job, max_runs_per_minute=1)

    await scheduler.execute("capped")
    await scheduler.execute("capped")

    assert calls == 1


def test_enqueue_unknown_job():
    scheduler = JobScheduler()

    with pytest.raises(KeyError):
        scheduler.enqueue("missing")


def test_register_lists_jobs():
    async def job():
        return None

    scheduler = JobScheduler(timezone="Asia/Tehran")
    scheduler.register("expiry_warning", "0 * * * *", job)
    scheduler.register("volume_warning", "*/30 * * * *", job)

    assert scheduler.job_names == ["expiry_warning", "volume_warning"]
