from __future__ import annotations

import asyncio
import logging
import signal
from dataclasses import dataclass

from aiogram import Bot

from panelshop.config import AppConfig, load_config
from panelshop.db import Database
from panelshop.jobs.base import ReconciliationWorker
from panelshop.jobs.expired_cleanup import ExpiredServiceCleanupWorker
from panelshop.jobs.expiry_warning import ExpiryWarningWorker
from panelshop.jobs.scheduler import JobScheduler
from panelshop.jobs.test_cleanup import TestAccountCleanupWorker
from panelshop.jobs.volume_warning import VolumeWarningWorker
from panelshop.models import GIB
from panelshop.panels.factory import AdapterFactory
from panelshop.repositories.invoices import InvoiceRepository
from panelshop.repositories.panels import PanelRepository
from panelshop.repositories.products import ProductRepository
from panelshop.repositories.users import UserRepository
from panelshop.services.crypto import CryptoService
from panelshop.services.notifier import Notifier
from panelshop.services.purchase import PurchaseService


logger = logging.getLogger(__name__)


def configure_logging() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )
    logging.getLogger("apscheduler").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


@dataclass(slots=True)
class Services:
    db: Database
    users_repo: UserRepository
    products_repo: ProductRepository
    panels_repo: PanelRepository
    invoices_repo: InvoiceRepository
    adapters: AdapterFactory
    notifier: Notifier
    purchase: PurchaseService
    scheduler: JobScheduler
    workers: dict[str, ReconciliationWorker]


def build_workers(
    config: AppConfig,
    *,
    invoices_repo: InvoiceRepository,
    panels_repo: PanelRepository,
    adapters: AdapterFactory,
    notifier: Notifier,
) -> dict[str, ReconciliationWorker]:
    def common(settings):
        return {
            "invoices_repo": invoices_repo,
            "panels_repo": panels_repo,
            "adapters": adapters,
            "notifier": notifier,
            "settings": settings,
            "test_product_name": config.test_product_name,
            "record_timeout": config.record_timeout,
        }

    workers: list[ReconciliationWorker] = [
        ExpiryWarningWorker(warning_days=config.expiry_warning_days, **common(config.expiry_warning_job)),
        VolumeWarningWorker(
            threshold_bytes=int(config.volume_threshold_gb * GIB),
            **common(config.volume_warning_job),
        ),
        ExpiredServiceCleanupWorker(
            grace_days=config.remove_days_after_expiry,
            **common(config.expired_cleanup_job),
        ),
        TestAccountCleanupWorker(**common(config.test_cleanup_job)),
    ]
    return {worker.name: worker for worker in workers}


async def build_services(config: AppConfig, bot: Bot) -> Services:
    db = Database(config.database_path)
    await db.init()

    users_repo = UserRepository(db)
    products_repo = ProductRepository(db)
    panels_repo = PanelRepository(db)
    invoices_repo = InvoiceRepository(db)

    crypto = CryptoService(config.app_secret)
    # Long-lived process: keep one adapter (and its login session) per panel.
    adapters = AdapterFactory(
        crypto,
        timeout_seconds=config.request_timeout,
        verify_tls=config.panel_verify_tls,
        cache=True,
    )
    notifier = Notifier(bot, report_channel_id=config.report_channel_id)
    purchase = PurchaseService(
        db=db,
        users_repo=users_repo,
        products_repo=products_repo,
        panels_repo=panels_repo,
        invoices_repo=invoices_repo,
        adapters=adapters,
        referral_reward=config.referral_reward,
    )

    workers = build_workers(
        config,
        invoices_repo=invoices_repo,
        panels_repo=panels_repo,
        adapters=adapters,
        notifier=notifier,
    )
    scheduler = JobScheduler(timezone=config.timezone)
    for worker in workers.values():
        scheduler.register(
            worker.name,
            worker.settings.cron,
            worker.run,
            max_instances=1,
            max_runs_per_minute=worker.settings.max_runs_per_minute,
        )

    return Services(
        db=db,
        users_repo=users_repo,
        products_repo=products_repo,
        panels_repo=panels_repo,
        invoices_repo=invoices_repo,
        adapters=adapters,
        notifier=notifier,
        purchase=purchase,
        scheduler=scheduler,
        workers=workers,
    )


async def run() -> None:
    config = load_config()
    bot = Bot(token=config.bot_token)
    services = await build_services(config, bot)

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    services.scheduler.start()
    logger.info("Scheduler started with jobs: %s", ", ".join(services.scheduler.job_names))
    try:
        await stop.wait()
    finally:
        logger.info("Shutting down")
        services.scheduler.shutdown()
        await services.adapters.aclose()
        await bot.session.close()


def main() -> None:
    configure_logging()
    asyncio.run(run())


if __name__ == "__main__":
    main()
