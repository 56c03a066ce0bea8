from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod

from panelshop.config import JobSettings
from panelshop.errors import PanelError
from panelshop.models import AccountStatus, BatchReport, Invoice, InvoiceStatus, PanelConfig, RemoteAccount
from panelshop.panels.base import PanelAdapter
from panelshop.panels.factory import AdapterFactory
from panelshop.repositories.invoices import InvoiceRepository
from panelshop.repositories.panels import PanelRepository
from panelshop.services.notifier import Notifier


logger = logging.getLogger(__name__)


class ReconciliationWorker(ABC):
    """Polls a batch of invoices against their panels and applies a transition policy.

    Each run picks up where the previous one stopped (by invoice id) and wraps
    around at the end of the table. Records are isolated from each other: a
    timeout or error on one is logged and counted, never raised.
    """

    name = "reconciliation"
    statuses: tuple[InvoiceStatus, ...] = ()
    test_only = False

    def __init__(
        self,
        *,
        invoices_repo: InvoiceRepository,
        panels_repo: PanelRepository,
        adapters: AdapterFactory,
        notifier: Notifier,
        settings: JobSettings,
        test_product_name: str,
        record_timeout: float = 45,
    ) -> None:
        self.invoices_repo = invoices_repo
        self.panels_repo = panels_repo
        self.adapters = adapters
        self.notifier = notifier
        self.settings = settings
        self.test_product_name = test_product_name
        self.record_timeout = record_timeout
        self._cursor = 0

    async def run(self) -> BatchReport:
        report = BatchReport()
        invoices = await self._next_batch()
        if not invoices:
            return report

        semaphore = asyncio.Semaphore(max(1, self.settings.concurrency))
        panels: dict[int, PanelConfig | None] = {}

        async def handle(invoice: Invoice) -> bool | None:
            async with semaphore:
                try:
                    return await asyncio.wait_for(self._process(invoice, panels), timeout=self.record_timeout)
                except asyncio.TimeoutError:
                    logger.warning("%s: invoice %s (%s) timed out", self.name, invoice.id, invoice.username)
                except PanelError as exc:
                    logger.warning("%s: invoice %s (%s) failed: %s", self.name, invoice.id, invoice.username, exc)
                except Exception:
                    logger.exception("%s: invoice %s (%s) failed", self.name, invoice.id, invoice.username)
                return None

        for outcome in await asyncio.gather(*(handle(invoice) for invoice in invoices)):
            report.processed += 1
            if outcome is None:
                report.failed += 1
            elif outcome:
                report.acted += 1

        logger.info(
            "%s: processed=%s acted=%s failed=%s",
            self.name,
            report.processed,
            report.acted,
            report.failed,
        )
        return report

    async def _next_batch(self) -> list[Invoice]:
        batch = await self._select(self._cursor)
        if not batch and self._cursor:
            self._cursor = 0
            batch = await self._select(0)
        # A short batch means the end of the table; start over next run.
        self._cursor = batch[-1].id if len(batch) >= self.settings.batch_size else 0
        return batch

    async def _select(self, after_id: int) -> list[Invoice]:
        return await self.invoices_repo.list_for_reconciliation(
            statuses=self.statuses,
            limit=self.settings.batch_size,
            after_id=after_id,
            test_product_name=self.test_product_name,
            test_only=self.test_only,
        )

    async def _panel(self, panel_id: int, panels: dict[int, PanelConfig | None]) -> PanelConfig | None:
        if panel_id not in panels:
            panels[panel_id] = await self.panels_repo.get_by_id(panel_id)
        return panels[panel_id]

    async def _process(self, invoice: Invoice, panels: dict[int, PanelConfig | None]) -> bool:
        panel = await self._panel(invoice.panel_id, panels)
        if panel is None:
            logger.warning("%s: panel %s of invoice %s no longer exists", self.name, invoice.panel_id, invoice.id)
            return False

        adapter = self.adapters.get(panel)
        try:
            account = await adapter.get_user(invoice.username)
            if account is None or account.status == AccountStatus.UNSUCCESSFUL:
                return False
            if not account.enforced:
                return False
            return await self.evaluate(invoice, account, adapter, panel)
        finally:
            await self.adapters.release(adapter)

    @abstractmethod
    async def evaluate(
        self,
        invoice: Invoice,
        account: RemoteAccount,
        adapter: PanelAdapter,
        panel: PanelConfig,
    ) -> bool:
        """Apply the policy to one record; return True when it acted."""
