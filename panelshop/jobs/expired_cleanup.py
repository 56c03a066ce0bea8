from __future__ import annotations

import logging
import time
from typing import Any

from panelshop.bot import messages
from panelshop.jobs.base import ReconciliationWorker
from panelshop.models import DAY_SECONDS, AccountStatus, Invoice, InvoiceStatus, PanelConfig, RemoteAccount
from panelshop.panels.base import PanelAdapter


logger = logging.getLogger(__name__)


class ExpiredServiceCleanupWorker(ReconciliationWorker):
    """Removes accounts that stayed limited or expired past the grace period."""

    name = "expired_cleanup"
    statuses = (
        InvoiceStatus.ACTIVE,
        InvoiceStatus.END_OF_TIME,
        InvoiceStatus.END_OF_VOLUME,
        InvoiceStatus.SENDEDWARN,
    )

    def __init__(self, *, grace_days: int, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.grace_days = grace_days

    async def evaluate(
        self,
        invoice: Invoice,
        account: RemoteAccount,
        adapter: PanelAdapter,
        panel: PanelConfig,
    ) -> bool:
        if account.status not in (AccountStatus.LIMITED, AccountStatus.EXPIRED):
            return False
        # No expiry date: a used-up quota is final, there is no grace to wait out.
        if account.expire > 0 and int(time.time()) - account.expire <= self.grace_days * DAY_SECONDS:
            return False

        await adapter.remove_user(invoice.username)
        changed = await self.invoices_repo.transition(
            invoice.id,
            from_statuses=self.statuses,
            to_status=InvoiceStatus.REMOVE_TIME,
        )
        if not changed:
            logger.info("Invoice %s was already moved on by another run", invoice.id)
            return False

        logger.info("Removed expired service %s (chat_id=%s) from %s", invoice.username, invoice.chat_id, panel.name)
        await self.notifier.send(invoice.chat_id, messages.service_removed(invoice.username, account.status))
        await self.notifier.report(
            messages.service_removed_report(invoice.username, account.status, invoice.chat_id, panel.name)
        )
        return True
