from __future__ import annotations

import logging
from typing import Any

from panelshop.bot import messages
from panelshop.bot.keyboards import extend_service_keyboard
from panelshop.jobs.base import ReconciliationWorker
from panelshop.models import AccountStatus, Invoice, InvoiceStatus, PanelConfig, RemoteAccount
from panelshop.panels.base import PanelAdapter


logger = logging.getLogger(__name__)


class VolumeWarningWorker(ReconciliationWorker):
    name = "volume_warning"
    statuses = (InvoiceStatus.ACTIVE, InvoiceStatus.END_OF_TIME)

    def __init__(self, *, threshold_bytes: int, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.threshold_bytes = threshold_bytes

    async def evaluate(
        self,
        invoice: Invoice,
        account: RemoteAccount,
        adapter: PanelAdapter,
        panel: PanelConfig,
    ) -> bool:
        # Unlimited accounts (data_limit 0) never run low.
        if account.status != AccountStatus.ACTIVE or account.data_limit <= 0:
            return False

        remaining = account.remaining_bytes
        if not 0 < remaining <= self.threshold_bytes:
            return False

        sent = await self.notifier.send(
            invoice.chat_id,
            messages.volume_warning(invoice.username, invoice.product_name, remaining),
            reply_markup=extend_service_keyboard(invoice.username, volume=True),
        )
        if not sent:
            return False

        target = InvoiceStatus.SENDEDWARN if invoice.status == InvoiceStatus.END_OF_TIME else InvoiceStatus.END_OF_VOLUME
        changed = await self.invoices_repo.transition(invoice.id, from_statuses=(invoice.status,), to_status=target)
        logger.info("Volume warning sent for %s (%s bytes left)", invoice.username, remaining)
        return changed
