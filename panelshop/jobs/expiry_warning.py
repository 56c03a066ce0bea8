from __future__ import annotations

import logging
import time
from typing import Any, Iterable

from panelshop.bot import messages
from panelshop.bot.keyboards import extend_service_keyboard
from panelshop.jobs.base import ReconciliationWorker
from panelshop.models import DAY_SECONDS, AccountStatus, Invoice, InvoiceStatus, PanelConfig, RemoteAccount
from panelshop.panels.base import PanelAdapter


logger = logging.getLogger(__name__)


def days_until(expire: int, now: int) -> int:
    """Whole days left, counting a partial day as one."""
    return (expire - now) // DAY_SECONDS + 1


class ExpiryWarningWorker(ReconciliationWorker):
    name = "expiry_warning"
    statuses = (InvoiceStatus.ACTIVE, InvoiceStatus.END_OF_VOLUME)

    def __init__(self, *, warning_days: Iterable[int], **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.warning_days = frozenset(warning_days)

    async def evaluate(
        self,
        invoice: Invoice,
        account: RemoteAccount,
        adapter: PanelAdapter,
        panel: PanelConfig,
    ) -> bool:
        if account.status == AccountStatus.DISABLED:
            changed = await self.invoices_repo.transition(
                invoice.id,
                from_statuses=(InvoiceStatus.ACTIVE,),
                to_status=InvoiceStatus.DISABLED,
            )
            if changed:
                logger.info("Invoice %s (%s) disabled on panel %s", invoice.id, invoice.username, panel.name)
            return changed

        if account.status not in (AccountStatus.ACTIVE, AccountStatus.ON_HOLD) or account.expire <= 0:
            return False

        now = int(time.time())
        if account.seconds_to_expiry(now) <= 0:
            return False
        days_left = days_until(account.expire, now)
        if days_left not in self.warning_days:
            return False

        sent = await self.notifier.send(
            invoice.chat_id,
            messages.expiry_warning(invoice.username, invoice.product_name, days_left, account.remaining_bytes),
            reply_markup=extend_service_keyboard(invoice.username),
        )
        if not sent:
            return False

        target = InvoiceStatus.SENDEDWARN if invoice.status == InvoiceStatus.END_OF_VOLUME else InvoiceStatus.END_OF_TIME
        changed = await self.invoices_repo.transition(invoice.id, from_statuses=(invoice.status,), to_status=target)
        logger.info("Expiry warning sent for %s (%s days left)", invoice.username, days_left)
        return changed
