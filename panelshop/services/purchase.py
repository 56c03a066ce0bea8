from __future__ import annotations

import hashlib
import logging
import secrets

from panelshop.db import Database
from panelshop.errors import (
    AppError,
    GENERIC_MESSAGE,
    InsufficientBalanceError,
    NotFoundError,
    ValidationError,
    user_message,
)
from panelshop.models import Invoice, PanelConfig, Product, PurchaseResult, RemoteAccount, User
from panelshop.panels.base import PanelAdapter
from panelshop.panels.factory import AdapterFactory
from panelshop.repositories.invoices import InvoiceRepository
from panelshop.repositories.panels import PanelRepository
from panelshop.repositories.products import ProductRepository
from panelshop.repositories.users import UserRepository


logger = logging.getLogger(__name__)


def generate_username(chat_id: int) -> str:
    """``user_<8 hex>_<last 4 digits of chat id>``, unique per call."""
    digest = hashlib.md5(f"{chat_id}:{secrets.token_hex(8)}".encode("utf-8")).hexdigest()
    return f"user_{digest[:8]}_{str(abs(chat_id))[-4:]}"


class PurchaseService:
    """Sells a product: provision remotely first, then commit the money side.

    The balance is only checked before provisioning; the authoritative guard
    is the conditional debit inside the commit transaction. If the commit
    fails the freshly created remote account is removed again.
    """

    def __init__(
        self,
        *,
        db: Database,
        users_repo: UserRepository,
        products_repo: ProductRepository,
        panels_repo: PanelRepository,
        invoices_repo: InvoiceRepository,
        adapters: AdapterFactory,
        referral_reward: int = 5000,
    ) -> None:
        self.db = db
        self.users_repo = users_repo
        self.products_repo = products_repo
        self.panels_repo = panels_repo
        self.invoices_repo = invoices_repo
        self.adapters = adapters
        self.referral_reward = referral_reward

    async def purchase(self, user_id: int, product_id: int, final_price: int | None = None) -> PurchaseResult:
        try:
            invoice = await self._purchase(user_id, product_id, final_price)
        except AppError as exc:
            logger.info("Purchase rejected user_id=%s product_id=%s: %s", user_id, product_id, exc.message)
            return PurchaseResult(success=False, error=user_message(exc), error_code=exc.code)
        except Exception:
            logger.exception("Purchase failed user_id=%s product_id=%s", user_id, product_id)
            return PurchaseResult(success=False, error=GENERIC_MESSAGE, error_code=AppError.code)

        logger.info(
            "Purchase completed user_id=%s product_id=%s invoice_id=%s username=%s",
            user_id,
            product_id,
            invoice.id,
            invoice.username,
        )
        return PurchaseResult(success=True, invoice=invoice)

    async def _purchase(self, user_id: int, product_id: int, final_price: int | None) -> Invoice:
        user = await self.users_repo.get_by_id(user_id)
        if user is None:
            raise NotFoundError("User")

        product = await self.products_repo.get_by_id(product_id)
        if product is None or not product.active:
            raise NotFoundError("Product")

        panel = await self.panels_repo.get_by_id(product.panel_id)
        if panel is None or not panel.active:
            raise ValidationError("Product has no active panel")

        price = product.price if final_price is None else final_price
        if price < 0:
            raise ValidationError("Price cannot be negative")
        if user.balance < price:
            raise InsufficientBalanceError()

        username = generate_username(user.chat_id)
        adapter = self.adapters.get(panel)
        try:
            # Nothing has been charged yet, so a failure here needs no rollback.
            account = await adapter.create_user(username, product.volume_gb, product.duration_days, panel.inbound)
            try:
                return await self._commit(user, product, panel, account, username, price)
            except Exception:
                await self._compensate(adapter, panel, username, user_id)
                raise
        finally:
            await self.adapters.release(adapter)

    async def _commit(
        self,
        user: User,
        product: Product,
        panel: PanelConfig,
        account: RemoteAccount,
        username: str,
        price: int,
    ) -> Invoice:
        async with self.db.transaction() as conn:
            if price > 0 and not await self.users_repo.deduct_balance(user.id, price, conn=conn):
                # Another purchase spent the balance after our pre-check.
                raise InsufficientBalanceError()

            if user.referred_by is not None and price > 0 and self.referral_reward > 0:
                credited = await self.users_repo.credit_by_chat_id(user.referred_by, self.referral_reward, conn=conn)
                if not credited:
                    logger.warning("Referrer chat_id=%s not found, reward skipped", user.referred_by)

            return await self.invoices_repo.create(
                user_id=user.id,
                chat_id=user.chat_id,
                product_id=product.id,
                panel_id=panel.id,
                username=username,
                subscription_url=account.subscription_url or "",
                product_name=product.name,
                service_location=panel.name,
                price=price,
                expires_at=account.expire,
                conn=conn,
            )

    async def _compensate(self, adapter: PanelAdapter, panel: PanelConfig, username: str, user_id: int) -> None:
        try:
            await adapter.remove_user(username)
        except Exception:
            logger.error(
                "Compensation failed: remote account %s on panel %s (user_id=%s) "
                "is orphaned and needs manual reconciliation",
                username,
                panel.name,
                user_id,
                exc_info=True,
            )
            return
        logger.warning("Commit failed, removed remote account %s on panel %s", username, panel.name)
