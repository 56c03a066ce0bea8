from __future__ import annotations

import time
from typing import Iterable

import aiosqlite

from panelshop.db import Database
from panelshop.models import Invoice, InvoiceStatus


class InvoiceRepository:
    def __init__(self, db: Database) -> None:
        self.db = db

    async def create(
        self,
        *,
        user_id: int,
        chat_id: int,
        product_id: int,
        panel_id: int,
        username: str,
        subscription_url: str,
        product_name: str,
        service_location: str,
        price: int,
        expires_at: int,
        conn: aiosqlite.Connection | None = None,
    ) -> Invoice:
        now = int(time.time())
        sql = """
            INSERT INTO invoices(
                user_id, chat_id, product_id, panel_id, username, subscription_url,
                product_name, service_location, price, created_at, expires_at, status
            ) VALUES(?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """
        params = (
            user_id,
            chat_id,
            product_id,
            panel_id,
            username,
            subscription_url,
            product_name,
            service_location,
            price,
            now,
            expires_at,
            InvoiceStatus.ACTIVE.value,
        )
        if conn is None:
            invoice_id = await self.db.insert(sql, params)
        else:
            cursor = await conn.execute(sql, params)
            invoice_id = int(cursor.lastrowid)

        return Invoice(
            id=invoice_id,
            user_id=user_id,
            chat_id=chat_id,
            product_id=product_id,
            panel_id=panel_id,
            username=username,
            subscription_url=subscription_url,
            product_name=product_name,
            service_location=service_location,
            price=price,
            created_at=now,
            expires_at=expires_at,
            status=InvoiceStatus.ACTIVE,
        )

    async def get_by_id(self, invoice_id: int) -> Invoice | None:
        row = await self.db.fetchone("SELECT * FROM invoices WHERE id = ?", (invoice_id,))
        return self._row_to_invoice(row)

    async def list_by_user(self, user_id: int, *, active_only: bool = False) -> list[Invoice]:
        if active_only:
            rows = await self.db.fetchall(
                "SELECT * FROM invoices WHERE user_id = ? AND status = ? ORDER BY created_at DESC",
                (user_id, InvoiceStatus.ACTIVE.value),
            )
        else:
            rows = await self.db.fetchall(
                "SELECT * FROM invoices WHERE user_id = ? ORDER BY created_at DESC",
                (user_id,),
            )
        return [self._row_to_invoice(r) for r in rows if r is not None]

    async def list_for_reconciliation(
        self,
        *,
        statuses: Iterable[InvoiceStatus],
        limit: int,
        after_id: int = 0,
        test_product_name: str,
        test_only: bool = False,
    ) -> list[Invoice]:
        """Invoices in ``statuses`` with ``id > after_id``, oldest id first.

        Test invoices (``product_name == test_product_name``) are excluded
        unless ``test_only`` is set, in which case only they are returned.
        """
        status_values = [s.value for s in statuses]
        if not status_values:
            return []
        placeholders = ", ".join("?" for _ in status_values)
        product_op = "=" if test_only else "!="
        rows = await self.db.fetchall(
            f"""
            SELECT * FROM invoices
            WHERE status IN ({placeholders})
              AND product_name {product_op} ?
              AND id > ?
            ORDER BY id ASC
            LIMIT ?
            """,
            (*status_values, test_product_name, after_id, limit),
        )
        return [self._row_to_invoice(r) for r in rows if r is not None]

    async def transition(
        self,
        invoice_id: int,
        *,
        from_statuses: Iterable[InvoiceStatus],
        to_status: InvoiceStatus,
    ) -> bool:
        """Move an invoice to ``to_status`` only if it is still in one of ``from_statuses``."""
        values = [s.value for s in from_statuses]
        if not values:
            return False
        placeholders = ", ".join("?" for _ in values)
        changed = await self.db.execute(
            f"UPDATE invoices SET status = ? WHERE id = ? AND status IN ({placeholders})",
            (to_status.value, invoice_id, *values),
        )
        return changed == 1

    @staticmethod
    def _row_to_invoice(row) -> Invoice | None:
        if row is None:
            return None
        return Invoice(
            id=int(row["id"]),
            user_id=int(row["user_id"]),
            chat_id=int(row["chat_id"]),
            product_id=int(row["product_id"]),
            panel_id=int(row["panel_id"]),
            username=str(row["username"]),
            subscription_url=str(row["subscription_url"]),
            product_name=str(row["product_name"]),
            service_location=str(row["service_location"]),
            price=int(row["price"]),
            created_at=int(row["created_at"]),
            expires_at=int(row["expires_at"]),
            status=InvoiceStatus(str(row["status"])),
        )
