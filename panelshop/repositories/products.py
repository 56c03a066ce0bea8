from __future__ import annotations

import time

from panelshop.db import Database
from panelshop.models import Product


class ProductRepository:
    def __init__(self, db: Database) -> None:
        self.db = db

    async def create(
        self,
        *,
        name: str,
        price: int,
        volume_gb: int,
        duration_days: int,
        panel_id: int,
    ) -> int:
        now = int(time.time())
        return await self.db.insert(
            """
            INSERT INTO products(name, price, volume_gb, duration_days, panel_id, active, created_at)
            VALUES(?, ?, ?, ?, ?, 1, ?)
            """,
            (name, price, volume_gb, duration_days, panel_id, now),
        )

    async def get_by_id(self, product_id: int) -> Product | None:
        row = await self.db.fetchone("SELECT * FROM products WHERE id = ?", (product_id,))
        return self._row_to_product(row)

    async def set_active(self, product_id: int, active: bool) -> None:
        await self.db.execute("UPDATE products SET active = ? WHERE id = ?", (1 if active else 0, product_id))

    @staticmethod
    def _row_to_product(row) -> Product | None:
        if row is None:
            return None
        return Product(
            id=int(row["id"]),
            name=str(row["name"]),
            price=int(row["price"]),
            volume_gb=int(row["volume_gb"]),
            duration_days=int(row["duration_days"]),
            panel_id=int(row["panel_id"]),
            active=bool(row["active"]),
        )
