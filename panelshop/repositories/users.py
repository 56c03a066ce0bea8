from __future__ import annotations

import time

import aiosqlite

from panelshop.db import Database
from panelshop.models import User


class UserRepository:
    """Users and their wallet balance.

    Balance changes are single conditional SQL statements. The ``conn``
    argument lets callers run them inside an open ``Database.transaction()``.
    """

    def __init__(self, db: Database) -> None:
        self.db = db

    async def create(self, chat_id: int, *, balance: int = 0, referred_by: int | None = None) -> int:
        now = int(time.time())
        return await self.db.insert(
            "INSERT INTO users(chat_id, balance, referred_by, created_at) VALUES(?, ?, ?, ?)",
            (chat_id, balance, referred_by, now),
        )

    async def get_by_id(self, user_id: int) -> User | None:
        row = await self.db.fetchone("SELECT * FROM users WHERE id = ?", (user_id,))
        return self._row_to_user(row)

    async def get_by_chat_id(self, chat_id: int) -> User | None:
        row = await self.db.fetchone("SELECT * FROM users WHERE chat_id = ?", (chat_id,))
        return self._row_to_user(row)

    async def get_balance(self, user_id: int) -> int | None:
        row = await self.db.fetchone("SELECT balance FROM users WHERE id = ?", (user_id,))
        return int(row["balance"]) if row is not None else None

    async def deduct_balance(self, user_id: int, amount: int, *, conn: aiosqlite.Connection | None = None) -> bool:
        """Debit ``amount`` only if the balance still covers it. Returns False otherwise."""
        sql = "UPDATE users SET balance = balance - ? WHERE id = ? AND balance >= ?"
        params = (amount, user_id, amount)
        if conn is None:
            return await self.db.execute(sql, params) == 1
        cursor = await conn.execute(sql, params)
        return cursor.rowcount == 1

    async def credit_by_chat_id(self, chat_id: int, amount: int, *, conn: aiosqlite.Connection | None = None) -> bool:
        sql = "UPDATE users SET balance = balance + ? WHERE chat_id = ?"
        if conn is None:
            return await self.db.execute(sql, (amount, chat_id)) == 1
        cursor = await conn.execute(sql, (amount, chat_id))
        return cursor.rowcount == 1

    @staticmethod
    def _row_to_user(row) -> User | None:
        if row is None:
            return None
        referred_by = row["referred_by"]
        return User(
            id=int(row["id"]),
            chat_id=int(row["chat_id"]),
            balance=int(row["balance"]),
            referred_by=int(referred_by) if referred_by is not None else None,
        )
