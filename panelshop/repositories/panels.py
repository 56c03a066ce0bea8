from __future__ import annotations

import time

from panelshop.db import Database
from panelshop.errors import ValidationError
from panelshop.models import PanelConfig, PanelKind


class PanelRepository:
    def __init__(self, db: Database) -> None:
        self.db = db

    async def add(
        self,
        *,
        name: str,
        kind: PanelKind,
        base_url: str,
        username: str,
        password_enc: str,
        inbound: str | None = None,
        on_hold_enabled: bool = False,
    ) -> int:
        now = int(time.time())
        await self.db.execute(
            """
            INSERT INTO panels(name, kind, base_url, username, password_enc, inbound, on_hold_enabled, active, created_at)
            VALUES(?, ?, ?, ?, ?, ?, ?, 1, ?)
            ON CONFLICT(name)
            DO UPDATE SET
              kind = excluded.kind,
              base_url = excluded.base_url,
              username = excluded.username,
              password_enc = excluded.password_enc,
              inbound = excluded.inbound,
              on_hold_enabled = excluded.on_hold_enabled,
              active = 1
            """,
            (name, kind.value, base_url, username, password_enc, inbound, 1 if on_hold_enabled else 0, now),
        )
        row = await self.db.fetchone("SELECT id FROM panels WHERE name = ?", (name,))
        return int(row["id"])

    async def get_by_id(self, panel_id: int) -> PanelConfig | None:
        row = await self.db.fetchone("SELECT * FROM panels WHERE id = ?", (panel_id,))
        return self._row_to_panel(row)

    async def set_active(self, panel_id: int, active: bool) -> None:
        await self.db.execute("UPDATE panels SET active = ? WHERE id = ?", (1 if active else 0, panel_id))

    @staticmethod
    def _row_to_panel(row) -> PanelConfig | None:
        if row is None:
            return None
        try:
            kind = PanelKind(str(row["kind"]))
        except ValueError as exc:
            raise ValidationError(f"Unknown panel kind: {row['kind']}") from exc
        inbound = row["inbound"]
        return PanelConfig(
            id=int(row["id"]),
            name=str(row["name"]),
            kind=kind,
            base_url=str(row["base_url"]),
            username=str(row["username"]),
            password_enc=str(row["password_enc"]),
            inbound=str(inbound) if inbound is not None else None,
            on_hold_enabled=bool(row["on_hold_enabled"]),
            active=bool(row["active"]),
        )
