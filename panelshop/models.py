from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


GIB = 1024 * 1024 * 1024
DAY_SECONDS = 24 * 60 * 60


class PanelKind(str, Enum):
    MARZBAN = "marzban"
    MARZNESHIN = "marzneshin"
    X_UI = "x_ui"
    ALIREZA = "alireza"
    WGDASHBOARD = "wgdashboard"
    MIKROTIK = "mikrotik"


class AccountStatus(str, Enum):
    ACTIVE = "active"
    DISABLED = "disabled"
    LIMITED = "limited"
    EXPIRED = "expired"
    ON_HOLD = "on_hold"
    UNSUCCESSFUL = "unsuccessful"


class InvoiceStatus(str, Enum):
    ACTIVE = "ACTIVE"
    END_OF_TIME = "END_OF_TIME"
    END_OF_VOLUME = "END_OF_VOLUME"
    SENDEDWARN = "SENDEDWARN"
    REMOVE_TIME = "REMOVE_TIME"
    DISABLED = "DISABLED"
    REMOVED = "REMOVED"


@dataclass(slots=True)
class PanelConfig:
    id: int
    name: str
    kind: PanelKind
    base_url: str
    username: str
    password_enc: str
    inbound: str | None
    on_hold_enabled: bool
    active: bool


@dataclass(slots=True)
class Product:
    id: int
    name: str
    price: int
    volume_gb: int
    duration_days: int
    panel_id: int
    active: bool


@dataclass(slots=True)
class User:
    id: int
    chat_id: int
    balance: int
    referred_by: int | None


@dataclass(slots=True)
class Invoice:
    id: int
    user_id: int
    chat_id: int
    product_id: int
    panel_id: int
    username: str
    subscription_url: str
    product_name: str
    service_location: str
    price: int
    created_at: int
    expires_at: int
    status: InvoiceStatus


@dataclass(slots=True)
class RemoteAccount:
    """Vendor-independent view of an account on a panel.

    ``data_limit`` is in bytes (0 means unlimited) and ``expire`` is a unix
    timestamp in seconds (0 means the account never expires). ``enforced`` is
    False for vendors that only keep these values as local bookkeeping.
    """

    username: str
    status: AccountStatus
    used_traffic: int
    data_limit: int
    expire: int
    subscription_url: str | None = None
    enforced: bool = True

    @property
    def remaining_bytes(self) -> int:
        return self.data_limit - self.used_traffic

    def seconds_to_expiry(self, now: int) -> int:
        return self.expire - now


@dataclass(slots=True)
class PurchaseResult:
    success: bool
    invoice: Invoice | None = None
    error: str | None = None
    error_code: str | None = None


@dataclass(slots=True)
class BatchReport:
    processed: int = 0
    acted: int = 0
    failed: int = 0
