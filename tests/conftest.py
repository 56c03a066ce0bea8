from __future__ import annotations

import time
from dataclasses import dataclass

import pytest

from panelshop.config import JobSettings
from panelshop.db import Database
from panelshop.errors import PanelError
from panelshop.models import AccountStatus, InvoiceStatus, PanelKind, RemoteAccount
from panelshop.repositories.invoices import InvoiceRepository
from panelshop.repositories.panels import PanelRepository
from panelshop.repositories.products import ProductRepository
from panelshop.repositories.users import UserRepository


class FakeAdapter:
    vendor = "Fake"

    def __init__(self) -> None:
        self.accounts: dict[str, RemoteAccount] = {}
        self.created: list[str] = []
        self.removed: list[str] = []
        self.create_error: Exception | None = None
        self.remove_error: Exception | None = None
        self.broken: set[str] = set()

    async def create_user(self, username, volume_gb, duration_days, inbound=None):
        if self.create_error is not None:
            raise self.create_error
        account = RemoteAccount(
            username=username,
            status=AccountStatus.ACTIVE,
            used_traffic=0,
            data_limit=volume_gb * 1024**3,
            expire=int(time.time()) + duration_days * 86400 if duration_days > 0 else 0,
            subscription_url=f"https://panel.test/sub/{username}",
        )
        self.accounts[username] = account
        self.created.append(username)
        return account

    async def get_user(self, username):
        if username in self.broken:
            raise PanelError("connection reset", self.vendor)
        return self.accounts.get(username)

    async def remove_user(self, username):
        self.removed.append(username)
        if self.remove_error is not None:
            raise self.remove_error
        self.accounts.pop(username, None)

    async def close(self):
        pass


class FakeAdapterFactory:
    def __init__(self, adapter: FakeAdapter) -> None:
        self.adapter = adapter
        self.requested: list[int] = []

    def get(self, panel):
        self.requested.append(panel.id)
        return self.adapter

    async def release(self, adapter):
        pass


class FakeNotifier:
    def __init__(self) -> None:
        self.sent: list[tuple[int, str]] = []
        self.reports: list[str] = []
        self.fail = False

    async def send(self, chat_id, text, reply_markup=None):
        if self.fail:
            return False
        self.sent.append((chat_id, text))
        return True

    async def report(self, text):
        self.reports.append(text)
        return True


@dataclass
class Repos:
    db: Database
    users: UserRepository
    products: ProductRepository
    panels: PanelRepository
    invoices: InvoiceRepository


@pytest.fixture
async def db(tmp_path):
    database = Database(str(tmp_path / "panelshop.db"))
    await database.init()
    return database


@pytest.fixture
def repos(db):
    return Repos(
        db=db,
        users=UserRepository(db),
        products=ProductRepository(db),
        panels=PanelRepository(db),
        invoices=InvoiceRepository(db),
    )


@pytest.fixture
def adapter():
    return FakeAdapter()


@pytest.fixture
def adapters(adapter):
    return FakeAdapterFactory(adapter)


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
async def panel_id(repos):
    return await repos.panels.add(
        name="de-1",
        kind=PanelKind.MARZBAN,
        base_url="https://panel.test",
        username="admin",
        password_enc="unused",
    )


def job_settings(batch_size: int = 10, concurrency: int = 3) -> JobSettings:
    return JobSettings(cron="* * * * *", batch_size=batch_size, concurrency=concurrency, max_runs_per_minute=0)


async def make_invoice(
    repos: Repos,
    panel_id: int,
    *,
    username: str,
    chat_id: int = 1001,
    product_name: str = "30 days / 50 GB",
    status: InvoiceStatus = InvoiceStatus.ACTIVE,
):
    user = await repos.users.get_by_chat_id(chat_id)
    user_id = user.id if user is not None else await repos.users.create(chat_id)
    product_id = await repos.products.create(
        name=product_name, price=80000, volume_gb=50, duration_days=30, panel_id=panel_id
    )
    invoice = await repos.invoices.create(
        user_id=user_id,
        chat_id=chat_id,
        product_id=product_id,
        panel_id=panel_id,
        username=username,
        subscription_url=f"https://panel.test/sub/{username}",
        product_name=product_name,
        service_location="de-1",
        price=80000,
        expires_at=0,
    )
    if status != InvoiceStatus.ACTIVE:
        await repos.invoices.transition(invoice.id, from_statuses=(InvoiceStatus.ACTIVE,), to_status=status)
    return invoice
