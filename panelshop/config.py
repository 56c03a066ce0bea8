from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv


@dataclass(frozen=True)
class JobSettings:
    cron: str
    batch_size: int
    concurrency: int
    max_runs_per_minute: int


@dataclass(frozen=True)
class AppConfig:
    bot_token: str
    admin_chat_id: int
    app_secret: str
    database_path: str
    panel_verify_tls: bool
    request_timeout: int
    record_timeout: int
    timezone: str
    expiry_warning_days: tuple[int, ...]
    volume_threshold_gb: float
    remove_days_after_expiry: int
    test_product_name: str
    referral_reward: int
    report_channel_id: int | None
    expiry_warning_job: JobSettings
    volume_warning_job: JobSettings
    expired_cleanup_job: JobSettings
    test_cleanup_job: JobSettings


def _to_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _to_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer") from exc


def _parse_days(raw: str) -> tuple[int, ...]:
    days: list[int] = []
    for part in raw.split(","):
        part = part.strip()
        if not part:
            continue
        try:
            value = int(part)
        except ValueError as exc:
            raise ValueError("EXPIRY_WARNING_DAYS must be a comma separated list of integers") from exc
        if value > 0:
            days.append(value)
    return tuple(sorted(set(days)))


def _job_settings(prefix: str, *, cron: str, batch_size: int, concurrency: int, per_minute: int) -> JobSettings:
    return JobSettings(
        cron=os.getenv(f"{prefix}_CRON", cron).strip() or cron,
        batch_size=_to_int(f"{prefix}_BATCH_SIZE", batch_size),
        concurrency=_to_int(f"{prefix}_CONCURRENCY", concurrency),
        max_runs_per_minute=_to_int(f"{prefix}_MAX_RUNS_PER_MINUTE", per_minute),
    )


def load_config() -> AppConfig:
    load_dotenv()

    bot_token = os.getenv("BOT_TOKEN", "").strip()
    admin_chat_id_raw = os.getenv("ADMIN_CHAT_ID", "").strip()
    app_secret = os.getenv("APP_SECRET", "").strip()
    database_path = os.getenv("DATABASE_PATH", "/var/lib/panelshop/panelshop.db").strip()

    if not bot_token:
        raise ValueError("BOT_TOKEN is required")
    if not admin_chat_id_raw:
        raise ValueError("ADMIN_CHAT_ID is required")
    if not app_secret:
        raise ValueError("APP_SECRET is required")

    try:
        admin_chat_id = int(admin_chat_id_raw)
    except ValueError as exc:
        raise ValueError("ADMIN_CHAT_ID must be an integer") from exc

    report_channel_raw = os.getenv("REPORT_CHANNEL_ID", "").strip()
    try:
        report_channel_id = int(report_channel_raw) if report_channel_raw else None
    except ValueError as exc:
        raise ValueError("REPORT_CHANNEL_ID must be an integer") from exc

    try:
        volume_threshold_gb = float(os.getenv("VOLUME_THRESHOLD_GB", "1"))
    except ValueError as exc:
        raise ValueError("VOLUME_THRESHOLD_GB must be a number") from exc

    return AppConfig(
        bot_token=bot_token,
        admin_chat_id=admin_chat_id,
        app_secret=app_secret,
        database_path=database_path,
        panel_verify_tls=_to_bool(os.getenv("PANEL_VERIFY_TLS"), default=False),
        request_timeout=_to_int("REQUEST_TIMEOUT", 30),
        record_timeout=_to_int("RECORD_TIMEOUT", 45),
        timezone=os.getenv("TIMEZONE", "UTC").strip() or "UTC",
        expiry_warning_days=_parse_days(os.getenv("EXPIRY_WARNING_DAYS", "1,3,7")),
        volume_threshold_gb=volume_threshold_gb,
        remove_days_after_expiry=_to_int("REMOVE_DAYS_AFTER_EXPIRY", 7),
        test_product_name=os.getenv("TEST_PRODUCT_NAME", "usertest").strip() or "usertest",
        referral_reward=_to_int("REFERRAL_REWARD", 5000),
        report_channel_id=report_channel_id,
        expiry_warning_job=_job_settings(
            "EXPIRY_WARNING", cron="0 * * * *", batch_size=5, concurrency=5, per_minute=10
        ),
        volume_warning_job=_job_settings(
            "VOLUME_WARNING", cron="*/30 * * * *", batch_size=5, concurrency=5, per_minute=10
        ),
        expired_cleanup_job=_job_settings(
            "EXPIRED_CLEANUP", cron="0 */6 * * *", batch_size=10, concurrency=3, per_minute=5
        ),
        test_cleanup_job=_job_settings(
            "TEST_CLEANUP", cron="0 3 * * *", batch_size=10, concurrency=3, per_minute=5
        ),
    )
