from __future__ import annotations

from aiogram import html

from panelshop.models import GIB, AccountStatus


def _gb(value: int) -> str:
    return f"{max(value, 0) / GIB:.2f}"


def _status_text(status: AccountStatus) -> str:
    return "محدود شده" if status == AccountStatus.LIMITED else "منقضی شده"


def expiry_warning(username: str, product_name: str, days_left: int, remaining_bytes: int) -> str:
    return (
        "⚠️ <b>هشدار انقضای سرویس</b>\n\n"
        f"نام کاربری: {html.code(username)}\n"
        f"محصول: {html.quote(product_name)}\n\n"
        f"⏰ زمان باقیمانده: <b>{days_left} روز</b>\n"
        f"💾 حجم باقیمانده: <b>{_gb(remaining_bytes)} GB</b>\n\n"
        "برای تمدید سرویس خود اقدام کنید."
    )


def volume_warning(username: str, product_name: str, remaining_bytes: int) -> str:
    return (
        "⚠️ <b>هشدار اتمام حجم</b>\n\n"
        f"نام کاربری: {html.code(username)}\n"
        f"محصول: {html.quote(product_name)}\n\n"
        f"💾 حجم باقیمانده: <b>{_gb(remaining_bytes)} GB</b>\n\n"
        "برای افزایش حجم سرویس خود اقدام کنید."
    )


def service_removed(username: str, status: AccountStatus) -> str:
    return (
        "🗑️ <b>حذف سرویس</b>\n\n"
        f"نام کاربری: {html.code(username)}\n"
        f"وضعیت: {_status_text(status)}\n\n"
        "سرویس شما به دلیل انقضا از سیستم حذف شد.\n"
        "برای خرید سرویس جدید از منوی اصلی اقدام کنید."
    )


def service_removed_report(username: str, status: AccountStatus, chat_id: int, panel_name: str) -> str:
    return (
        "🗑️ <b>سرویس حذف شد - زمان‌بندی</b>\n\n"
        f"نام کاربری: {html.code(username)}\n"
        f"وضعیت: {_status_text(status)}\n"
        f"پنل: {html.quote(panel_name)}\n"
        f"کاربر: {html.code(str(chat_id))}"
    )


def test_account_expired(username: str) -> str:
    return (
        "⏳ <b>پایان سرویس تست</b>\n\n"
        f"نام کاربری: {html.code(username)}\n\n"
        "مدت یا حجم سرویس تست شما به پایان رسید.\n"
        "اگر از کیفیت سرویس راضی بودید، همین حالا سرویس اصلی تهیه کنید."
    )
