from __future__ import annotations

import base64
import logging
import secrets
import time
import uuid
from datetime import datetime, timezone
from typing import Any

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.x25519 import X25519PrivateKey

from panelshop.errors import PanelError
from panelshop.models import GIB, AccountStatus, RemoteAccount
from panelshop.panels.base import PanelAdapter, coerce_status, expiry_from_days, extend_expiry


logger = logging.getLogger(__name__)

_JOB_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def generate_keypair() -> tuple[str, str]:
    """Return a base64 (private, public) WireGuard key pair."""
    private = X25519PrivateKey.generate()
    private_raw = private.private_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PrivateFormat.Raw,
        encryption_algorithm=serialization.NoEncryption(),
    )
    public_raw = private.public_key().public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    )
    return base64.b64encode(private_raw).decode("ascii"), base64.b64encode(public_raw).decode("ascii")


class WGDashboardAdapter(PanelAdapter):
    """WGDashboard: API-key auth, one WireGuard configuration per panel.

    Quota and expiry are enforced by the dashboard's peer schedule jobs
    (``restrict`` when ``total_data`` or ``date`` is reached).
    """

    vendor = "WGDashboard"
    session_ttl = None

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.configuration = self.inbound or "wg0"

    def _default_headers(self) -> dict[str, str]:
        return {"Accept": "application/json"}

    def _auth_headers(self) -> dict[str, str]:
        # The panel password field holds the API key.
        return {"wg-dashboard-apikey": self.password}

    async def _login(self) -> None:
        await self._config_info()

    async def _api(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        response = await self._request(method, path, json=json, params=params)
        payload = self._expect_dict(self._parse_json(response), "dashboard response")
        if payload.get("status") is False:
            raise self._error(str(payload.get("message") or "Dashboard rejected request"))
        return payload.get("data")

    async def _config_info(self) -> dict[str, Any]:
        data = await self._api(
            "GET",
            "/api/getWireguardConfigurationInfo",
            params={"configurationName": self.configuration},
        )
        return self._expect_dict(data, "configuration info")

    async def _find_peer(self, username: str) -> dict[str, Any] | None:
        info = await self._config_info()
        for peer in info.get("configurationPeers") or []:
            if peer.get("name") == username:
                return peer
        for peer in info.get("configurationRestrictedPeers") or []:
            if peer.get("name") == username:
                return {**peer, "restricted": True}
        return None

    async def _require_peer(self, username: str) -> dict[str, Any]:
        peer = await self._find_peer(username)
        if peer is None:
            raise self._error(f"User {username} not found")
        return peer

    # -- contract -------------------------------------------------------

    async def create_user(
        self,
        username: str,
        volume_gb: int,
        duration_days: int,
        inbound: str | None = None,
    ) -> RemoteAccount:
        private_key, public_key = generate_keypair()
        preshared_key = base64.b64encode(secrets.token_bytes(32)).decode("ascii")
        address = await self._available_ip()

        await self._api(
            "POST",
            f"/api/addPeers/{self.configuration}",
            json={
                "name": username,
                "allowed_ips": [address],
                "private_key": private_key,
                "public_key": public_key,
                "preshared_key": preshared_key,
            },
        )

        expire = expiry_from_days(duration_days)
        # Jobs are best effort: the peer exists either way and the sale must not fail on them.
        if volume_gb > 0:
            await self._save_job_quietly(public_key, "total_data", str(volume_gb))
        if expire > 0:
            await self._save_job_quietly(public_key, "date", self._format_job_date(expire))

        # The peer is live now; a missing config file can be fetched again with revoke_subscription.
        try:
            config = await self._download_config(public_key)
        except PanelError as exc:
            logger.warning("WGDashboard: peer %s created but its config could not be downloaded: %s", username, exc)
            config = None

        return RemoteAccount(
            username=username,
            status=AccountStatus.ACTIVE,
            used_traffic=0,
            data_limit=int(volume_gb * GIB),
            expire=expire,
            subscription_url=config,
        )

    async def get_user(self, username: str) -> RemoteAccount | None:
        peer = await self._find_peer(username)
        if peer is None:
            return None
        return self._to_account(peer)

    async def remove_user(self, username: str) -> None:
        peer = await self._require_peer(username)
        public_key = str(peer.get("id") or peer.get("public_key"))
        if peer.get("restricted"):
            # Restricted peers must be released before the dashboard deletes them.
            try:
                await self._api("POST", f"/api/allowAccessPeers/{self.configuration}", json={"peers": [public_key]})
            except PanelError as exc:
                logger.warning("WGDashboard: cannot release restricted peer %s before delete: %s", username, exc)
        await self._api("POST", f"/api/deletePeers/{self.configuration}", json={"peers": [public_key]})

    async def modify_user(
        self,
        username: str,
        *,
        volume_gb: int | None = None,
        duration_days: int | None = None,
    ) -> None:
        peer = await self._require_peer(username)
        public_key = str(peer.get("id") or peer.get("public_key"))
        jobs = self._jobs_by_field(peer)

        if volume_gb is not None:
            await self._save_job(public_key, "total_data", str(volume_gb), job_id=jobs.get("total_data", {}).get("JobID"))
        if duration_days is not None:
            current = self._job_expire(jobs.get("date"))
            expire = extend_expiry(current, duration_days)
            if expire > 0:
                await self._save_job(
                    public_key,
                    "date",
                    self._format_job_date(expire),
                    job_id=jobs.get("date", {}).get("JobID"),
                )

    async def revoke_subscription(self, username: str) -> str:
        # WireGuard keys are the credential; the downloadable config is reissued unchanged.
        peer = await self._require_peer(username)
        return await self._download_config(str(peer.get("id") or peer.get("public_key")))

    async def reset_data_usage(self, username: str) -> None:
        peer = await self._require_peer(username)
        await self._api(
            "POST",
            f"/api/resetPeerData/{self.configuration}",
            json={"id": str(peer.get("id") or peer.get("public_key")), "type": "total"},
        )

    async def get_system_stats(self) -> dict[str, Any]:
        info = await self._config_info()
        return {
            "configuration": self.configuration,
            "peers": len(info.get("configurationPeers") or []),
            "restricted_peers": len(info.get("configurationRestrictedPeers") or []),
        }

    # -- helpers --------------------------------------------------------

    async def _available_ip(self) -> str:
        data = await self._api("GET", f"/api/getAvailableIPs/{self.configuration}")
        if isinstance(data, dict):
            for addresses in data.values():
                if addresses:
                    return str(addresses[0])
        raise self._error("No available IP address in configuration")

    async def _download_config(self, public_key: str) -> str:
        data = await self._api("GET", f"/api/downloadPeer/{self.configuration}", params={"id": public_key})
        if isinstance(data, dict):
            return str(data.get("file") or "")
        return str(data or "")

    async def _save_job(self, public_key: str, field: str, value: str, *, job_id: str | None = None) -> None:
        await self._api(
            "POST",
            "/api/savePeerScheduleJob",
            json={
                "Job": {
                    "JobID": job_id or str(uuid.uuid4()),
                    "Configuration": self.configuration,
                    "Peer": public_key,
                    "Field": field,
                    "Operator": "lgt",
                    "Value": value,
                    "CreationDate": "",
                    "ExpireDate": None,
                    "Action": "restrict",
                }
            },
        )

    async def _save_job_quietly(self, public_key: str, field: str, value: str) -> None:
        try:
            await self._save_job(public_key, field, value)
        except PanelError as exc:
            logger.warning("WGDashboard: failed to register %s job for %s: %s", field, public_key, exc)

    @staticmethod
    def _jobs_by_field(peer: dict[str, Any]) -> dict[str, dict[str, Any]]:
        jobs: dict[str, dict[str, Any]] = {}
        for job in peer.get("jobs") or []:
            if isinstance(job, dict) and job.get("Field"):
                jobs[str(job["Field"])] = job
        return jobs

    @staticmethod
    def _format_job_date(expire: int) -> str:
        return datetime.fromtimestamp(expire, tz=timezone.utc).strftime(_JOB_DATE_FORMAT)

    @staticmethod
    def _job_expire(job: dict[str, Any] | None) -> int:
        if not job or not job.get("Value"):
            return 0
        raw = str(job["Value"]).strip()
        for fmt in (_JOB_DATE_FORMAT, "%Y-%m-%d"):
            try:
                return int(datetime.strptime(raw, fmt).replace(tzinfo=timezone.utc).timestamp())
            except ValueError:
                continue
        return 0

    @staticmethod
    def _job_quota(job: dict[str, Any] | None) -> int:
        if not job:
            return 0
        try:
            return int(float(job.get("Value") or 0) * GIB)
        except (TypeError, ValueError):
            return 0

    def _to_account(self, peer: dict[str, Any], now: int | None = None) -> RemoteAccount:
        jobs = self._jobs_by_field(peer)
        limit = self._job_quota(jobs.get("total_data"))
        expire = self._job_expire(jobs.get("date"))
        try:
            used_gb = float(peer.get("total_data") or 0) + float(peer.get("cumu_data") or 0)
        except (TypeError, ValueError):
            used_gb = 0.0
        used = int(used_gb * GIB)
        restricted = bool(peer.get("restricted"))

        return RemoteAccount(
            username=str(peer.get("name") or ""),
            status=coerce_status(
                None,
                used=used,
                limit=limit,
                expire=expire,
                enabled=not restricted,
                now=int(time.time()) if now is None else now,
            ),
            used_traffic=used,
            data_limit=limit,
            expire=expire,
        )
