"""Cloud sign-in and session sync."""

import logging
from datetime import timedelta

from ...core import parse_iso, utcnow
from ...errors import DevarkError, InvalidInputError
from ..protocol import MessageType as T
from .base import BaseHandler, require

logger = logging.getLogger(__name__)

DEFAULT_RECENT_DAYS = 7


class CloudHandler(BaseHandler):
    def routes(self):
        return {
            T.GET_CLOUD_STATUS: self.get_cloud_status,
            T.LOGIN_WITH_GITHUB: self.login_with_github,
            T.AUTHENTICATE: self.authenticate,
            T.LOGOUT: self.logout,
            T.REQUEST_LOGOUT_CONFIRMATION: self.request_logout_confirmation,
            T.CHECK_AUTH_STATUS: self.check_auth_status,
            T.SYNC_NOW: self.sync_now,
            T.PREVIEW_SYNC: self.preview_sync,
            T.SYNC_WITH_FILTERS: self.sync_with_filters,
            T.GET_SYNC_STATUS: self.get_sync_status,
            T.CANCEL_SYNC: self.cancel_sync,
            T.UPLOAD_CURRENT_SESSION: self.upload_current_session,
            T.UPLOAD_RECENT_SESSIONS: self.upload_recent_sessions,
        }

    def get_cloud_status(self, data: dict) -> None:
        self.send(T.CLOUD_STATUS, {
            "isAuthenticated": self.services.tokens.has_token(),
            "apiUrl": self.services.sync.api.base_url,
        })

    def login_with_github(self, data: dict) -> None:
        self.send(T.CLOUD_STATUS, {
            "isAuthenticated": self.services.tokens.has_token(),
            "apiUrl": self.services.sync.api.base_url,
            "loginUrl": f"{self.services.sync.api.base_url}/auth/cli",
        })

    async def authenticate(self, data: dict) -> None:
        self.services.tokens.store_token(require(data, "token"))
        try:
            verification = await self.services.sync.api.verify_token()
        except DevarkError as e:
            logger.warning("Token stored but could not be verified: %s", e)
            self.send(T.AUTH_STATUS_RESULT, {"authenticated": True, "verified": False})
            return
        if not verification["valid"]:
            self.services.tokens.clear_token()
        self.send(T.AUTH_STATUS_RESULT, {
            "authenticated": verification["valid"],
            "verified": True,
            "user": verification.get("user"),
        })

    def logout(self, data: dict) -> None:
        self.services.tokens.clear_token()
        logger.info("Signed out of devark")
        self.get_cloud_status(data)

    def request_logout_confirmation(self, data: dict) -> None:
        self.send(T.CONFIRMATION_REQUIRED, {
            "action": T.LOGOUT.value,
            "message": "Sign out of devark? Cloud sync stops until you sign in again.",
        })

    async def check_auth_status(self, data: dict) -> None:
        if not self.services.tokens.has_token():
            self.send(T.AUTH_STATUS_RESULT, {"authenticated": False})
            return
        verification = await self.services.sync.api.verify_token()
        self.send(T.AUTH_STATUS_RESULT, {"authenticated": verification["valid"], "user": verification.get("user")})

    async def sync_now(self, data: dict) -> None:
        await self._sync(force=bool(data.get("force")))

    def preview_sync(self, data: dict) -> None:
        sessions = self.services.sync.preview(**self._filters(data))
        self.send(T.SYNC_PREVIEW, {"sessions": sessions, "total": len(sessions)})

    async def sync_with_filters(self, data: dict) -> None:
        await self._sync(force=bool(data.get("force")), **self._filters(data))

    async def get_sync_status(self, data: dict) -> None:
        self.send(T.SYNC_STATUS, await self.services.sync.get_sync_status())

    def cancel_sync(self, data: dict) -> None:
        self.services.sync.cancel()
        self.send(T.SYNC_CANCELLED, {})

    async def upload_current_session(self, data: dict) -> None:
        session = self.services.aggregator.get_active_session()
        if session is None:
            raise InvalidInputError("No active session to upload")
        await self._sync(sessions=[session.key])

    async def upload_recent_sessions(self, data: dict) -> None:
        days = int(data.get("days", DEFAULT_RECENT_DAYS))
        await self._sync(since=utcnow() - timedelta(days=max(1, days)))

    # ── Private helpers ──────────────────────────────────────────────

    async def _sync(self, **kwargs) -> None:
        def progress(current: int, total: int, detail: dict) -> None:
            self.send(T.SYNC_PROGRESS, {"current": current, "total": total, **detail})

        result = await self.services.sync.sync(on_progress=progress, **kwargs)
        self.send(T.SYNC_COMPLETE, result.to_dict())

    @staticmethod
    def _filters(data: dict) -> dict:
        projects = data.get("projects")
        if projects is not None and not isinstance(projects, list):
            raise InvalidInputError("'projects' must be a list")
        return {
            "projects": projects or None,
            "since": parse_iso(data.get("since")),
            "until": parse_iso(data.get("until")),
        }
