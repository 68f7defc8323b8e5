import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional

import requests

from ...domain.errors import PermissionDenied, UpstreamUnavailable
from ...domain.ports import AuthPort, AuthSession
from ...infrastructure.config import Settings, settings as default_settings

logger = logging.getLogger(__name__)

HEADERS = {"User-Agent": "campus-market/1.0", "Content-Type": "application/json"}

FRIENDLY_ERRORS = {
    "EMAIL_EXISTS": "An account with this email already exists",
    "EMAIL_NOT_FOUND": "Invalid email or password",
    "INVALID_PASSWORD": "Invalid email or password",
    "INVALID_LOGIN_CREDENTIALS": "Invalid email or password",
    "USER_DISABLED": "This account has been disabled",
    "TOO_MANY_ATTEMPTS_TRY_LATER": "Too many attempts, please try again later",
}


class RestAuthClient(AuthPort):
    """Client for the hosted auth service's identity-toolkit REST endpoints."""

    def __init__(self, config: Optional[Settings] = None, session: Optional[requests.Session] = None) -> None:
        config = config or default_settings
        if not config.auth_api_key:
            raise RuntimeError("AUTH_API_KEY must be set")
        self._api_key = config.auth_api_key
        self._base_url = config.auth_base_url.rstrip("/")
        self._http = session or requests.Session()
        self._current: Optional[AuthSession] = None
        self._observers: List[Callable[[Optional[AuthSession]], None]] = []

    def _post(self, endpoint: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{self._base_url}/{endpoint}"
        logger.debug("POST %s", url)
        try:
            resp = self._http.post(url, params={"key": self._api_key}, json=payload, headers=HEADERS, timeout=30)
        except requests.RequestException as exc:
            raise UpstreamUnavailable("The sign-in service is unreachable") from exc
        if resp.status_code >= 500:
            raise UpstreamUnavailable(f"The sign-in service returned {resp.status_code}")
        body = resp.json() if resp.content else {}
        if resp.status_code >= 400:
            code = str(body.get("error", {}).get("message", "")).split(" ")[0]
            logger.info("Auth request %s rejected: %s", endpoint, code)
            raise PermissionDenied(FRIENDLY_ERRORS.get(code, "Authentication failed"))
        return body

    def _set_current(self, session: Optional[AuthSession]) -> None:
        self._current = session
        for callback in list(self._observers):
            try:
                callback(session)
            except Exception:
                logger.exception("Session observer failed")

    async def _lookup(self, id_token: str) -> Dict[str, Any]:
        body = await asyncio.to_thread(self._post, "accounts:lookup", {"idToken": id_token})
        users = body.get("users") or [{}]
        return users[0]

    async def create_account(self, email: str, password: str) -> AuthSession:
        body = await asyncio.to_thread(
            self._post, "accounts:signUp", {"email": email, "password": password, "returnSecureToken": True}
        )
        await asyncio.to_thread(self._post, "accounts:sendOobCode", {"requestType": "VERIFY_EMAIL", "idToken": body["idToken"]})
        session = AuthSession(uid=body["localId"], email=body.get("email", email), email_verified=False, id_token=body["idToken"])
        self._set_current(session)
        return session

    async def sign_in(self, email: str, password: str) -> AuthSession:
        body = await asyncio.to_thread(
            self._post, "accounts:signInWithPassword", {"email": email, "password": password, "returnSecureToken": True}
        )
        account = await self._lookup(body["idToken"])
        session = AuthSession(
            uid=body["localId"],
            email=body.get("email", email),
            email_verified=bool(account.get("emailVerified", False)),
            id_token=body["idToken"],
        )
        self._set_current(session)
        return session

    async def sign_out(self) -> None:
        self._set_current(None)

    async def is_email_verified(self) -> bool:
        if self._current is None or not self._current.id_token:
            return False
        account = await self._lookup(self._current.id_token)
        return bool(account.get("emailVerified", False))

    def on_session_changed(self, callback: Callable[[Optional[AuthSession]], None]) -> Callable[[], None]:
        self._observers.append(callback)
        callback(self._current)

        def unsubscribe() -> None:
            if callback in self._observers:
                self._observers.remove(callback)

        return unsubscribe
