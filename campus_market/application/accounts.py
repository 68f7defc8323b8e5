import logging
from typing import Callable, Iterable, Optional

from ..domain.documents import SERVER_TIMESTAMP, USERS
from ..domain.errors import NotFound, PermissionDenied
from ..domain.models import Role
from ..domain.ports import AuthPort, AuthSession, DocumentStorePort
from .users import UserDirectory

logger = logging.getLogger(__name__)


class AccountService:
    """Sign-up, sign-in and session tracking for university students."""

    def __init__(
        self,
        auth: AuthPort,
        store: DocumentStorePort,
        users: UserDirectory,
        university_domains: Iterable[str],
    ) -> None:
        self.auth = auth
        self.store = store
        self.users = users
        self.university_domains = tuple(d.strip().lower() for d in university_domains if d.strip())

    def is_university_email(self, email: str) -> bool:
        email = (email or "").strip().lower()
        return any(email.endswith(f"@{domain}") for domain in self.university_domains)

    async def sign_up(
        self,
        email: str,
        password: str,
        first_name: str = "",
        last_name: str = "",
        university: Optional[str] = None,
    ) -> AuthSession:
        if not self.is_university_email(email):
            raise PermissionDenied("Please use your university email address")
        session = await self.auth.create_account(email.strip(), password)
        await self.store.set(USERS, session.uid, {
            "uid": session.uid,
            "email": session.email,
            "firstName": first_name.strip(),
            "lastName": last_name.strip(),
            "role": Role.STUDENT.value,
            "suspended": False,
            "university": university,
            "rating": 0,
            "totalRatings": 0,
            "createdAt": SERVER_TIMESTAMP,
        })
        logger.info("Created account %s for %s", session.uid, session.email)
        return session

    async def sign_in(self, email: str, password: str) -> AuthSession:
        session = await self.auth.sign_in(email.strip(), password)
        try:
            profile = await self.users.get_user(session.uid)
        except NotFound:
            logger.warning("Signed-in user %s has no profile", session.uid)
            return session
        if profile.suspended:
            await self.auth.sign_out()
            logger.info("Refused sign-in for suspended user %s", session.uid)
            raise PermissionDenied("Your account has been suspended")
        return session

    async def sign_out(self) -> None:
        await self.auth.sign_out()

    async def is_email_verified(self) -> bool:
        return await self.auth.is_email_verified()

    def on_session_changed(self, callback: Callable[[Optional[AuthSession]], None]) -> Callable[[], None]:
        return self.auth.on_session_changed(callback)
