"""HIPAA-compliant credential authentication.

HIPAA Reference: 164.312(d) - Person or Entity Authentication

Expected failures (unknown email, wrong password, lockout) come back as an
``AuthResult`` and never raise; callers cannot tell them apart beyond the
lockout "try again later" hint. Storage errors propagate.
"""

import logging
import secrets

import asyncpg

from ..audit.context import RequestMeta
from ..audit.logger import AuditLogWriter
from ..audit.models import AuditAction
from ..security.sanitizers import normalize_identifier
from .accounts import AccountStore
from .models import (
    GENERIC_LOGIN_FAILURE,
    LOCKED_LOGIN_FAILURE,
    Account,
    AuthResult,
    AuthStatus,
    FailureReason,
    SessionToken,
)
from .passwords import PasswordService
from .session_manager import SessionManager
from .throttle import LoginThrottle

logger = logging.getLogger(__name__)

DEFAULT_UNATTRIBUTED_TENANT = "system"


class Authenticator:
    def __init__(
        self,
        session_manager: SessionManager,
        audit_writer: AuditLogWriter,
        throttle: LoginThrottle | None = None,
        accounts: AccountStore | None = None,
        passwords: PasswordService | None = None,
        unattributed_tenant_id: str = DEFAULT_UNATTRIBUTED_TENANT,
    ):
        self._sessions = session_manager
        self._audit = audit_writer
        self._throttle = throttle if throttle is not None else LoginThrottle()
        self._accounts = accounts if accounts is not None else AccountStore()
        self._passwords = passwords if passwords is not None else PasswordService()
        self._unattributed_tenant_id = unattributed_tenant_id
        self._dummy_hash: str | None = None

    @property
    def throttle(self) -> LoginThrottle:
        return self._throttle

    @property
    def passwords(self) -> PasswordService:
        return self._passwords

    async def _burn_comparison(self, password: str) -> None:
        # Unknown users still pay for one hash comparison so timing does not
        # reveal which emails exist.
        if self._dummy_hash is None:
            self._dummy_hash = await self._passwords.hash_password_async(secrets.token_hex(16))
        await self._passwords.verify_password_async(password, self._dummy_hash)

    async def _fail(
        self,
        identifier: str,
        tenant_id: str,
        user_id: str | None,
        request_meta: RequestMeta | None,
    ) -> AuthResult:
        await self._throttle.record_failure(identifier)
        await self._audit.log_auth_event(
            AuditAction.LOGIN_FAILED,
            tenant_id=tenant_id,
            user_id=user_id,
            metadata={"reason": FailureReason.INVALID_CREDENTIALS.value},
            request_meta=request_meta,
        )
        return AuthResult(status=AuthStatus.INVALID_CREDENTIALS, message=GENERIC_LOGIN_FAILURE)

    async def authenticate(
        self,
        conn: asyncpg.Connection,
        email: str,
        password: str,
        request_meta: RequestMeta | None = None,
    ) -> AuthResult:
        identifier = normalize_identifier(email or "")
        if not identifier or not password:
            return AuthResult(status=AuthStatus.INVALID_CREDENTIALS, message=GENERIC_LOGIN_FAILURE)

        if await self._throttle.is_locked(identifier):
            logger.info("Rejected login for locked identifier")
            await self._audit.log_auth_event(
                AuditAction.LOGIN_FAILED,
                tenant_id=self._unattributed_tenant_id,
                metadata={"reason": FailureReason.ACCOUNT_LOCKED.value},
                request_meta=request_meta,
            )
            return AuthResult(status=AuthStatus.ACCOUNT_LOCKED, message=LOCKED_LOGIN_FAILURE)

        account = await self._accounts.find_active_by_email(conn, identifier)

        if account is None or not account.password_hash:
            await self._burn_comparison(password)
            return await self._fail(identifier, self._unattributed_tenant_id, None, request_meta)

        if not await self._passwords.verify_password_async(password, account.password_hash):
            return await self._fail(identifier, account.tenant_id, account.user_id, request_meta)

        await self._throttle.clear(identifier)
        await self._maybe_rehash(conn, account, password)

        await self._audit.log_auth_event(
            AuditAction.LOGIN,
            tenant_id=account.tenant_id,
            user_id=account.user_id,
            request_meta=request_meta,
        )

        session = self._sessions.issue(account)
        logger.info("User %s authenticated", account.user_id)
        return AuthResult(
            status=AuthStatus.SUCCESS,
            account=account,
            session=session,
            token=self._sessions.encode(session),
        )

    async def _maybe_rehash(
        self, conn: asyncpg.Connection, account: Account, password: str
    ) -> None:
        if not self._passwords.needs_rehash(account.password_hash):
            return
        new_hash = await self._passwords.hash_password_async(password)
        await self._accounts.update_password_hash(conn, account.user_id, new_hash)
        account.password_hash = new_hash
        logger.info("Upgraded password hash parameters for user %s", account.user_id)

    async def logout(
        self,
        token: SessionToken,
        request_meta: RequestMeta | None = None,
    ) -> bool:
        """Record a logout. Tokens are stateless, so the transport drops the cookie."""
        if not token.user_id or not token.tenant_id:
            return False
        await self._audit.log_auth_event(
            AuditAction.LOGOUT,
            tenant_id=token.tenant_id,
            user_id=token.user_id,
            request_meta=request_meta,
        )
        return True
