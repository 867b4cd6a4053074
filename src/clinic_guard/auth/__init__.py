"""HIPAA-compliant authentication and authorization.

HIPAA Reference: 164.312(d) - Person or Entity Authentication
HIPAA Reference: 164.312(a)(1) - Access Controls
HIPAA Reference: 164.312(a)(2)(iii) - Automatic logoff
"""

from .accounts import AccountStore
from .authentication import Authenticator
from .cookies import CookieSettings, callback_url_cookie, csrf_token_cookie, session_cookie
from .guards import (
    AuthorizedContext,
    Procedure,
    RequestContext,
    admin_procedure,
    doctor_procedure,
    protected_procedure,
    public_procedure,
    require_roles,
    require_session,
    require_tenant,
)
from .models import (
    Account,
    AuthResult,
    AuthStatus,
    ExpiredSession,
    Session,
    SessionToken,
    UserRole,
    ValidSession,
)
from .passwords import PasswordPolicy, PasswordService
from .schema import AuthSchemaManager
from .session_manager import SessionConfig, SessionManager
from .throttle import (
    InMemoryLoginAttemptStore,
    LoginAttemptStore,
    LoginThrottle,
    RedisLoginAttemptStore,
    ThrottleConfig,
)

__all__ = [
    "Account",
    "AccountStore",
    "AuthResult",
    "AuthSchemaManager",
    "AuthStatus",
    "Authenticator",
    "AuthorizedContext",
    "CookieSettings",
    "ExpiredSession",
    "InMemoryLoginAttemptStore",
    "LoginAttemptStore",
    "LoginThrottle",
    "PasswordPolicy",
    "PasswordService",
    "Procedure",
    "RedisLoginAttemptStore",
    "RequestContext",
    "Session",
    "SessionConfig",
    "SessionManager",
    "SessionToken",
    "ThrottleConfig",
    "UserRole",
    "ValidSession",
    "admin_procedure",
    "callback_url_cookie",
    "csrf_token_cookie",
    "doctor_procedure",
    "protected_procedure",
    "public_procedure",
    "require_roles",
    "require_session",
    "require_tenant",
    "session_cookie",
]
