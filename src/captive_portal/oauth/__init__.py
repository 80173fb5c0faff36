"""Member login core package.

This namespace hosts the **HTTP-framework-agnostic** building blocks of the
portal's OAuth 2.0 Authorization Code + PKCE login against the identity
provider.

Sub-modules
-----------
clock
    Test-friendly time abstraction.
pkce
    Proof-Key for Code Exchange and CSRF token helpers.
store
    Single-use, expiring storage of in-flight login attempts.
authorize
    Authorize URL construction.
tokens
    Code exchange, refresh and revocation against the token endpoint.
userinfo
    Access token → member identity resolution.
session
    Session hand-off seam and the default in-memory registry.
service
    Orchestration of the whole flow.
config
    Immutable configuration read once from the environment.
models
    Immutable dataclasses for flow state, tokens and identities.
errors
    Exception types of the login flow.
log_utils
    Structured logging helpers (thin wrapper around :pymod:`logging`).

All public objects are re-exported here for convenience.
"""

from __future__ import annotations

from .clock import Clock, FixedClock, default_clock  # noqa: F401
from .pkce import (  # noqa: F401
    code_challenge_s256,
    generate_code_verifier,
    generate_csrf_token,
    new_pkce_pair,
)
from .models import FlowState, PKCEPair, TokenSet, UserIdentity  # noqa: F401
from .errors import (  # noqa: F401
    InvalidOrExpiredStateError,
    NetworkError,
    OAuthFlowError,
    OAuthNotConfiguredError,
    SessionBindingError,
    TokenExchangeError,
    UserInfoFetchError,
)
from .config import OAuthConfig  # noqa: F401
from .store import DiskStateStore, InMemoryStateStore, StateStore  # noqa: F401
from .authorize import build_login_url  # noqa: F401
from .tokens import TokenExchanger  # noqa: F401
from .userinfo import UserInfoFetcher  # noqa: F401
from .session import (  # noqa: F401
    InMemorySessionRegistry,
    MemberSession,
    SessionBinder,
    SessionHandle,
)
from .service import LoginStart, PortalAuthService, build_auth_service  # noqa: F401
from .log_utils import get_flow_logger  # noqa: F401

__all__ = [
    # clock
    "Clock",
    "FixedClock",
    "default_clock",
    # pkce
    "code_challenge_s256",
    "generate_code_verifier",
    "generate_csrf_token",
    "new_pkce_pair",
    # models
    "FlowState",
    "PKCEPair",
    "TokenSet",
    "UserIdentity",
    # errors
    "InvalidOrExpiredStateError",
    "NetworkError",
    "OAuthFlowError",
    "OAuthNotConfiguredError",
    "SessionBindingError",
    "TokenExchangeError",
    "UserInfoFetchError",
    # config
    "OAuthConfig",
    # store
    "DiskStateStore",
    "InMemoryStateStore",
    "StateStore",
    # flow components
    "build_login_url",
    "TokenExchanger",
    "UserInfoFetcher",
    # session seam
    "InMemorySessionRegistry",
    "MemberSession",
    "SessionBinder",
    "SessionHandle",
    # service
    "LoginStart",
    "PortalAuthService",
    "build_auth_service",
    # logging helpers
    "get_flow_logger",
]
