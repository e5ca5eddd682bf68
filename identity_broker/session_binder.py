"""
Session/identity binder. Routing hints kept in the signed session cookie.

The session is never a source of truth for credentials. It only remembers who
the browser is (after a Workspace login) and which customer, if any, an
in-flight Accounting authorization belongs to. Flow markers are consumed
exactly once, at the callback.
"""
import secrets
import uuid
from dataclasses import dataclass
from typing import MutableMapping, Optional, Union

CUSTOMER_KEY = "customer_id"
PENDING_KEY = "pending_customer_id"
STANDALONE_KEY = "standalone_attempt"
STATE_KEY_PREFIX = "oauth_state:"

Session = MutableMapping[str, object]


@dataclass(frozen=True)
class NoFlowState:
    pass


@dataclass(frozen=True)
class PendingFor:
    customer_id: str


@dataclass(frozen=True)
class StandaloneAttempt:
    token: str


FlowState = Union[NoFlowState, PendingFor, StandaloneAttempt]


def identified_customer_id(session: Session) -> Optional[str]:
    value = session.get(CUSTOMER_KEY)
    return str(value) if value else None


def bind_identity(session: Session, customer_id: str) -> None:
    session[CUSTOMER_KEY] = customer_id


def forget_identity(session: Session) -> None:
    session.pop(CUSTOMER_KEY, None)


def stash_pending(session: Session, customer_id: str) -> None:
    session.pop(STANDALONE_KEY, None)
    session[PENDING_KEY] = customer_id


def mark_standalone(session: Session) -> str:
    token = str(uuid.uuid4())
    session.pop(PENDING_KEY, None)
    session[STANDALONE_KEY] = token
    return token


def consume_flow_state(session: Session) -> FlowState:
    """Remove both flow markers and return the one that was set."""
    pending = session.pop(PENDING_KEY, None)
    standalone = session.pop(STANDALONE_KEY, None)
    if pending:
        return PendingFor(str(pending))
    if standalone:
        return StandaloneAttempt(str(standalone))
    return NoFlowState()


def issue_oauth_state(session: Session, provider: str) -> str:
    state = secrets.token_hex(16)
    session[STATE_KEY_PREFIX + provider] = state
    return state


def check_oauth_state(session: Session, provider: str, received: Optional[str]) -> bool:
    """Pop the expected state; passes only when one was issued and the values match."""
    expected = session.pop(STATE_KEY_PREFIX + provider, None)
    if not expected or not received:
        return False
    return secrets.compare_digest(str(expected), received)
