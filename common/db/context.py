"""
Database session context management.

ContextVars that let repositories find the session of an enclosing
transaction() without threading it through every call, plus the @readonly
decorator that routes a whole call chain to read sessions.
"""

from contextvars import ContextVar
from functools import wraps
from typing import Optional, Callable, TypeVar, ParamSpec

from sqlalchemy.ext.asyncio import AsyncSession


# Holds the current write session (if inside a write transaction)
_write_session: ContextVar[Optional[AsyncSession]] = ContextVar(
    "db_write_session", default=None
)

# Holds the current read session (if inside a read transaction)
_read_session: ContextVar[Optional[AsyncSession]] = ContextVar(
    "db_read_session", default=None
)

# Forces all operations in this context to use readonly
_force_readonly: ContextVar[bool] = ContextVar("db_force_readonly", default=False)


def is_readonly_forced() -> bool:
    """Check if current context is forced to readonly."""
    return _force_readonly.get()


def get_current_session(readonly: bool = False) -> Optional[AsyncSession]:
    """Get the session of the enclosing transaction, if any."""
    if readonly:
        return _read_session.get()
    return _write_session.get()


def set_current_session(session: AsyncSession, readonly: bool = False) -> object:
    """Set session in context. Returns the token for reset_current_session."""
    if readonly:
        return _read_session.set(session)
    return _write_session.set(session)


def reset_current_session(token: object, readonly: bool = False) -> None:
    if readonly:
        _read_session.reset(token)
    else:
        _write_session.reset(token)


P = ParamSpec("P")
T = TypeVar("T")


def readonly(func: Callable[P, T]) -> Callable[P, T]:
    """
    Decorator that forces all DB operations in this call chain to use readonly sessions.

    Usage:
        @readonly
        async def evaluate(account_id: str, feature_type: str):
            subscription = await subscription_repo.get_by_account_id(account_id)
            record = await usage_repo.get(account_id, feature_type, key)
    """

    @wraps(func)
    async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
        token = _force_readonly.set(True)
        try:
            return await func(*args, **kwargs)
        finally:
            _force_readonly.reset(token)

    return wrapper
