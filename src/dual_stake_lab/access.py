"""Role checks applied around the engine's exposed operations.

Business logic never inspects roles itself; operator-only methods are wrapped
with :func:`requires_role`, which reads the ``caller`` argument and consults
the owning object's :class:`AccessControl`.
"""

from __future__ import annotations

import functools
import logging
from collections.abc import Callable, Iterable
from enum import Enum
from typing import Any, TypeVar

from .errors import Unauthorized

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])


class Role(str, Enum):
    OPERATOR = "operator"


class AccessControl:
    def __init__(self, operators: Iterable[str] = ()) -> None:
        self._members: dict[Role, set[str]] = {role: set() for role in Role}
        self._members[Role.OPERATOR].update(operators)

    def grant(self, role: Role, account: str) -> None:
        self._members[role].add(account)

    def revoke(self, role: Role, account: str) -> None:
        self._members[role].discard(account)

    def has_role(self, role: Role, account: str) -> bool:
        return account in self._members[role]

    def check(self, caller: str, role: Role, operation: str) -> None:
        if not self.has_role(role, caller):
            logger.warning("Rejected %s by %s: missing %s role", operation, caller, role.value)
            raise Unauthorized(f"{caller} lacks the {role.value} role for {operation}")


def requires_role(role: Role) -> Callable[[F], F]:
    """Guard a method whose first argument after ``self`` is the caller."""

    def decorator(fn: F) -> F:
        @functools.wraps(fn)
        def wrapper(self: Any, caller: str, *args: Any, **kwargs: Any) -> Any:
            self.access.check(caller, role, fn.__name__)
            return fn(self, caller, *args, **kwargs)

        return wrapper  # type: ignore[return-value]

    return decorator


__all__ = ["Role", "AccessControl", "requires_role"]
