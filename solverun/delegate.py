"""Continuation delegates.

The controller asks its delegate, before and after every iteration, whether
to keep going. Without a delegate the controller runs exactly one iteration.
Delegates run on the controller's thread and must not block for long; there is
no timeout around them.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from .status import validate_continuable

if TYPE_CHECKING:
    from .config import ConfigurationSnapshot

DecisionFn = Callable[[Any, int, "ConfigurationSnapshot"], bool]


@runtime_checkable
class ContinuationDelegate(Protocol):
    def before_iteration(
        self, engine: Any, iteration: int, config: ConfigurationSnapshot
    ) -> bool: ...

    def after_iteration(
        self, engine: Any, iteration: int, config: ConfigurationSnapshot
    ) -> bool: ...


class RetryUntilSolved:
    """Repeat the solve while the engine has no result, up to ``max_iterations``.

    Useful together with a time limit: each iteration gives the engine another
    time slice to find a first solution.
    """

    def __init__(self, max_iterations: int) -> None:
        if max_iterations < 1:
            raise ValueError("max_iterations must be positive")
        self.max_iterations = max_iterations

    def before_iteration(
        self, engine: Any, iteration: int, config: ConfigurationSnapshot
    ) -> bool:
        return iteration <= self.max_iterations

    def after_iteration(
        self, engine: Any, iteration: int, config: ConfigurationSnapshot
    ) -> bool:
        if iteration >= self.max_iterations:
            return False
        cls = validate_continuable(engine.status())
        return cls.is_continuable


class CallbackDelegate:
    """Adapts plain callables to the delegate protocol. Missing ones allow."""

    def __init__(
        self, before: DecisionFn | None = None, after: DecisionFn | None = None
    ) -> None:
        self._before = before
        self._after = after

    def before_iteration(
        self, engine: Any, iteration: int, config: ConfigurationSnapshot
    ) -> bool:
        if self._before is None:
            return True
        return bool(self._before(engine, iteration, config))

    def after_iteration(
        self, engine: Any, iteration: int, config: ConfigurationSnapshot
    ) -> bool:
        if self._after is None:
            return True
        return bool(self._after(engine, iteration, config))
