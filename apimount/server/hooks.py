"""Extension points around a dispatched call.

Configured hooks return plain booleans; the chain turns them into an explicit
:class:`HookOutcome`.  Missing hooks are replaced by defaults that always let
the call continue, so the pipeline never special-cases their absence.
"""

from __future__ import annotations

import inspect
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

from mountlib.config.mount_config import MountConfig
from mountlib.telemetry.logger import get_logger

logger = get_logger(__name__)


class HookOutcome(str, Enum):
    CONTINUE = "continue"
    SHORT_CIRCUIT = "short_circuit"
    OBSERVE_ONLY = "observe_only"

    @classmethod
    def from_result(cls, result: Any) -> "HookOutcome":
        # Only an explicit ``False`` stops the call; ``None`` keeps going.
        if isinstance(result, HookOutcome):
            return result
        return cls.SHORT_CIRCUIT if result is False else cls.CONTINUE


async def _settle(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


def continue_default(*_: Any) -> HookOutcome:
    return HookOutcome.CONTINUE


def observe_only(*_: Any) -> HookOutcome:
    return HookOutcome.OBSERVE_ONLY


@dataclass(frozen=True)
class HookChain:
    before_execution: Callable[..., Any] = continue_default
    before_response: Callable[..., Any] = continue_default
    after_response: Callable[..., Any] = observe_only

    @classmethod
    def from_config(cls, config: MountConfig) -> "HookChain":
        return cls(
            before_execution=config.before_execution or continue_default,
            before_response=config.before_response or continue_default,
            after_response=config.after_response or observe_only,
        )

    async def run_before_execution(self, method: str, handler: Callable, receiver: Any, request: Any, response: Any) -> HookOutcome:
        result = await _settle(self.before_execution(method, handler, receiver, request, response))
        return HookOutcome.from_result(result)

    async def run_before_response(self, result: Any, error: bool, method: str, request: Any, response: Any) -> HookOutcome:
        outcome = await _settle(self.before_response(result, error, method, request, response))
        return HookOutcome.from_result(outcome)

    async def run_after_response(self, result: Any, error: bool, method: str) -> HookOutcome:
        """Run the observer; the response is already sent so failures are only logged."""

        try:
            await _settle(self.after_response(result, error, method))
        except Exception:
            logger.exception("after_response hook failed for %s", method)
        return HookOutcome.OBSERVE_ONLY
