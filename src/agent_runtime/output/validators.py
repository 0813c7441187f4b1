"""Output validators run after a candidate output has been parsed.

A validator is a callable taking ``(value)`` or ``(ctx, value)``, sync or
async. It returns the (possibly transformed) value, raises
:class:`ModelRetry` to send feedback to the model, or raises
:class:`OutputValidationError` to fail. Returning ``None`` keeps the value
unchanged.
"""

from __future__ import annotations

import inspect
from typing import Any, Callable

from agent_runtime.context import RunContext
from agent_runtime.errors import ModelRetry, OutputValidationError


class OutputValidator:
    def __init__(self, function: Callable[..., Any]) -> None:
        self.function = function
        params = [
            p
            for p in inspect.signature(function).parameters.values()
            if p.kind in (p.POSITIONAL_ONLY, p.POSITIONAL_OR_KEYWORD)
        ]
        self.takes_ctx = len(params) >= 2

    async def validate(self, value: Any, ctx: RunContext[Any]) -> Any:
        args = (ctx, value) if self.takes_ctx else (value,)
        result = self.function(*args)
        if inspect.isawaitable(result):
            result = await result
        return value if result is None else result


class ValidatorChain:
    """Runs validators in registration order, stopping at the first failure."""

    def __init__(self, validators: list[Callable[..., Any]] | None = None) -> None:
        self._validators: list[OutputValidator] = []
        for validator in validators or []:
            self.add(validator)

    def add(self, validator: Callable[..., Any] | OutputValidator) -> OutputValidator:
        if not isinstance(validator, OutputValidator):
            validator = OutputValidator(validator)
        self._validators.append(validator)
        return validator

    async def validate(self, value: Any, ctx: RunContext[Any]) -> Any:
        for validator in self._validators:
            value = await validator.validate(value, ctx)
        return value

    def __len__(self) -> int:
        return len(self._validators)


class NoOpValidator:
    def __call__(self, value: Any) -> Any:
        return value


class RejectValidator:
    """Always fails; as a hard failure unless ``retry`` is set."""

    def __init__(self, message: str = "Output rejected", retry: bool = False) -> None:
        self.message = message
        self.retry = retry

    def __call__(self, value: Any) -> Any:
        raise OutputValidationError(self.message, retry=self.retry)


class RetryValidator:
    """Asks the model to retry with ``message`` whenever ``predicate`` is false."""

    def __init__(self, predicate: Callable[[Any], bool], message: str) -> None:
        self.predicate = predicate
        self.message = message

    def __call__(self, value: Any) -> Any:
        if not self.predicate(value):
            raise ModelRetry(self.message)
        return value
