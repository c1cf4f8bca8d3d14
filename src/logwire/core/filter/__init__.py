"""Filter expressions over decoded records.

Expressions are boolean predicates in a CEL-style language over four
variables:

- ``msg``: the record message (string)
- ``level``: the level name, e.g. ``"INFO"`` (string)
- ``time``: the record time (timestamp)
- ``attrs``: the record attributes (map of string to dyn)

Example:
    ```python
    program = compile_filter('level == "ERROR" && attrs.?user.orValue("") != ""')
    if eval_filter(program, record):
        ...
    ```
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from logwire.core.errors import FilterCompileError, FilterEvalError
from logwire.core.filter.checker import BOOL, DYN, STRING, TIMESTAMP, Type, check, map_of
from logwire.core.filter.runtime import EPOCH, Activation, compile_node
from logwire.core.filter.syntax import Node, parse
from logwire.core.models import Decision, Record
from logwire.core.ports import RecordCallback
from logwire.core.values import Kind, Opaque, Value

logger = logging.getLogger(__name__)

VARIABLES: dict[str, Type] = {
    "msg": STRING,
    "level": STRING,
    "time": TIMESTAMP,
    "attrs": map_of(STRING, DYN),
}


@dataclass(frozen=True)
class FilterProgram:
    """A compiled filter. Immutable and safe to share between threads."""

    expression: str
    ast: Node = field(repr=False)
    _run: Callable[[Activation], Any] = field(repr=False, compare=False)

    def evaluate(self, activation: Activation) -> bool:
        """Evaluate against an activation holding the four variables."""
        try:
            result = self._run(activation)
        except FilterEvalError:
            raise
        except (ArithmeticError, LookupError, TypeError, ValueError) as exc:
            raise FilterEvalError(f"error evaluating program: {exc}") from exc
        if not isinstance(result, bool):
            raise FilterEvalError(
                f"invalid filter expression output type: {type(result).__name__}"
            )
        return result


# @tra: Filter.Compile
# @tra: Filter.OutputType
def compile_filter(expression: str) -> FilterProgram:
    """Parse and type-check ``expression``.

    Raises:
        FilterCompileError: If the expression does not parse, does not
            type-check, or does not produce a bool.
    """
    ast = parse(expression)
    output = check(ast, VARIABLES, expression)
    if output != BOOL:
        raise FilterCompileError(
            f"invalid filter expression output type: {output}", expression
        )
    return FilterProgram(expression, ast, compile_node(ast))


def _attr_to_dynamic(value: Value) -> Any:
    if value.kind is Kind.GROUP:
        return {a.key: _attr_to_dynamic(a.value) for a in value.payload}
    payload = value.resolve().payload
    if isinstance(payload, Opaque):
        return {"type": payload.type_tag, "value": payload.data}
    return payload


def activation_for(record: Record) -> Activation:
    """Bind the filter variables from ``record``."""
    return {
        "msg": record.message,
        "level": record.level.name,
        "time": record.time if record.time is not None else EPOCH,
        "attrs": {k: _attr_to_dynamic(v) for k, v in record.attrs.items()},
    }


def eval_filter(program: FilterProgram | None, record: Record) -> bool:
    """Return True if ``record`` is selected by ``program``.

    A missing program selects every record.

    Raises:
        FilterEvalError: If the program cannot be evaluated for this record.
    """
    if program is None:
        return True
    return program.evaluate(activation_for(record))


class FilterErrorPolicy(Enum):
    """What to do when a record cannot be evaluated."""

    STOP = "stop"  # raise and abort the read
    SKIP = "skip"  # log a warning and reject the record


def select(
    fn: Callable[[Record], Decision | None],
    program: FilterProgram | None,
    on_error: FilterErrorPolicy = FilterErrorPolicy.STOP,
) -> RecordCallback:
    """Wrap ``fn`` so it only sees records accepted by ``program``.

    Args:
        fn: Downstream record callback.
        program: Compiled filter, or None to accept everything.
        on_error: Evaluation failure policy (default STOP).
    """

    def callback(record: Record) -> Decision | None:
        try:
            accepted = eval_filter(program, record)
        except FilterEvalError as exc:
            if on_error is FilterErrorPolicy.STOP:
                raise
            logger.warning(
                "skipping record: error evaluating filter %r: %s",
                program.expression if program else "",
                exc,
            )
            return Decision.CONTINUE
        if not accepted:
            return Decision.CONTINUE
        return fn(record)

    return callback


__all__ = [
    "FilterErrorPolicy",
    "FilterProgram",
    "VARIABLES",
    "activation_for",
    "compile_filter",
    "eval_filter",
    "select",
]
