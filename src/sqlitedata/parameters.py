"""
Parameter model for commands.

A `QueryParameter` is one named binding; a `PreparedCommand` pairs command
text with its bindings for deferred (batch) execution. Both are immutable so
a binding can never be altered by the execution that consumes it.
"""
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

__all__ = [
    'QueryParameter',
    'PreparedCommand',
    'PLACEHOLDER_PREFIXES',
    'single',
    'params',
    'as_parameters',
]

PLACEHOLDER_PREFIXES = (':', '@', '$')


@dataclass(frozen=True, slots=True)
class QueryParameter:
    """Named query parameter.

    The name may be given bare (``ID``) or with its placeholder prefix
    (``:ID``). SQLite has no output parameters, so ``is_output`` is carried
    for callers but bound as a regular input.
    """
    name: str
    value: Any = None
    is_output: bool = False

    @property
    def key(self) -> str:
        """Parameter name without its placeholder prefix."""
        if self.name[:1] in PLACEHOLDER_PREFIXES:
            return self.name[1:]
        return self.name

    @property
    def placeholder(self) -> str:
        """Placeholder token as it appears in command text."""
        if self.name[:1] in PLACEHOLDER_PREFIXES:
            return self.name
        return f':{self.name}'


@dataclass(frozen=True, slots=True)
class PreparedCommand:
    """Command text with its parameters, executed later as part of a batch.
    """
    command_text: str
    parameters: tuple[QueryParameter, ...] = field(default_factory=tuple)

    def __post_init__(self):
        object.__setattr__(self, 'parameters', as_parameters(self.parameters))


def single(name: str, value: Any) -> tuple[QueryParameter]:
    """Parameter sequence containing a single binding."""
    return (QueryParameter(name, value),)


def params(**kwargs: Any) -> tuple[QueryParameter, ...]:
    """Build parameters from keyword arguments in call order.

    Examples
        >>> params(ID=7, Name='Widget')
        (QueryParameter(name='ID', value=7, is_output=False), QueryParameter(name='Name', value='Widget', is_output=False))
    """
    return tuple(QueryParameter(name, value) for name, value in kwargs.items())


def as_parameters(parameters: Iterable[QueryParameter] | Mapping[str, Any] | None
                  ) -> tuple[QueryParameter, ...]:
    """Normalize caller input into a tuple of parameters.

    Accepts None, a mapping of name to value, or an iterable of
    `QueryParameter` instances.
    """
    if parameters is None:
        return ()
    if isinstance(parameters, Mapping):
        return tuple(QueryParameter(name, value) for name, value in parameters.items())
    result = tuple(parameters)
    for p in result:
        if not isinstance(p, QueryParameter):
            raise TypeError(f'Expected QueryParameter, got {type(p).__name__}')
    return result
