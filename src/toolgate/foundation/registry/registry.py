"""Tool registry: name -> (contract, handler).

The registry provides:
- Registration with duplicate-name rejection
- Lock-free lookup for concurrent dispatch
- Snapshot listing in registration order
- Idempotent deregistration
- MCP `tools/list` rendering

Concurrency is copy-on-write: writers serialize on a lock, build a fresh
mapping and publish it with a single reference swap. Readers grab the current
reference and never block, so a lookup racing a registration sees either the
old or the new mapping, never a half-built one.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Iterator, Mapping
from dataclasses import dataclass
from types import MappingProxyType

from toolgate.foundation.core import FunctionHandler, ToolContract, ToolHandler, as_handler
from toolgate.foundation.errors import DuplicateToolError, JsonDict, ToolNotFoundError
from toolgate.foundation.schema import ParameterSchema
from toolgate.runtime.observability import get_logger

log = get_logger("toolgate.registry")


@dataclass(slots=True, frozen=True)
class RegisteredTool:
    """A registry entry. Owns its handler exclusively."""

    contract: ToolContract
    handler: ToolHandler
    registered_at: float

    @property
    def name(self) -> str:
        return self.contract.name


_EMPTY: Mapping[str, RegisteredTool] = MappingProxyType({})


class ToolRegistry:
    """Registry of tools available for dispatch.

    Construct one per server and inject it into the Dispatcher.

    Example:
        >>> registry = ToolRegistry()
        >>> registry.register(
        ...     ToolContract(name="echo", description="Echo text back",
        ...                  parameter_schema=ParameterSchema.of(text=required(FieldSpec(type="string")))),
        ...     FunctionHandler(lambda text: text),
        ... )
        >>> registry.get("echo").contract.name
        'echo'

    Decorator form:
        >>> @registry.tool("shout", "Upper-case the input", schema=ParameterSchema.of(text=FieldSpec(type="string")))
        ... def shout(text: str = "") -> str:
        ...     return text.upper()
    """

    __slots__ = ("_entries", "_lock")

    def __init__(self) -> None:
        self._entries: Mapping[str, RegisteredTool] = _EMPTY
        self._lock = threading.Lock()

    # ─────────────────────────────────────────────────────────────────
    # Mutation (serialized, copy-on-write)
    # ─────────────────────────────────────────────────────────────────

    def register(self, contract: ToolContract, handler: ToolHandler | Callable[..., object]) -> RegisteredTool:
        """Register a contract with its handler.

        Bare callables are wrapped in FunctionHandler.

        Raises:
            DuplicateToolError: A tool with this name already exists
        """
        entry = RegisteredTool(contract, as_handler(handler), time.time())
        with self._lock:
            if contract.name in self._entries:
                raise DuplicateToolError(contract.name)
            self._entries = MappingProxyType({**self._entries, contract.name: entry})
        log.info("tool registered", tool=contract.name, side_effects=contract.declares_side_effects)
        return entry

    def unregister(self, name: str) -> bool:
        """Remove a tool by name. Returns True if it existed; never raises."""
        with self._lock:
            if name not in self._entries:
                return False
            self._entries = MappingProxyType({k: v for k, v in self._entries.items() if k != name})
        log.info("tool unregistered", tool=name)
        return True

    def clear(self) -> None:
        with self._lock:
            self._entries = _EMPTY

    def tool(
        self,
        name: str,
        description: str,
        *,
        schema: ParameterSchema | None = None,
        side_effects: bool = False,
    ) -> Callable[[Callable[..., object]], Callable[..., object]]:
        """Decorator registering a plain function as a tool. Returns the function unchanged."""
        def decorator(func: Callable[..., object]) -> Callable[..., object]:
            contract = ToolContract(
                name=name,
                description=description,
                parameter_schema=schema or ParameterSchema.empty(),
                declares_side_effects=side_effects,
            )
            self.register(contract, FunctionHandler(func))
            return func
        return decorator

    # ─────────────────────────────────────────────────────────────────
    # Lookup (lock-free)
    # ─────────────────────────────────────────────────────────────────

    def get(self, name: str) -> RegisteredTool | None:
        return self._entries.get(name)

    def lookup(self, name: str) -> RegisteredTool:
        """Get tool by name, raising ToolNotFoundError if absent."""
        if (entry := self._entries.get(name)) is None:
            raise ToolNotFoundError(name)
        return entry

    def __contains__(self, name: object) -> bool:
        return name in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[ToolContract]:
        return iter(self.list_tools())

    def names(self) -> tuple[str, ...]:
        return tuple(self._entries)

    def list_tools(self) -> tuple[ToolContract, ...]:
        """Contracts in registration order, as of one consistent snapshot."""
        return tuple(e.contract for e in self._entries.values())

    def to_mcp_tools(self) -> list[JsonDict]:
        """Render the snapshot as MCP `tools/list` descriptors."""
        return [c.to_mcp() for c in self.list_tools()]

    def describe(self) -> str:
        """Formatted one-line-per-tool listing for prompts and debugging."""
        return "\n".join(
            f"- **{c.name}**{' (side effects)' if c.declares_side_effects else ''}: {c.description}"
            for c in self.list_tools()
        )
