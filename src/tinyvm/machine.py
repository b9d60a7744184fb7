import math
import struct
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

from tinyvm.errors import (
    ArityMismatch, CallDepthExceeded, InvalidInstruction, MemoryOutOfBounds,
    MissingReturnValue, StackUnderflow, UnboundLocal, UnknownFunction,
)
from tinyvm.instructions import (
    Add, CallFunc, Const, Function, Instruction, Load, LocalGet, LocalSet, Mul, Store,
)
from tinyvm.trace import TraceWatcher

# =============================================================================
# Constants
# =============================================================================

# Load/Store move one little-endian IEEE-754 double
WORD = struct.Struct('<d')
WORD_SIZE = WORD.size

DEFAULT_MAX_CALL_DEPTH = 200

# =============================================================================
# Local scope
# =============================================================================

class Scope:
    """
    Local bindings owned by a single function activation.

    Slots 0..size-1 exist; parameters are bound at construction, the rest
    stay unbound until set. Values are copied in, never shared with the
    caller.
    """

    def __init__(self, size: int, args: Iterable[float] = ()) -> None:
        self.size = size
        self._locals: Dict[int, float] = {}
        for index, value in enumerate(args):
            if index >= size:
                raise ValueError(f"Scope of size {size} cannot bind argument {index}")
            self._locals[index] = float(value)

    def get(self, index: int) -> float:
        if index >= self.size:
            raise UnboundLocal(f"Local {index} outside scope of size {self.size}")
        if index not in self._locals:
            raise UnboundLocal(f"Local {index} read before it was set")
        return self._locals[index]

    def set(self, index: int, value: float) -> None:
        if index >= self.size:
            raise UnboundLocal(f"Local {index} outside scope of size {self.size}")
        self._locals[index] = float(value)

    def snapshot(self) -> Dict[int, float]:
        return dict(self._locals)

# =============================================================================
# Machine
# =============================================================================

class Machine:
    """
    Stack machine with fixed linear memory and an index-addressed function table.

    The operand stack is shared by every activation; each call gets its own
    Scope. Faults are raised as VMFault subclasses and abort the whole
    execution.

    max_call_depth bounds nested activations. Each activation costs three
    Python frames, so the default of 200 is a conservative limit that stays
    clear of CPython's default recursion limit of 1000 with room for the
    host's own frames. Raise it together with sys.setrecursionlimit for
    deeper call chains.
    """

    def __init__(
        self,
        functions: Sequence[Function] = (),
        mem_size: int = 0,
        max_call_depth: int = DEFAULT_MAX_CALL_DEPTH,
        trace_watcher: Optional[TraceWatcher] = None
    ) -> None:
        if isinstance(mem_size, bool) or not isinstance(mem_size, int) or mem_size < 0:
            raise ValueError(f"Memory size must be a non-negative int, got {mem_size!r}")
        if max_call_depth < 0:
            raise ValueError(f"max_call_depth must be non-negative, got {max_call_depth}")

        self.functions: Tuple[Function, ...] = tuple(functions)
        self.max_call_depth = max_call_depth
        self.trace_watcher = trace_watcher
        self._stack: List[float] = []
        self._memory = bytearray(mem_size)
        self._depth = 0

    def set_trace_watcher(self, watcher: Optional[TraceWatcher]) -> None:
        """Set the trace watcher (replaces any existing watcher, None disables tracing)."""
        self.trace_watcher = watcher

    # -------------------------------------------------------------------------
    # Operand stack
    # -------------------------------------------------------------------------

    @property
    def stack(self) -> Tuple[float, ...]:
        """Snapshot of the operand stack, bottom first."""
        return tuple(self._stack)

    @property
    def depth(self) -> int:
        """Number of function activations currently executing."""
        return self._depth

    def push(self, item: float) -> None:
        self._stack.append(float(item))

    def pop(self) -> float:
        if not self._stack:
            raise StackUnderflow("Cannot pop from an empty stack")
        return self._stack.pop()

    def peek(self) -> float:
        if not self._stack:
            raise StackUnderflow("Cannot peek at an empty stack")
        return self._stack[-1]

    def _require(self, count: int, what: str) -> None:
        if len(self._stack) < count:
            raise StackUnderflow(f"{what} requires {count} stack elements, have {len(self._stack)}")

    # -------------------------------------------------------------------------
    # Linear memory
    # -------------------------------------------------------------------------

    @property
    def memory_size(self) -> int:
        return len(self._memory)

    @property
    def memory(self) -> bytes:
        """Copy of linear memory."""
        return bytes(self._memory)

    def _check_span(self, addr: Union[int, float]) -> int:
        if not isinstance(addr, int):
            addr = self._address(addr)
        if addr < 0 or addr + WORD_SIZE > len(self._memory):
            raise MemoryOutOfBounds(
                f"Access of {WORD_SIZE} bytes at {addr} outside memory of {len(self._memory)} bytes"
            )
        return addr

    def load(self, addr: Union[int, float]) -> float:
        """Read the double stored at addr; float addresses are truncated like stack values."""
        addr = self._check_span(addr)
        return WORD.unpack_from(self._memory, addr)[0]

    def store(self, addr: Union[int, float], value: float) -> None:
        """Write value as a double at addr; float addresses are truncated like stack values."""
        addr = self._check_span(addr)
        WORD.pack_into(self._memory, addr, value)

    @staticmethod
    def _address(value: float) -> int:
        """Truncate a stack value to a memory address."""
        if not math.isfinite(value):
            raise MemoryOutOfBounds(f"Address {value} is not finite")
        return int(value)

    def reset(self) -> None:
        """Clear the operand stack and zero memory, keeping the function table."""
        self._stack.clear()
        self._memory[:] = bytes(len(self._memory))
        self._depth = 0

    # -------------------------------------------------------------------------
    # Execution
    # -------------------------------------------------------------------------

    def _function(self, index: int) -> Function:
        if index < 0 or index >= len(self.functions):
            raise UnknownFunction(f"Function index {index} outside table of size {len(self.functions)}")
        return self.functions[index]

    @staticmethod
    def _active(scope: Optional[Scope], what: str) -> Scope:
        if scope is None:
            raise UnboundLocal(f"{what} used outside a function call")
        return scope

    def execute(self, instructions: Iterable[Instruction], scope: Optional[Scope] = None) -> None:
        """
        Execute instructions in order against the shared stack and memory.

        Args:
            instructions: Instruction sequence to run
            scope: Local scope of the enclosing call, None at top level

        Raises:
            VMFault: Any fault aborts execution immediately
        """
        for instruction in instructions:
            if self.trace_watcher is not None:
                self.trace_watcher.on_instruction(instruction, tuple(self._stack), self._depth)
            self._step(instruction, scope)

    def _step(self, instruction: Instruction, scope: Optional[Scope]) -> None:
        stack = self._stack

        match instruction:
            case Const(value=value):
                stack.append(value)

            case Add():
                self._require(2, "Add")
                b = stack.pop()
                a = stack.pop()
                stack.append(a + b)

            case Mul():
                self._require(2, "Mul")
                b = stack.pop()
                a = stack.pop()
                stack.append(a * b)

            case Load():
                self._require(1, "Load")
                stack[-1] = self.load(self._address(stack[-1]))

            case Store():
                self._require(2, "Store")
                self.store(self._address(stack[-2]), stack[-1])
                del stack[-2:]

            case LocalGet(index=index):
                stack.append(self._active(scope, "LocalGet").get(index))

            case LocalSet(index=index):
                active = self._active(scope, "LocalSet")
                self._require(1, "LocalSet")
                active.set(index, stack[-1])
                stack.pop()

            case CallFunc(function_index=index):
                function = self._function(index)
                self._require(function.param_count, f"CallFunc({index})")
                base = len(stack) - function.param_count
                args = stack[base:]
                del stack[base:]
                result = self.call(function, args)
                if result is not None:
                    stack.append(result)

            case _:
                raise InvalidInstruction(f"Unknown instruction type: {instruction!r}")

    def call(self, function: Union[int, Function], args: Sequence[float] = ()) -> Optional[float]:
        """
        Invoke a function with arguments bound to a fresh local scope.

        Args:
            function: A Function, or an index into the function table
            args: Argument values; args[k] becomes local k

        Returns:
            The popped result if the function returns, otherwise None

        Raises:
            UnknownFunction: If an index is outside the function table
            ArityMismatch: If len(args) differs from the parameter count
            CallDepthExceeded: If the call would nest too deeply
            MissingReturnValue: If a returning function leaves the stack empty
        """
        if isinstance(function, int) and not isinstance(function, bool):
            function = self._function(function)
        elif not isinstance(function, Function):
            raise TypeError(f"Cannot call {function!r}")

        args = list(args)
        if len(args) != function.param_count:
            raise ArityMismatch(f"Function expects {function.param_count} arguments, got {len(args)}")

        if self._depth >= self.max_call_depth:
            raise CallDepthExceeded(f"Call depth limit of {self.max_call_depth} exceeded")

        scope = Scope(function.scope_size, args)
        base = len(self._stack)
        self._depth += 1
        try:
            self.execute(function.code, scope)
        finally:
            self._depth -= 1

        if not function.returns:
            return None

        if len(self._stack) <= base:
            raise MissingReturnValue("Returning function pushed no value above its entry stack height")

        return self._stack.pop()
