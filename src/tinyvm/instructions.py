from dataclasses import dataclass, field
from typing import Dict, Sequence, Tuple, Type, Union

# =============================================================================
# Instruction ADT
# =============================================================================

@dataclass(frozen=True)
class Const:
    """Push a 64-bit floating point constant onto the stack."""
    value: float

    def __post_init__(self):
        if isinstance(self.value, bool) or not isinstance(self.value, (int, float)):
            raise TypeError(f"Const value must be int or float, got {type(self.value).__name__}")
        object.__setattr__(self, 'value', float(self.value))


@dataclass(frozen=True)
class Add:
    """Pop two values, push their sum."""
    pass


@dataclass(frozen=True)
class Mul:
    """Pop two values, push their product."""
    pass


@dataclass(frozen=True)
class Load:
    """Pop an address, push the 8-byte value stored there."""
    pass


@dataclass(frozen=True)
class Store:
    """Pop a value, pop an address, write the value to memory at the address."""
    pass


def _check_index(kind: str, name: str, value: int) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"{kind} {name} must be int, got {type(value).__name__}")
    if value < 0:
        raise ValueError(f"{kind} {name} must be non-negative, got {value}")


@dataclass(frozen=True)
class LocalGet:
    """Push the current scope's local at the given index."""
    index: int

    def __post_init__(self):
        _check_index("LocalGet", "index", self.index)


@dataclass(frozen=True)
class LocalSet:
    """Pop a value and bind it to the current scope's local at the given index."""
    index: int

    def __post_init__(self):
        _check_index("LocalSet", "index", self.index)


@dataclass(frozen=True)
class CallFunc:
    """Call the function at the given table index."""
    function_index: int

    def __post_init__(self):
        _check_index("CallFunc", "function_index", self.function_index)


Instruction = Union[Const, Add, Mul, Load, Store, LocalGet, LocalSet, CallFunc]

INSTRUCTION_TYPES: Tuple[type, ...] = (Const, Add, Mul, Load, Store, LocalGet, LocalSet, CallFunc)

# =============================================================================
# Functions
# =============================================================================

@dataclass(frozen=True)
class Function:
    """
    A callable entry in the machine's function table.

    Locals 0..param_count-1 are bound to the call arguments. A further
    local_count slots follow the parameters; they start unbound and are
    bound with LocalSet.
    """
    param_count: int
    returns: bool
    code: Sequence[Instruction] = field(default_factory=tuple)
    local_count: int = 0

    def __post_init__(self):
        _check_index("Function", "param_count", self.param_count)
        _check_index("Function", "local_count", self.local_count)
        object.__setattr__(self, 'code', tuple(self.code))

    @property
    def scope_size(self) -> int:
        """Number of local slots an activation of this function owns."""
        return self.param_count + self.local_count

# =============================================================================
# Stack effects
# =============================================================================

# (pops, pushes) for instructions whose arity does not depend on the function table
STACK_EFFECTS: Dict[Type, Tuple[int, int]] = {
    Const: (0, 1),
    Add: (2, 1),
    Mul: (2, 1),
    Load: (1, 1),
    Store: (2, 0),
    LocalGet: (0, 1),
    LocalSet: (1, 0),
}


def stack_effect(instruction: Instruction, functions: Sequence[Function] = ()) -> Tuple[int, int]:
    """
    Return the (pops, pushes) stack effect of an instruction.

    CallFunc pops the target's parameters and pushes one value if the
    target returns, so it needs the function table to resolve.

    Raises:
        ValueError: If a CallFunc index is outside the function table
        TypeError: If the object is not an instruction
    """
    match instruction:
        case CallFunc(function_index=index):
            if index >= len(functions):
                raise ValueError(f"CallFunc index {index} outside function table of size {len(functions)}")
            target = functions[index]
            return target.param_count, 1 if target.returns else 0
        case _ if type(instruction) in STACK_EFFECTS:
            return STACK_EFFECTS[type(instruction)]
        case _:
            raise TypeError(f"Unknown instruction: {instruction!r}")
