"""tinyvm: a small embeddable stack machine over 64-bit floats."""

from .instructions import (
    # Instructions
    Const, Add, Mul, Load, Store, LocalGet, LocalSet, CallFunc, Instruction,
    INSTRUCTION_TYPES,
    # Functions
    Function,
    # Stack effects
    STACK_EFFECTS, stack_effect,
)

from .errors import (
    VMFault, StackUnderflow, MemoryOutOfBounds, ArityMismatch, UnboundLocal,
    MissingReturnValue, UnknownFunction, CallDepthExceeded, InvalidInstruction,
)

from .machine import (
    WORD_SIZE, DEFAULT_MAX_CALL_DEPTH,
    Scope, Machine,
)

from .trace import (
    TraceWatcher, TraceEvent, RecordingTraceWatcher, PrintTraceWatcher,
)

__version__ = "0.1.0"
