"""Fault taxonomy for the tinyvm engine.

Every fault aborts the current execution: the exception propagates out of
Machine.execute / Machine.call and no instruction-level recovery happens.
"""


class VMFault(Exception):
    """Base exception for all tinyvm faults."""
    pass


class StackUnderflow(VMFault):
    """Raised when an instruction needs more operands than the stack holds."""
    pass


class MemoryOutOfBounds(VMFault):
    """Raised when a load or store span falls outside linear memory."""
    pass


class ArityMismatch(VMFault):
    """Raised when a function is called with the wrong number of arguments."""
    pass


class UnboundLocal(VMFault):
    """Raised on local access with no active scope, an out-of-range index, or an unbound slot."""
    pass


class MissingReturnValue(VMFault):
    """Raised when a returning function finishes with an empty operand stack."""
    pass


class UnknownFunction(VMFault):
    """Raised when a function index is outside the function table."""
    pass


class CallDepthExceeded(VMFault):
    """Raised when calls nest deeper than the machine's configured maximum."""
    pass


class InvalidInstruction(VMFault):
    """Raised when an object that is not an instruction reaches the dispatch loop."""
    pass
