"""
Enumeration-based test generation for tinyvm.

This module provides exhaustive test generation by systematically enumerating
all possible programs within bounded model spaces. Unlike probabilistic fuzzing,
enumeration provides guaranteed coverage of the bounded model.
"""

from typing import Iterator, List

from tinyvm.instructions import Add, CallFunc, Const, Function, Load, LocalGet, Mul, Store
from tinyvm.machine import WORD_SIZE
from .expression import Expr, Num, Sum, Product, compile_expr_to_instructions, evaluate_expr
from .fuzzer import FaultRaised, FuzzCase, Success


# ============================================================
# Configuration
# ============================================================

# Interesting constants for boundary value analysis
BOUNDARY_CONSTANTS = [
    0.0,         # Zero
    -0.0,        # Negative zero
    1.0,         # Multiplicative identity
    -1.0,        # Sign flip
    0.1,         # Not exactly representable
    3.0,         # Small integer
    1e308,       # Near the largest finite double
]

# Minimal interesting constants for smaller test suites
MINIMAL_CONSTANTS = [0.0, 1.0, 0.1]

# Memory size used by the memory boundary tests
DEFAULT_MEM_SIZE = 64

STORED_VALUE = 42.5


# ============================================================
# Expression Enumeration
# ============================================================

def enumerate_expressions(depth: int, constants: List[float]) -> Iterator[Expr]:
    """
    Exhaustively enumerate all expressions up to given depth.

    Args:
        depth: Maximum expression tree depth (0 = constants only)
        constants: List of constant values to use

    Yields:
        All possible expressions within the depth bound

    Example:
        depth=0: [Num(0.0), Num(1.0), ...]
        depth=1: All constants + Sum(Num, Num), Product(Num, Num), ...
    """
    if depth == 0:
        for c in constants:
            yield Num(c)
    else:
        sub_exprs = list(enumerate_expressions(depth - 1, constants))

        for left in sub_exprs:
            for right in sub_exprs:
                yield Sum(left, right)
                yield Product(left, right)

        for c in constants:
            yield Num(c)


def enumerate_expression_programs(max_depth: int,
                                  constants: List[float] = MINIMAL_CONSTANTS) -> Iterator[FuzzCase]:
    """
    Enumerate all expression-based programs up to given depth.

    Args:
        max_depth: Maximum expression tree depth
        constants: List of constant values to use

    Yields:
        A case per expression, expecting the expression's value
    """
    for depth in range(max_depth + 1):
        for expr in enumerate_expressions(depth, constants):
            yield FuzzCase(
                program=tuple(compile_expr_to_instructions(expr)),
                expected=Success((evaluate_expr(expr),)),
            )


# ============================================================
# Boundary Value Tests
# ============================================================

def _in_bounds(addr: float, mem_size: int) -> bool:
    start = int(addr)
    return start >= 0 and start + WORD_SIZE <= mem_size


def enumerate_memory_boundary_tests(mem_size: int = DEFAULT_MEM_SIZE) -> Iterator[FuzzCase]:
    """
    Enumerate store-then-load programs around both ends of memory.

    Fractional addresses are included because addresses are truncated
    toward zero: -0.5 truncates to 0 and is in bounds.

    Yields:
        Cases expecting the stored value back, or MemoryOutOfBounds
    """
    last = float(mem_size - WORD_SIZE)
    addresses = [
        -float(WORD_SIZE), -1.0, -0.5, 0.0, 1.0,
        last - 1.0, last, last + 0.9, last + 1.0,
        float(mem_size - 1), float(mem_size),
    ]

    for addr in addresses:
        program = (Const(addr), Const(STORED_VALUE), Store(), Const(addr), Load())
        if _in_bounds(addr, mem_size):
            expected = Success((STORED_VALUE,))
        else:
            expected = FaultRaised("MemoryOutOfBounds")
        yield FuzzCase(program=program, mem_size=mem_size, expected=expected)


def enumerate_stack_underflow_tests() -> Iterator[FuzzCase]:
    """
    Enumerate test cases that should trigger stack underflow.

    Yields:
        Cases expecting a StackUnderflow fault
    """
    underflow = FaultRaised("StackUnderflow")

    # Operations without sufficient stack values
    yield FuzzCase(program=(Add(),), expected=underflow)
    yield FuzzCase(program=(Mul(),), expected=underflow)
    yield FuzzCase(program=(Load(),), mem_size=DEFAULT_MEM_SIZE, expected=underflow)
    yield FuzzCase(program=(Store(),), mem_size=DEFAULT_MEM_SIZE, expected=underflow)

    # One value, but need two
    for value in MINIMAL_CONSTANTS:
        yield FuzzCase(program=(Const(value), Add()), expected=underflow)
        yield FuzzCase(program=(Const(value), Mul()), expected=underflow)
        yield FuzzCase(program=(Const(value), Store()), mem_size=DEFAULT_MEM_SIZE, expected=underflow)

    # Calls with fewer arguments on the stack than parameters
    for param_count in range(1, 4):
        function = Function(param_count=param_count, returns=True, code=(LocalGet(0),))
        for supplied in range(param_count):
            program = tuple(Const(1.0) for _ in range(supplied)) + (CallFunc(0),)
            yield FuzzCase(program=program, functions=(function,), expected=underflow)


# ============================================================
# Comprehensive Test Suites
# ============================================================

def generate_comprehensive_suite(max_expr_depth: int = 2) -> Iterator[FuzzCase]:
    """
    Generate comprehensive exhaustive test suite with deduplication.

    Combines expression enumeration with targeted boundary tests, removing
    any duplicates to ensure each test is unique.

    Args:
        max_expr_depth: Maximum expression tree depth (1-2 recommended)

    Yields:
        Cases for comprehensive test suite (deduplicated)
    """
    seen = set()

    def sources() -> Iterator[FuzzCase]:
        yield from enumerate_expression_programs(max_depth=max_expr_depth,
                                                 constants=BOUNDARY_CONSTANTS)
        yield from enumerate_memory_boundary_tests()
        yield from enumerate_stack_underflow_tests()

    for case in sources():
        # repr keeps -0.0 and 0.0 apart, which == does not
        key = repr((case.program, case.functions, case.mem_size))
        if key not in seen:
            seen.add(key)
            yield case
