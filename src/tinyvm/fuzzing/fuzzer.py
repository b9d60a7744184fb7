"""
Differential fuzzer for tinyvm - compares the machine against expression semantics.

Generates random programs and compares the machine's final stack with the
result of evaluating the same program directly in Python:
- expression: arithmetic expression trees compiled to Const/Add/Mul
- calls: a random function table plus a top-level expression applying it
- memory: store/load sequences, sometimes straying outside memory
- structured: raw instruction sequences that may fault in any way

For structured programs there is no oracle; the only check is that the
machine either succeeds or raises a VMFault, never anything else.
"""

from dataclasses import dataclass
from enum import Enum
import random
import struct
import sys
from typing import Callable, List, Optional, Sequence, Tuple

from tinyvm.errors import VMFault
from tinyvm.instructions import (
    Add, CallFunc, Const, Function, Instruction, Load, LocalGet, LocalSet, Mul, Store,
    stack_effect,
)
from tinyvm.machine import Machine, WORD_SIZE
from .expression import (
    INTERESTING_FLOATS,
    compile_expr_to_instructions, compile_program, evaluate_expr, random_expr, random_program,
)


# =============================================================================
# Configuration Constants
# =============================================================================

# Structure-aware generation probabilities
PROB_CONST = 0.35
PROB_ADD = 0.15
PROB_MUL = 0.15
PROB_LOAD = 0.08
PROB_STORE = 0.08
PROB_LOCAL_GET = 0.04
PROB_LOCAL_SET = 0.04
PROB_CALL = 0.11

# Chance of emitting an instruction the current stack height cannot satisfy
PROB_IGNORE_ARITY = 0.05

# Chance that a memory case contains one out-of-bounds access
PROB_OUT_OF_BOUNDS = 0.2


@dataclass
class GeneratorConfig:
    """Configuration for program generators."""
    max_instructions: int = 10        # For structured generator
    max_depth: int = 3                # For expression and calls generators
    max_functions: int = 3            # For calls and structured generators
    max_params: int = 3               # For calls and structured generators
    max_stores: int = 4               # For memory generator
    mem_size: int = 64


DEFAULT_CONFIG = GeneratorConfig()


# =============================================================================
# Execution Results
# =============================================================================

@dataclass(frozen=True)
class ExecutionResult:
    """Base class for execution results - used as a union type."""


@dataclass(frozen=True)
class FaultRaised(ExecutionResult):
    reason: str


@dataclass(frozen=True)
class Crash(ExecutionResult):
    reason: str


@dataclass(frozen=True)
class Success(ExecutionResult):
    stack: Tuple[float, ...]


@dataclass(frozen=True)
class FuzzCase:
    """A program to run on a fresh machine, with the result it must produce."""
    program: Tuple[Instruction, ...]
    functions: Tuple[Function, ...] = ()
    mem_size: int = 0
    expected: Optional[ExecutionResult] = None  # None: any non-crash result is acceptable


# =============================================================================
# Instruction Selection
# =============================================================================

class InstructionChoice(Enum):
    """Enum for instruction types in structure-aware generation."""
    CONST = "const"
    ADD = "add"
    MUL = "mul"
    LOAD = "load"
    STORE = "store"
    LOCAL_GET = "local_get"
    LOCAL_SET = "local_set"
    CALL = "call"


def choose_instruction(rng: random.Random) -> InstructionChoice:
    """Choose instruction type based on configured probabilities."""
    weights = [
        (InstructionChoice.CONST, int(PROB_CONST * 100)),
        (InstructionChoice.ADD, int(PROB_ADD * 100)),
        (InstructionChoice.MUL, int(PROB_MUL * 100)),
        (InstructionChoice.LOAD, int(PROB_LOAD * 100)),
        (InstructionChoice.STORE, int(PROB_STORE * 100)),
        (InstructionChoice.LOCAL_GET, int(PROB_LOCAL_GET * 100)),
        (InstructionChoice.LOCAL_SET, int(PROB_LOCAL_SET * 100)),
        (InstructionChoice.CALL, int(PROB_CALL * 100)),
    ]
    choices, probs = zip(*weights)
    return rng.choices(choices, weights=probs)[0]


# =============================================================================
# Program Generators
# =============================================================================

def generate_expression_case(rng: random.Random, config: GeneratorConfig = DEFAULT_CONFIG) -> FuzzCase:
    """Generate a pure arithmetic expression and its expected value."""
    expr = random_expr(rng, max_depth=config.max_depth)
    return FuzzCase(
        program=tuple(compile_expr_to_instructions(expr)),
        expected=Success((evaluate_expr(expr),)),
    )


def generate_calls_case(rng: random.Random, config: GeneratorConfig = DEFAULT_CONFIG) -> FuzzCase:
    """Generate a function table and a top-level expression applying it."""
    definitions, main = random_program(
        rng,
        num_functions=rng.randint(1, config.max_functions),
        max_params=config.max_params,
        max_depth=config.max_depth,
    )
    return FuzzCase(
        program=tuple(compile_expr_to_instructions(main)),
        functions=tuple(compile_program(definitions)),
        expected=Success((evaluate_expr(main, definitions),)),
    )


def generate_memory_case(rng: random.Random, config: GeneratorConfig = DEFAULT_CONFIG) -> FuzzCase:
    """
    Generate stores to distinct words followed by loads of the same words.

    With some probability one store targets an address outside memory, in
    which case the program must fault on that store.
    """
    words = config.mem_size // WORD_SIZE
    count = min(rng.randint(1, config.max_stores), words)
    addresses: List[float] = [float(word * WORD_SIZE) for word in rng.sample(range(words), count)]
    values = [
        rng.choice(INTERESTING_FLOATS) if rng.random() < 0.5 else rng.uniform(-1e6, 1e6)
        for _ in addresses
    ]

    out_of_bounds = not addresses or rng.random() < PROB_OUT_OF_BOUNDS
    if out_of_bounds:
        bad = rng.choice([
            -1.0,
            -float(WORD_SIZE),
            float(config.mem_size - rng.randint(1, WORD_SIZE - 1)),  # straddles the end
            float(config.mem_size),
            float("inf"),
            float("nan"),
        ])
        position = rng.randint(0, len(addresses))
        addresses.insert(position, bad)
        values.insert(position, 1.0)

    program: List[Instruction] = []
    for addr, value in zip(addresses, values):
        program += [Const(addr), Const(value), Store()]
    for addr in addresses:
        program += [Const(addr), Load()]

    expected: ExecutionResult
    if out_of_bounds:
        expected = FaultRaised("MemoryOutOfBounds")
    else:
        expected = Success(tuple(values))

    return FuzzCase(program=tuple(program), mem_size=config.mem_size, expected=expected)


def generate_structured_case(rng: random.Random, config: GeneratorConfig = DEFAULT_CONFIG) -> FuzzCase:
    """
    Generate a raw instruction sequence with no oracle.

    Instructions are mostly chosen so the simulated stack height can satisfy
    them, but with some probability arity is ignored to exercise faults.
    Some call targets are taken from a small generated function table, and
    some are out of range.
    """
    definitions, _ = random_program(
        rng,
        num_functions=rng.randint(1, config.max_functions),
        max_params=config.max_params,
        max_depth=1,
    )
    functions = tuple(compile_program(definitions))

    program: List[Instruction] = []
    height = 0
    for _ in range(rng.randint(1, config.max_instructions)):
        choice = choose_instruction(rng)
        if choice == InstructionChoice.CONST:
            instruction: Instruction = Const(rng.choice(INTERESTING_FLOATS + [float(config.mem_size)]))
        elif choice == InstructionChoice.ADD:
            instruction = Add()
        elif choice == InstructionChoice.MUL:
            instruction = Mul()
        elif choice == InstructionChoice.LOAD:
            instruction = Load()
        elif choice == InstructionChoice.STORE:
            instruction = Store()
        elif choice == InstructionChoice.LOCAL_GET:
            instruction = LocalGet(rng.randint(0, 2))
        elif choice == InstructionChoice.LOCAL_SET:
            instruction = LocalSet(rng.randint(0, 2))
        else:
            instruction = CallFunc(rng.randint(0, len(functions)))

        try:
            pops, pushes = stack_effect(instruction, functions)
        except ValueError:
            program.append(instruction)
            break  # Stop after an unknown function index

        if pops > height and rng.random() >= PROB_IGNORE_ARITY:
            continue

        program.append(instruction)
        height = max(height - pops, 0) + pushes

    return FuzzCase(program=tuple(program), functions=functions, mem_size=config.mem_size)


def generate_mixed_case(rng: random.Random, config: GeneratorConfig = DEFAULT_CONFIG) -> FuzzCase:
    """Generate a case with a generator chosen uniformly from the others."""
    generator = rng.choice([
        generate_expression_case,
        generate_calls_case,
        generate_memory_case,
        generate_structured_case,
    ])
    return generator(rng, config)


# Generator registry for dispatch
GENERATORS: dict[str, Callable[[random.Random, GeneratorConfig], FuzzCase]] = {
    "expression": generate_expression_case,
    "calls": generate_calls_case,
    "memory": generate_memory_case,
    "structured": generate_structured_case,
    "mixed": generate_mixed_case,
}


# =============================================================================
# Execution
# =============================================================================

def execute_case(case: FuzzCase) -> ExecutionResult:
    """Run a case on a fresh machine and classify the outcome."""
    machine = Machine(case.functions, case.mem_size)
    try:
        machine.execute(case.program)
        return Success(machine.stack)
    except VMFault as e:
        return FaultRaised(type(e).__name__)
    except Exception as e:
        return Crash(f"machine raised exception: {repr(e)}")


def _same_bits(left: Sequence[float], right: Sequence[float]) -> bool:
    """Compare float sequences bit for bit, so NaN and -0.0 compare exactly."""
    return len(left) == len(right) and all(
        struct.pack('<d', a) == struct.pack('<d', b) for a, b in zip(left, right)
    )


def compare_results(expected: Optional[ExecutionResult], actual: ExecutionResult) -> bool:
    """
    Compare execution results for equivalence.

    Returns True if results match, considering:
    - Without an expected result, anything but a crash matches
    - Faults match only faults of the same kind
    - Success only matches with bit-identical stack values
    """
    if expected is None:
        return not isinstance(actual, Crash)
    if type(expected) != type(actual):
        return False
    if isinstance(expected, Success):
        assert isinstance(actual, Success)
        return _same_bits(expected.stack, actual.stack)
    return expected == actual


# =============================================================================
# Statistics Tracking
# =============================================================================

@dataclass
class FuzzingStatistics:
    """Tracks fuzzing run statistics."""
    total_tests: int = 0
    bugs_found: int = 0
    crashes: int = 0
    faults: int = 0

    @property
    def completed_tests(self) -> int:
        return self.total_tests - self.faults - self.crashes

    @property
    def correct_tests(self) -> int:
        return self.total_tests - self.bugs_found

    @property
    def bug_rate(self) -> float:
        return (self.bugs_found / self.total_tests * 100) if self.total_tests > 0 else 0.0

    def record_test(self, actual: ExecutionResult, results_match: bool) -> None:
        """Record results of a single test."""
        self.total_tests += 1

        if isinstance(actual, FaultRaised):
            self.faults += 1

        if isinstance(actual, Crash):
            self.crashes += 1

        if not results_match:
            self.bugs_found += 1

    def print_summary(self) -> None:
        """Print formatted summary of results."""
        print("\n" + "=" * 60)
        print("Fuzzer Summary")
        print("-" * 40)
        print(f"Total tests run:           {self.total_tests}")
        print(f"Completed:                 {self.completed_tests}")
        print(f"Faulted:                   {self.faults}")
        print(f"Machine crashes:           {self.crashes}")
        print(f"Bugs found:                {self.bugs_found}")
        print(f"Correct:                   {self.correct_tests}")

        if self.bugs_found > 0:
            print(f"Bug detection rate:     {self.bug_rate:.1f}%")
        else:
            print("\nNo bugs detected!")


# =============================================================================
# Bug Reporting
# =============================================================================

def report_bug(test_num: int, case: FuzzCase, actual: ExecutionResult) -> None:
    """Print detailed bug report."""
    print(f"\nTest {test_num}: Bug found")
    print(f"  Program:   {list(case.program)}")
    if case.functions:
        for index, function in enumerate(case.functions):
            print(f"  Function {index}: {function}")
    print(f"  Expected:  {case.expected}")
    print(f"  Actual:    {actual}")


def print_header(num_tests: int, generator: str) -> None:
    """Print fuzzer run header."""
    print(f"tinyvm Fuzzer - Running {num_tests} tests")
    print(f"Generator: {generator}")
    print("=" * 60)


# =============================================================================
# Fuzzer Main Logic
# =============================================================================

def run_single_test(case: FuzzCase) -> tuple[ExecutionResult, bool]:
    """
    Run a single fuzzing test case.

    Returns:
        Tuple of (machine_result, results_match)
    """
    actual = execute_case(case)
    return actual, compare_results(case.expected, actual)


def run_fuzzer(
    num_tests: int = 1000,
    seed: Optional[int] = None,
    generator: str = "mixed",
    config: GeneratorConfig = DEFAULT_CONFIG,
    verbose: bool = True
) -> FuzzingStatistics:
    """
    Run the fuzzer for a specified number of tests.

    Args:
        num_tests: Number of random test cases to generate
        seed: Random seed for reproducibility
        generator: Generator type: "expression", "calls", "memory", "structured" or "mixed"
        config: Generator configuration
        verbose: Print header, bug reports and summary

    Returns:
        FuzzingStatistics object with results

    Raises:
        ValueError: If the generator is unknown
    """
    if generator not in GENERATORS:
        available = ', '.join(GENERATORS)
        raise ValueError(f"Unknown generator: {generator}. Available: {available}")

    rng = random.Random(seed)
    generator_func = GENERATORS[generator]
    stats = FuzzingStatistics()

    if verbose:
        print_header(num_tests, generator)

    for i in range(num_tests):
        case = generator_func(rng, config)
        actual, matches = run_single_test(case)

        stats.record_test(actual, matches)

        if not matches and verbose:
            report_bug(i + 1, case, actual)

    if verbose:
        stats.print_summary()
    return stats


# =============================================================================
# CLI Entry Point
# =============================================================================

def main(argv: Optional[List[str]] = None) -> int:
    import argparse

    parser = argparse.ArgumentParser(description="Differential fuzzer for tinyvm")
    parser.add_argument(
        "-n", "--num-tests",
        type=int,
        default=1000,
        help="Number of random test cases to run (default: 1000)"
    )
    parser.add_argument(
        "-s", "--seed",
        type=int,
        default=None,
        help="Random seed for reproducibility"
    )
    parser.add_argument(
        "-g", "--generator",
        type=str,
        default="mixed",
        choices=list(GENERATORS),
        help="Generator type (default: %(default)s)"
    )
    parser.add_argument(
        "-m", "--mem-size",
        type=int,
        default=DEFAULT_CONFIG.mem_size,
        help="Linear memory size in bytes for memory and structured cases (default: %(default)s)"
    )

    args = parser.parse_args(argv)

    if args.mem_size < 0:
        parser.error(f"--mem-size must be non-negative, got {args.mem_size}")
    if args.num_tests < 0:
        parser.error(f"--num-tests must be non-negative, got {args.num_tests}")

    stats = run_fuzzer(
        num_tests=args.num_tests,
        seed=args.seed,
        generator=args.generator,
        config=GeneratorConfig(mem_size=args.mem_size),
    )
    return 1 if stats.bugs_found else 0


if __name__ == "__main__":
    sys.exit(main())
