"""Expression tree ADT: constants, sums, products, parameters and applications."""
from __future__ import annotations
from dataclasses import dataclass
from random import Random
from typing import Callable, List, Sequence, Tuple, Union

from tinyvm.instructions import Add, CallFunc, Const, Function, Instruction, LocalGet, Mul


# Values that tend to expose float formatting and rounding differences
INTERESTING_FLOATS = [0.0, -0.0, 1.0, -1.0, 0.1, 0.5, 2.0, 3.0, 1e-300, 1e300]


def _default_const_generator(rng: Random) -> float:
    """Default constant generator: an interesting float or a uniform one."""
    if rng.random() < 0.5:
        return rng.choice(INTERESTING_FLOATS)
    return rng.uniform(-1000.0, 1000.0)


@dataclass(frozen=True)
class Num:
    """A floating point constant."""
    value: float

    def __post_init__(self):
        if isinstance(self.value, bool) or not isinstance(self.value, (int, float)):
            raise TypeError(f"Num value must be int or float, got {type(self.value)}")
        object.__setattr__(self, 'value', float(self.value))


@dataclass(frozen=True)
class Sum:
    """Sum of two expressions."""
    left: Expr
    right: Expr


@dataclass(frozen=True)
class Product:
    """Product of two expressions."""
    left: Expr
    right: Expr


@dataclass(frozen=True)
class Param:
    """Reference to a parameter of the enclosing function."""
    index: int


@dataclass(frozen=True)
class Apply:
    """Application of a function table entry to argument expressions."""
    function_index: int
    args: Tuple[Expr, ...] = ()


Expr = Union[Num, Sum, Product, Param, Apply]


@dataclass(frozen=True)
class FunctionDef:
    """A returning function whose body is a single expression."""
    param_count: int
    body: Expr


# =============================================================================
# Compilation (Expr -> tinyvm instructions)
# =============================================================================

def compile_expr_to_instructions(expr: Expr) -> List[Instruction]:
    """
    Compile an expression tree to a list of tinyvm instructions.

    Uses post-order traversal: compile left operand, compile right operand,
    then emit the operation. Arguments of an application are compiled in
    order so the first argument becomes local 0 of the callee.

    Examples:
        Num(5)                  -> [Const(5.0)]
        Sum(Num(3), Num(4))     -> [Const(3.0), Const(4.0), Add()]
        Apply(1, (Param(0),))   -> [LocalGet(0), CallFunc(1)]
    """
    match expr:
        case Num(value=val):
            return [Const(val)]
        case Sum(left=left, right=right):
            return compile_expr_to_instructions(left) + compile_expr_to_instructions(right) + [Add()]
        case Product(left=left, right=right):
            return compile_expr_to_instructions(left) + compile_expr_to_instructions(right) + [Mul()]
        case Param(index=index):
            return [LocalGet(index)]
        case Apply(function_index=index, args=args):
            code: List[Instruction] = []
            for arg in args:
                code += compile_expr_to_instructions(arg)
            return code + [CallFunc(index)]
        case _:
            raise ValueError(f"Unknown expression type: {expr}")


def compile_function(definition: FunctionDef) -> Function:
    """Compile a function definition to a returning tinyvm Function."""
    return Function(
        param_count=definition.param_count,
        returns=True,
        code=compile_expr_to_instructions(definition.body),
    )


def compile_program(definitions: Sequence[FunctionDef]) -> List[Function]:
    """Compile a list of function definitions into a function table."""
    return [compile_function(definition) for definition in definitions]


# =============================================================================
# Evaluation (reference semantics)
# =============================================================================

def evaluate_expr(expr: Expr, definitions: Sequence[FunctionDef] = (), args: Sequence[float] = ()) -> float:
    """
    Evaluate an expression directly in Python.

    Operations are performed in the same order as the compiled code, so the
    result matches the machine bit for bit.

    Raises:
        ValueError: On a bad parameter index, function index or argument count
    """
    match expr:
        case Num(value=val):
            return val
        case Sum(left=left, right=right):
            return evaluate_expr(left, definitions, args) + evaluate_expr(right, definitions, args)
        case Product(left=left, right=right):
            return evaluate_expr(left, definitions, args) * evaluate_expr(right, definitions, args)
        case Param(index=index):
            if index >= len(args):
                raise ValueError(f"Parameter {index} outside {len(args)} arguments")
            return float(args[index])
        case Apply(function_index=index, args=arg_exprs):
            if index >= len(definitions):
                raise ValueError(f"Function {index} outside table of size {len(definitions)}")
            target = definitions[index]
            if len(arg_exprs) != target.param_count:
                raise ValueError(f"Function {index} expects {target.param_count} arguments, got {len(arg_exprs)}")
            values = [evaluate_expr(arg, definitions, args) for arg in arg_exprs]
            return evaluate_expr(target.body, definitions, values)
        case _:
            raise ValueError(f"Unknown expression type: {expr}")


# =============================================================================
# Random Expression Generation
# =============================================================================


def random_expr(
    rng: Random,
    max_depth: int = 3,
    param_count: int = 0,
    callables: Sequence[FunctionDef] = (),
    const_generator: Callable[[Random], float] = _default_const_generator
) -> Expr:
    """
    Generate a random expression tree.

    At each level, randomly chooses between:
    - Num (35% probability)
    - Sum (25% probability)
    - Product (25% probability)
    - Param (10% probability, only if param_count > 0)
    - Apply (5% probability, only if callables is non-empty)

    When max_depth reaches 0, only generates leaves to ensure termination.

    Args:
        rng: Random number generator (use Random(seed) for reproducibility)
        max_depth: Maximum depth of the expression tree
        param_count: Number of parameters the expression may reference
        callables: Function definitions the expression may apply, by index
        const_generator: Callable that generates constant values

    Returns:
        A randomly generated expression
    """
    def leaf() -> Expr:
        if param_count > 0 and rng.random() < 0.3:
            return Param(rng.randrange(param_count))
        return Num(const_generator(rng))

    if max_depth <= 0:
        return leaf()

    weights = [
        ("num", 35),
        ("sum", 25),
        ("product", 25),
        ("param", 10 if param_count > 0 else 0),
        ("apply", 5 if callables else 0),
    ]
    kinds, probs = zip(*weights)
    kind = rng.choices(kinds, weights=probs)[0]

    if kind == "num":
        return Num(const_generator(rng))
    elif kind == "sum":
        return Sum(
            random_expr(rng, max_depth - 1, param_count, callables, const_generator),
            random_expr(rng, max_depth - 1, param_count, callables, const_generator)
        )
    elif kind == "product":
        return Product(
            random_expr(rng, max_depth - 1, param_count, callables, const_generator),
            random_expr(rng, max_depth - 1, param_count, callables, const_generator)
        )
    elif kind == "param":
        return Param(rng.randrange(param_count))
    else:
        index = rng.randrange(len(callables))
        return Apply(index, tuple(
            random_expr(rng, max_depth - 1, param_count, callables, const_generator)
            for _ in range(callables[index].param_count)
        ))


def random_program(
    rng: Random,
    num_functions: int = 3,
    max_params: int = 3,
    max_depth: int = 3,
    const_generator: Callable[[Random], float] = _default_const_generator
) -> Tuple[List[FunctionDef], Expr]:
    """
    Generate a random function table and a top-level expression using it.

    Function i only applies functions with a smaller index, so every
    generated program terminates.

    Returns:
        Tuple of (function definitions, top-level expression)
    """
    definitions: List[FunctionDef] = []
    for _ in range(num_functions):
        param_count = rng.randint(0, max_params)
        body = random_expr(rng, max_depth, param_count, list(definitions), const_generator)
        definitions.append(FunctionDef(param_count, body))

    main = random_expr(rng, max_depth, 0, definitions, const_generator)
    return definitions, main
