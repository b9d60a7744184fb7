"""Fuzzing and enumeration framework for tinyvm."""

from .fuzzer import (
    ExecutionResult, Success, FaultRaised, Crash,
    FuzzCase, GeneratorConfig, DEFAULT_CONFIG, GENERATORS,
    FuzzingStatistics,
    execute_case, compare_results,
    run_fuzzer,
)

from .expression import (
    Expr, Num, Sum, Product, Param, Apply, FunctionDef,
    compile_expr_to_instructions,
    compile_function,
    compile_program,
    evaluate_expr,
    random_expr,
    random_program,
)
