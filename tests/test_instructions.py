"""
Tests for the tinyvm instruction set and function definitions.

Run with: uv run pytest tests/test_instructions.py
"""

import dataclasses

from tinyvm import (
    Const, Add, Mul, Load, Store, LocalGet, LocalSet, CallFunc, Function,
    INSTRUCTION_TYPES, STACK_EFFECTS, stack_effect,
)


def test_construction():
    print("Instruction Construction Tests")
    print("=" * 50)

    assert Const(2).value == 2.0
    assert isinstance(Const(2).value, float)
    assert Const(-0.5) == Const(-0.5)
    assert Add() == Add()
    assert LocalGet(1) != LocalGet(2)
    assert LocalGet(0) != LocalSet(0)
    print("✓ Construction and equality")

    for bad in [True, "1.0", None, [1.0]]:
        try:
            Const(bad)
            assert False, f"Should have raised TypeError for {bad!r}"
        except TypeError:
            pass
    print("✓ Const rejects non-numbers")

    for cls in (LocalGet, LocalSet, CallFunc):
        try:
            cls(-1)
            assert False, f"{cls.__name__} should reject negative indices"
        except ValueError:
            pass
        try:
            cls(1.0)
            assert False, f"{cls.__name__} should reject float indices"
        except TypeError:
            pass
    print("✓ Index validation")

    try:
        Const(1.0).value = 2.0
        assert False, "Should have raised FrozenInstanceError"
    except dataclasses.FrozenInstanceError:
        pass
    print("✓ Instructions are immutable")

    assert len(INSTRUCTION_TYPES) == 8
    print("✓ Eight instruction types")


def test_functions():
    print("\nFunction Tests")
    print("=" * 50)

    code = [LocalGet(0), Const(1.0), Add()]
    function = Function(param_count=1, returns=True, code=code)
    code.append(Mul())
    assert function.code == (LocalGet(0), Const(1.0), Add())
    print("✓ Function code is copied into a tuple")

    assert Function(param_count=2, returns=False).code == ()
    assert Function(param_count=2, returns=False).scope_size == 2
    assert Function(param_count=2, returns=False, local_count=3).scope_size == 5
    print("✓ Defaults and scope size")

    for kwargs in ({"param_count": -1}, {"param_count": 0, "local_count": -2}):
        try:
            Function(returns=True, **kwargs)
            assert False, f"Should have raised ValueError for {kwargs}"
        except ValueError:
            pass
    print("✓ Negative counts rejected")


def test_stack_effects():
    print("\nStack Effect Tests")
    print("=" * 50)

    assert stack_effect(Const(1.0)) == (0, 1)
    assert stack_effect(Add()) == (2, 1)
    assert stack_effect(Mul()) == (2, 1)
    assert stack_effect(Load()) == (1, 1)
    assert stack_effect(Store()) == (2, 0)
    assert stack_effect(LocalGet(3)) == (0, 1)
    assert stack_effect(LocalSet(3)) == (1, 0)
    assert set(STACK_EFFECTS) == set(INSTRUCTION_TYPES) - {CallFunc}
    print("✓ Fixed-arity instructions")

    functions = [
        Function(param_count=3, returns=True),
        Function(param_count=2, returns=False),
    ]
    assert stack_effect(CallFunc(0), functions) == (3, 1)
    assert stack_effect(CallFunc(1), functions) == (2, 0)
    print("✓ CallFunc resolved through the function table")

    try:
        stack_effect(CallFunc(2), functions)
        assert False, "Should have raised ValueError"
    except ValueError:
        pass
    try:
        stack_effect("Add")
        assert False, "Should have raised TypeError"
    except TypeError:
        pass
    print("✓ Unknown targets and non-instructions")


if __name__ == "__main__":
    test_construction()
    test_functions()
    test_stack_effects()

    print("\n" + "=" * 50)
    print("All tests passed!")
