"""
Constant folding for stack programs.

Instructions are replayed left to right into an output deque whose back is
the top of a symbolic stack. Whenever an operator's operands are already
literal constants at the back, the operator is evaluated right away and the
operands are replaced by the folded constant.
"""

from collections import deque
from typing import Deque

import numpy as np

from expr import Instr, Op, Program, TAU


class OptimizeError(RuntimeError):
    pass


def top_is_one_constant(code: Deque[Instr]) -> bool:
    return len(code) >= 1 and code[-1].is_const


def top_is_two_constants(code: Deque[Instr]) -> bool:
    return len(code) >= 2 and code[-1].is_const and code[-2].is_const


def pop_const(code: Deque[Instr]) -> np.float32:
    if not code or not code[-1].is_const:
        raise OptimizeError("pop_const: Not a const on top")
    return np.float32(code.pop().value)


BINARY_FOLDS = {
    Op.ADD: lambda b, a: b + a,
    Op.SUB: lambda b, a: b - a,
    Op.MUL: lambda b, a: b * a,
    Op.MAX: lambda b, a: np.fmax(b, a),
    Op.MIN: lambda b, a: np.fmin(b, a),
}

UNARY_FOLDS = {
    Op.COS: lambda a: np.cos(a * TAU),
    Op.SIN: lambda a: np.sin(a * TAU),
    Op.ATAN: lambda a: np.arctan(a),
}


def optimize(program: Program) -> Program:
    """Return an equivalent program with constant sub-expressions folded"""
    new_code: Deque[Instr] = deque()

    for instr in program.code:
        op = instr.op

        if op in (Op.CONST, Op.VAR):
            new_code.append(instr)

        elif op in BINARY_FOLDS:
            if top_is_two_constants(new_code):
                a = pop_const(new_code)
                b = pop_const(new_code)
                new_code.append(Instr.const(BINARY_FOLDS[op](b, a)))
            else:
                new_code.append(instr)

        elif op in UNARY_FOLDS:
            if top_is_one_constant(new_code):
                a = pop_const(new_code)
                new_code.append(Instr.const(UNARY_FOLDS[op](a)))
            else:
                new_code.append(instr)

        elif op == Op.DUP:
            if top_is_one_constant(new_code):
                a = pop_const(new_code)
                new_code.append(Instr.const(a))
                new_code.append(Instr.const(a))
            else:
                new_code.append(instr)

        elif op == Op.DROP:
            raise NotImplementedError("Drop not done")

        else:
            raise OptimizeError(f"optimize: unknown instruction {instr!r}")

    return Program(list(new_code))
