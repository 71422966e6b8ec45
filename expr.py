"""
Stack-machine expression language.

A Program is a flat postfix sequence of instructions. Evaluating it for one
point pushes constants and input registers onto a fixed-size stack and folds
them with unary and binary operators until a single float32 remains.

Cos and Sin take their argument in turns (fractions of a full revolution),
so `0.25 sin` is 1. Atan is plain radians-out.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import IntEnum
from typing import List, Sequence
import math

import numpy as np

from stack import EvalStack

TAU = np.float32(2.0 * math.pi)


class Op(IntEnum):
    """Instruction opcodes. Values double as the numba machine encoding."""
    CONST = 0
    VAR = 1
    ADD = 2
    SUB = 3
    MUL = 4
    MAX = 5
    MIN = 6
    COS = 7
    SIN = 8
    ATAN = 9
    DROP = 10
    DUP = 11


BINARY_OPS = (Op.ADD, Op.SUB, Op.MUL, Op.MAX, Op.MIN)
UNARY_OPS = (Op.COS, Op.SIN, Op.ATAN)

OP_TOKENS = {
    Op.ADD: "+",
    Op.SUB: "-",
    Op.MUL: "*",
    Op.MAX: "max",
    Op.MIN: "min",
    Op.COS: "cos",
    Op.SIN: "sin",
    Op.ATAN: "atan",
    Op.DROP: "drop",
    Op.DUP: "dup",
}


@dataclass(frozen=True)
class Instr:
    """One instruction. `value` is only meaningful for CONST, `index` for VAR."""
    op: Op
    value: float = 0.0
    index: int = 0

    @classmethod
    def const(cls, value) -> Instr:
        return cls(Op.CONST, value=float(np.float32(value)))

    @classmethod
    def var(cls, index: int) -> Instr:
        if index < 0:
            raise ValueError(f"Var index must be >= 0, got {index}")
        return cls(Op.VAR, index=int(index))

    @property
    def is_const(self) -> bool:
        return self.op == Op.CONST

    def __str__(self):
        return render_instr(self)

    def __repr__(self):
        if self.op == Op.CONST:
            return f"Const({self.value!r})"
        if self.op == Op.VAR:
            return f"Var({self.index})"
        return self.op.name.capitalize()


ADD = Instr(Op.ADD)
SUB = Instr(Op.SUB)
MUL = Instr(Op.MUL)
MAX = Instr(Op.MAX)
MIN = Instr(Op.MIN)
COS = Instr(Op.COS)
SIN = Instr(Op.SIN)
ATAN = Instr(Op.ATAN)
DROP = Instr(Op.DROP)
DUP = Instr(Op.DUP)


@dataclass
class Program:
    """Ordered instruction sequence: the genome of one individual"""
    code: List[Instr] = field(default_factory=list)

    def __len__(self):
        return len(self.code)

    def clone(self) -> Program:
        # Instr is immutable, a shallow list copy is a deep copy
        return Program(list(self.code))

    def __str__(self):
        return render(self.code)


class State:
    """Input registers for one evaluation point (0 = x, 1 = y)"""

    def __init__(self, nvars: int):
        self.vars = np.zeros(nvars, dtype=np.float32)


def var_name(index: int) -> str:
    """Converts 0 to "x" and 1 to "y"; anything else is unsupported"""
    if index == 0:
        return "x"
    if index == 1:
        return "y"
    raise ValueError(f"var_name: only 0 and 1 are handled, got {index}")


def format_const(value: float) -> str:
    return np.format_float_positional(np.float32(value), trim='-')


def render_instr(instr: Instr) -> str:
    if instr.op == Op.CONST:
        return format_const(instr.value)
    if instr.op == Op.VAR:
        return var_name(instr.index)
    return OP_TOKENS[instr.op]


def render(code: Sequence[Instr]) -> str:
    return " ".join(render_instr(instr) for instr in code)


def evaluate(program: Program, state: State) -> np.float32:
    """Run `program` once against the registers in `state`.

    Raises a StackError subclass when the program is inconsistent with the
    arities of its operators, and NotImplementedError on DROP.
    """
    stack = EvalStack()
    registers = state.vars

    for instr in program.code:
        op = instr.op
        if op == Op.CONST:
            stack.push(instr.value)
        elif op == Op.VAR:
            if instr.index < 0:
                raise ValueError(f"Var index must be >= 0, got {instr.index}")
            stack.push(registers[instr.index])
        elif op == Op.ADD:
            a = stack.pop()
            b = stack.pop()
            stack.push(b + a)
        elif op == Op.SUB:
            a = stack.pop()
            b = stack.pop()
            stack.push(b - a)
        elif op == Op.MUL:
            a = stack.pop()
            b = stack.pop()
            stack.push(b * a)
        elif op == Op.MAX:
            a = stack.pop()
            b = stack.pop()
            stack.push(np.fmax(b, a))
        elif op == Op.MIN:
            a = stack.pop()
            b = stack.pop()
            stack.push(np.fmin(b, a))
        elif op == Op.COS:
            stack.push(np.cos(stack.pop() * TAU))
        elif op == Op.SIN:
            stack.push(np.sin(stack.pop() * TAU))
        elif op == Op.ATAN:
            stack.push(np.arctan(stack.pop()))
        elif op == Op.DUP:
            a = stack.pop()
            stack.push(a)
            stack.push(a)
        elif op == Op.DROP:
            raise NotImplementedError("Drop is not implemented")
        else:
            raise ValueError(f"Unknown opcode {op!r}")

    return stack.result()
