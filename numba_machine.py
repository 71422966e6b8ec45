"""
Numba JIT-compiled stack machine.

Compiles a Program into flat numpy arrays and runs the interpreter loop as
native code. Semantics match expr.evaluate exactly; this is the version the
evolutionary loop uses to render a whole image per individual.
"""

import math

import numpy as np
from numba import njit

from expr import Op, Program
from stack import STACK_SIZE

# Encode opcodes as plain ints for numba
OP_CONST = int(Op.CONST)
OP_VAR = int(Op.VAR)
OP_ADD = int(Op.ADD)
OP_SUB = int(Op.SUB)
OP_MUL = int(Op.MUL)
OP_MAX = int(Op.MAX)
OP_MIN = int(Op.MIN)
OP_COS = int(Op.COS)
OP_SIN = int(Op.SIN)
OP_ATAN = int(Op.ATAN)
OP_DROP = int(Op.DROP)
OP_DUP = int(Op.DUP)

TAU = np.float32(2.0 * math.pi)


def compile_program(program: Program, nvars: int):
    """
    Convert a Program to arrays for numba.

    Returns (ops, values, indices): opcode per instruction, the constant for
    CONST slots and the register index for VAR slots.
    """
    n = len(program.code)
    ops = np.zeros(n, dtype=np.int64)
    values = np.zeros(n, dtype=np.float32)
    indices = np.zeros(n, dtype=np.int64)

    for pc, instr in enumerate(program.code):
        ops[pc] = int(instr.op)
        if instr.op == Op.CONST:
            values[pc] = instr.value
        elif instr.op == Op.VAR:
            if not 0 <= instr.index < nvars:
                raise ValueError(f"Var({instr.index}) out of range for {nvars} variables")
            indices[pc] = instr.index

    return ops, values, indices


@njit(cache=True)
def fmax32(b, a):
    """Maximum that ignores a NaN operand"""
    if a != a:
        return b
    if b != b:
        return a
    return b if b >= a else a


@njit(cache=True)
def fmin32(b, a):
    """Minimum that ignores a NaN operand"""
    if a != a:
        return b
    if b != b:
        return a
    return b if b <= a else a


@njit(cache=True)
def run_compiled(ops, values, indices, registers, stack):
    """
    JIT-compiled interpreter loop for one evaluation point.

    `stack` is a caller-owned float32 buffer reused across points.
    """
    capacity = len(stack)
    sp = 0

    for pc in range(len(ops)):
        op = ops[pc]

        if op == OP_CONST or op == OP_VAR:
            if sp >= capacity:
                raise RuntimeError("Stack overflow")
            if op == OP_CONST:
                stack[sp] = values[pc]
            else:
                stack[sp] = registers[indices[pc]]
            sp += 1

        elif op == OP_ADD or op == OP_SUB or op == OP_MUL or op == OP_MAX or op == OP_MIN:
            if sp < 2:
                raise RuntimeError("Stack underflow")
            a = stack[sp - 1]
            b = stack[sp - 2]
            sp -= 1
            if op == OP_ADD:
                stack[sp - 1] = b + a
            elif op == OP_SUB:
                stack[sp - 1] = b - a
            elif op == OP_MUL:
                stack[sp - 1] = b * a
            elif op == OP_MAX:
                stack[sp - 1] = fmax32(b, a)
            else:
                stack[sp - 1] = fmin32(b, a)

        elif op == OP_COS or op == OP_SIN or op == OP_ATAN:
            if sp < 1:
                raise RuntimeError("Stack underflow")
            a = stack[sp - 1]
            if op == OP_COS:
                stack[sp - 1] = np.cos(a * TAU)
            elif op == OP_SIN:
                stack[sp - 1] = np.sin(a * TAU)
            else:
                stack[sp - 1] = np.arctan(a)

        elif op == OP_DUP:
            if sp < 1:
                raise RuntimeError("Stack underflow")
            if sp >= capacity:
                raise RuntimeError("Stack overflow")
            stack[sp] = stack[sp - 1]
            sp += 1

        elif op == OP_DROP:
            raise NotImplementedError("Drop is not implemented")

        else:
            raise RuntimeError("Unknown opcode")

    if sp != 1:
        raise RuntimeError("Stack should contain exactly 1 item")
    return stack[0]


@njit(cache=True)
def render_compiled(ops, values, indices, width, height):
    """
    Evaluate the program once per pixel and return row-major uint8 samples.

    Pixel (x, y) maps to registers x/width*2-1 and y/height*2-1. The result
    is clamped to [-1, 1] (NaN clamps to 1) and rescaled to 0..255.
    """
    out = np.empty(width * height, dtype=np.uint8)
    registers = np.zeros(2, dtype=np.float32)
    stack = np.zeros(STACK_SIZE, dtype=np.float32)
    w = np.float32(width)
    h = np.float32(height)

    for y in range(height):
        registers[1] = np.float32(y) / h * np.float32(2.0) - np.float32(1.0)
        for x in range(width):
            registers[0] = np.float32(x) / w * np.float32(2.0) - np.float32(1.0)

            result = run_compiled(ops, values, indices, registers, stack)

            if not (result <= 1.0):
                result = np.float32(1.0)
            if result < -1.0:
                result = np.float32(-1.0)

            out[x + y * width] = np.uint8(int(result * np.float32(127.0) + np.float32(128.0)))

    return out


class NumbaMachine:
    """Wrapper around the numba-compiled interpreter"""

    def __init__(self, program: Program, nvars: int = 2):
        self.nvars = nvars
        self.ops, self.values, self.indices = compile_program(program, nvars)
        self.stack = np.zeros(STACK_SIZE, dtype=np.float32)

    def evaluate(self, registers) -> np.float32:
        registers = np.asarray(registers, dtype=np.float32)
        return run_compiled(self.ops, self.values, self.indices, registers, self.stack)

    def render(self, width: int, height: int) -> np.ndarray:
        if self.nvars != 2:
            raise ValueError("Rendering needs exactly two variables (x, y)")
        return render_compiled(self.ops, self.values, self.indices, width, height)
