"""
Structural mutation of stack programs.

A mutation picks one instruction and splices a short replacement sequence
in its place. Every rule keeps the stack effect of the replaced slot: value
producers are replaced by sequences that net one value, unary operators by
sequences that consume one and produce one (or by nothing at all).
"""

import random
from typing import List

from expr import (
    Instr, Op, Program,
    BINARY_OPS, UNARY_OPS,
    ADD, SUB, MUL, COS, SIN, ATAN,
)

# Upper bound on the length of any replacement sequence
MAX_MUTATION_SIZE = 3


def make_const(rng: random.Random) -> Instr:
    """Random constant, uniform in [-1, 1)"""
    return Instr.const(rng.random() * 2.0 - 1.0)


def make_var(rng: random.Random, nvars: int) -> Instr:
    return Instr.var(rng.randrange(nvars))


def mutated_value(rng: random.Random, keep: Instr, nvars: int) -> List[Instr]:
    """Rewrite a value producer (CONST or VAR), optionally wrapping `keep`"""
    choice = rng.randrange(11)

    if choice == 0:
        return [make_const(rng)]
    elif choice == 1:
        return [make_var(rng, nvars)]

    elif choice == 2:
        return [keep, make_const(rng), ADD]
    elif choice == 3:
        return [make_const(rng), keep, ADD]

    elif choice == 4:
        return [keep, make_const(rng), SUB]
    elif choice == 5:
        return [make_const(rng), keep, SUB]

    elif choice == 6:
        return [keep, make_const(rng), MUL]
    elif choice == 7:
        return [make_const(rng), keep, MUL]

    elif choice == 8:
        return [keep, COS]
    elif choice == 9:
        return [keep, SIN]
    else:
        return [keep, ATAN]


def mutated_constant(rng: random.Random, x: float, nvars: int) -> List[Instr]:
    return mutated_value(rng, Instr.const(x), nvars)


def mutated_var(rng: random.Random, i: int, nvars: int) -> List[Instr]:
    return mutated_value(rng, Instr.var(i), nvars)


def mutated_binary_op(rng: random.Random) -> List[Instr]:
    """Swap the operator; arity stays at two"""
    return [rng.choice((ADD, SUB, MUL))]


def mutated_unary_op(rng: random.Random) -> List[Instr]:
    choice = rng.randrange(6)

    if choice == 0:
        return [COS]
    elif choice == 1:
        return [SIN]
    elif choice == 2:
        return [ATAN]
    elif choice == 3:
        return [make_const(rng), ADD]
    elif choice == 4:
        return [make_const(rng), MUL]
    else:
        # Removes the unary operator instead of replacing it
        return []


def mutate(rng: random.Random, program: Program, nvars: int) -> None:
    """Mutate `program` in place at one uniformly chosen position"""
    if not program.code:
        raise ValueError("mutate: program is empty")
    if nvars < 1:
        raise ValueError(f"mutate: nvars must be >= 1, got {nvars}")

    nth = rng.randrange(len(program.code))
    instr = program.code[nth]
    op = instr.op

    if op == Op.CONST:
        new_code = mutated_constant(rng, instr.value, nvars)
    elif op == Op.VAR:
        new_code = mutated_var(rng, instr.index, nvars)
    elif op in BINARY_OPS:
        new_code = mutated_binary_op(rng)
    elif op in UNARY_OPS:
        new_code = mutated_unary_op(rng)
    elif op == Op.DUP:
        # Never generated by the rules above; left as is
        new_code = [instr]
    else:
        raise ValueError(f"mutate: cannot mutate {instr!r}")

    program.code[nth:nth + 1] = new_code
