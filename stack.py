"""
Fixed-capacity evaluation stack for the expression interpreter.

The buffer is allocated once per evaluation call and never grows. Pushing
past capacity or popping an empty stack is a defect in program construction,
so both raise immediately instead of returning a sentinel.
"""

import numpy as np

STACK_SIZE = 64


class StackError(RuntimeError):
    """Base class for stack discipline violations"""


class StackUnderflowError(StackError):
    pass


class StackOverflowError(StackError):
    pass


class StackResultError(StackError):
    """Raised when a program does not leave exactly one value behind"""


class EvalStack:
    def __init__(self, capacity: int = STACK_SIZE):
        self.stack = np.zeros(capacity, dtype=np.float32)
        self.i = 0

    def __len__(self):
        return self.i

    def push(self, value):
        if self.i >= len(self.stack):
            raise StackOverflowError("Stack overflow")
        self.stack[self.i] = value
        self.i += 1

    def pop(self) -> np.float32:
        if self.i == 0:
            raise StackUnderflowError("Stack underflow")
        self.i -= 1
        return self.stack[self.i]

    def result(self) -> np.float32:
        if self.i != 1:
            raise StackResultError(
                f"Stack should contain exactly 1 item but had {self.i} items"
            )
        return self.pop()

    def __repr__(self):
        return f"EvalStack({list(self.stack[:self.i])})"
