from __future__ import annotations
from typing import List, Optional

from expr import Instr, Program


class FitnessNotEvaluatedError(RuntimeError):
    pass


class Individual:
    """One candidate program and its error from the last evaluation"""

    def __init__(self, program: Program, error: Optional[float] = None):
        self.program = program
        self._error = error

    @classmethod
    def random(cls) -> Individual:
        """Minimal seed individual: a single constant"""
        return cls(Program([Instr.const(1.0)]))

    @property
    def evaluated(self) -> bool:
        return self._error is not None

    @property
    def error(self) -> float:
        if self._error is None:
            raise FitnessNotEvaluatedError("Individual has not been evaluated")
        return self._error

    @error.setter
    def error(self, value: Optional[float]):
        self._error = value

    def clone(self) -> Individual:
        return Individual(self.program.clone(), self._error)

    def __repr__(self):
        return f"Individual(error={self._error}, program='{self.program}')"


class Population:
    def __init__(self, individuals: Optional[List[Individual]] = None):
        self.individuals: List[Individual] = individuals if individuals is not None else []

    @classmethod
    def random(cls, size: int) -> Population:
        """Generates a population of minimal seed individuals"""
        return cls([Individual.random() for _ in range(size)])

    def size(self) -> int:
        return len(self.individuals)

    def __len__(self):
        return len(self.individuals)

    def __getitem__(self, i) -> Individual:
        return self.individuals[i]

    def sort(self):
        """Stable ascending sort by error; every individual must be evaluated"""
        self.individuals.sort(key=lambda ind: ind.error)

    def best(self) -> Individual:
        return self.individuals[0]
