"""
Genetic programming driver: evolve stack programs that redraw an image.

Each individual is a program mapping normalized pixel coordinates (x, y) to
an intensity. Every generation the whole population is rendered and scored
in parallel, sorted by error, and the next generation is bred from the best
few by cloning and mutating.

Usage:
    python pixapprox.py IMAGE [--generations N] [--population N] [--workers N]
"""

from dataclasses import dataclass, asdict
from multiprocessing import Pool, cpu_count
from typing import List, Optional, Tuple
import argparse
import json
import os
import random
import time

from expr import Program
from mutate import mutate
from myimage import (
    GrayScaleImage,
    calc_image_error,
    calc_perceptual_error,
    comparison_image,
    load_grayscale,
)
from numba_machine import NumbaMachine
from optimize import optimize
from population import Individual, Population

NVARS = 2


# =============================================================================
# Configuration
# =============================================================================

@dataclass
class ApproxConfig:
    population_size: int = 70
    generations: int = 15000
    n_best: int = 10                 # Parents: the n_best lowest-error individuals
    n_elite: int = 0                 # Unmutated copies of the best carried over
    mutations_per_child: int = 2
    nvars: int = NVARS
    perceptual: bool = True          # Ring-weighted error instead of squared error
    workers: Optional[int] = None
    seed: Optional[int] = None
    patience: Optional[int] = None   # Stop after this many non-improving generations

    def __post_init__(self):
        """Reject configurations the loop cannot run"""
        if self.workers is None:
            self.workers = cpu_count()
        if self.population_size < 1:
            raise ValueError("population_size must be >= 1")
        if not 1 <= self.n_best <= self.population_size:
            raise ValueError("n_best must be between 1 and population_size")
        if not 0 <= self.n_elite <= self.population_size:
            raise ValueError("n_elite must be between 0 and population_size")
        if self.mutations_per_child < 0:
            raise ValueError("mutations_per_child must be >= 0")
        if self.nvars != NVARS:
            raise ValueError(f"nvars must be {NVARS}: images are rendered from x and y")
        if self.generations < 0:
            raise ValueError("generations must be >= 0")
        if self.workers < 1:
            raise ValueError("workers must be >= 1")
        if self.patience is not None and self.patience < 1:
            raise ValueError("patience must be >= 1")


# =============================================================================
# Fitness
# =============================================================================

def eval_into_image(goal_image: GrayScaleImage, program: Program) -> GrayScaleImage:
    """Render `program` at the goal image's resolution"""
    machine = NumbaMachine(program, NVARS)
    data = machine.render(goal_image.width, goal_image.height)
    return GrayScaleImage(goal_image.width, goal_image.height, data)


def eval_individual(goal_image: GrayScaleImage, program: Program, perceptual: bool = True) -> float:
    generated = eval_into_image(goal_image, program)
    if perceptual:
        return calc_perceptual_error(goal_image, generated)
    return float(calc_image_error(goal_image, generated))


def eval_individual_wrapper(args) -> float:
    """Pool entry point"""
    goal_image, program, perceptual = args
    return eval_individual(goal_image, program, perceptual)


# =============================================================================
# Evolutionary loop
# =============================================================================

class PixelApproximator:
    def __init__(
        self,
        goal_image: GrayScaleImage,
        config: Optional[ApproxConfig] = None,
        output_dir: Optional[str] = None,
        verbose: bool = True,
    ):
        self.goal_image = goal_image
        self.config = config or ApproxConfig()
        self.output_dir = output_dir
        self.verbose = verbose
        self.rng = random.Random(self.config.seed)

        self.population = Population()
        self.generation = 0
        self.best_program: Optional[Program] = None
        self.best_error: float = float('inf')
        self.last_saved_error: float = float('inf')
        self.history: List[dict] = []

    @property
    def npixels(self) -> int:
        return self.goal_image.width * self.goal_image.height

    def initialize_population(self):
        self.population = Population.random(self.config.population_size)

    def evaluate_population(self, pool=None):
        """Score every individual; returns only when all are done"""
        programs = [ind.program for ind in self.population.individuals]
        args = [(self.goal_image, p, self.config.perceptual) for p in programs]

        if pool is not None:
            errors = pool.map(eval_individual_wrapper, args)
        else:
            errors = [eval_individual_wrapper(a) for a in args]

        for ind, error in zip(self.population.individuals, errors):
            ind.error = error

    def rank(self):
        self.population.sort()

        best = self.population.best()
        if best.error < self.best_error:
            self.best_error = best.error
            self.best_program = best.program.clone()

    def evolve_generation(self) -> Population:
        """Build the next generation from the ranked current one"""
        cfg = self.config
        ranked = self.population.individuals
        new_population = Population()

        # New population is a mutated version of the n_best from previous generation
        for i in range(cfg.population_size):
            program = ranked[i % cfg.n_best].program.clone()
            for _ in range(cfg.mutations_per_child):
                mutate(self.rng, program, cfg.nvars)
            new_population.individuals.append(Individual(program))

        # Elitism: the best individuals survive unmutated
        for i in range(min(cfg.n_elite, len(ranked))):
            new_population.individuals[i] = Individual(ranked[i].program.clone())

        self.population = new_population
        return new_population

    def run(self) -> Tuple[Optional[Program], float]:
        """Run the GP loop for the configured number of generations"""
        if self.config.workers > 1:
            with Pool(processes=self.config.workers) as pool:
                return self._run(pool)
        return self._run(None)

    def _run(self, pool) -> Tuple[Optional[Program], float]:
        cfg = self.config
        if self.verbose:
            print(f"Starting GP: {cfg.population_size} individuals, {cfg.generations} generations, "
                  f"{self.goal_image.width}x{self.goal_image.height} image", flush=True)
            print(f"Using {cfg.workers} parallel workers", flush=True)

        self.initialize_population()
        stale = 0

        for gen in range(cfg.generations):
            self.generation = gen
            start = time.time()

            previous_best = self.best_error
            self.evaluate_population(pool)
            self.rank()
            elapsed = time.time() - start

            best = self.population.best()
            if best.error < self.last_saved_error:
                self.save_best(gen)
                self.last_saved_error = best.error

            self.history.append({
                'generation': gen,
                'best_error': best.error,
                'error_per_pixel': best.error / self.npixels,
                'code_size': len(best.program),
                'time': elapsed,
            })
            if self.verbose:
                self.print_best_info(gen, elapsed)

            if self.best_error < previous_best:
                stale = 0
            else:
                stale += 1
            if cfg.patience is not None and stale >= cfg.patience:
                if self.verbose:
                    print(f"\nNo improvement for {stale} generations, stopping", flush=True)
                break

            self.evolve_generation()

        if self.verbose and self.best_program is not None:
            print(f"\nBest error: {self.best_error:,.0f} "
                  f"({self.best_error / self.npixels:.4f} per pixel)", flush=True)
            print(f"Program: {self.best_program}", flush=True)

        return self.best_program, self.best_error

    def print_best_info(self, gen: int, elapsed: float):
        best = self.population.best()
        print(f"Gen: {gen}, Population: {self.population.size()}, "
              f"Code: {len(best.program)}, Error: {best.error / self.npixels:.4f},\t"
              f"Time: {elapsed * 1000:.0f} ms", flush=True)

    def save_best(self, gen: int):
        """Write the best image (goal | generated) and its program text"""
        if self.output_dir is None:
            return
        os.makedirs(self.output_dir, exist_ok=True)
        best = self.population.best()

        generated = eval_into_image(self.goal_image, best.program)
        filename = os.path.join(self.output_dir, f"result_gen_{gen:05d}.png")
        comparison_image(self.goal_image, generated).save(filename)

        filename = os.path.join(self.output_dir, f"result_gen_{gen:05d}.txt")
        with open(filename, 'w') as f:
            f.write(str(best.program))

    def save_results(self, filename: str = "pixapprox_results.json"):
        """Save results to file"""
        results = {
            'best_error': self.best_error,
            'best_program': str(self.best_program) if self.best_program else None,
            'best_program_optimized': str(optimize(self.best_program)) if self.best_program else None,
            'history': self.history,
            'config': asdict(self.config),
        }

        os.makedirs(os.path.dirname(filename) or '.', exist_ok=True)
        with open(filename, 'w') as f:
            json.dump(results, f, indent=2)

        if self.verbose:
            print(f"Results saved to {filename}", flush=True)


# =============================================================================
# CLI Entry Point
# =============================================================================

def main(argv=None):
    parser = argparse.ArgumentParser(description='Evolve a program that approximates an image')
    parser.add_argument('image', type=str, help='Goal image')
    parser.add_argument('--generations', '-g', type=int, default=15000, help='Number of generations')
    parser.add_argument('--population', '-p', type=int, default=70, help='Population size')
    parser.add_argument('--best', '-b', type=int, default=10, help='Number of parents')
    parser.add_argument('--elite', '-e', type=int, default=0, help='Unmutated elites per generation')
    parser.add_argument('--mutations', '-m', type=int, default=2, help='Mutations per child')
    parser.add_argument('--workers', '-w', type=int, default=None, help='Parallel workers')
    parser.add_argument('--seed', type=int, default=None, help='Random seed')
    parser.add_argument('--baseline', action='store_true', help='Use squared error instead of perceptual error')
    parser.add_argument('--patience', type=int, default=None, help='Stop after N non-improving generations')
    parser.add_argument('--output', '-o', type=str, default='result', help='Output directory')

    args = parser.parse_args(argv)

    config = ApproxConfig(
        population_size=args.population,
        generations=args.generations,
        n_best=args.best,
        n_elite=args.elite,
        mutations_per_child=args.mutations,
        workers=args.workers,
        seed=args.seed,
        perceptual=not args.baseline,
        patience=args.patience,
    )

    goal_image = load_grayscale(args.image)
    approx = PixelApproximator(goal_image, config, output_dir=args.output)
    approx.run()
    approx.save_results(os.path.join(args.output, 'pixapprox_results.json'))


if __name__ == "__main__":
    main()
