"""Tests for the population model and the evolutionary loop."""

import os
import sys
import inspect
import json
import tempfile
import unittest

import numpy as np

currentdir = os.path.dirname(os.path.abspath(inspect.getfile(inspect.currentframe())))
parentdir = os.path.dirname(currentdir)
sys.path.insert(0, parentdir)

from expr import Instr, Op, Program, ADD
from myimage import GrayScaleImage, calc_image_error, calc_perceptual_error
from pixapprox import (
    ApproxConfig,
    PixelApproximator,
    eval_individual,
    eval_into_image,
    main,
)
from population import FitnessNotEvaluatedError, Individual, Population


def gradient_image(width=8, height=8):
    """Horizontal ramp: reachable by the program `x`"""
    xs = np.arange(width, dtype=np.float32) / np.float32(width) * 2 - 1
    row = (xs * 127 + 128).astype(np.uint8)
    return GrayScaleImage(width, height, np.tile(row, height))


def small_config(**overrides):
    params = dict(population_size=12, generations=6, n_best=3, workers=1, seed=1)
    params.update(overrides)
    return ApproxConfig(**params)


class TestPopulation(unittest.TestCase):

    def test_random_population_is_minimal(self):
        pop = Population.random(5)
        self.assertEqual(pop.size(), 5)
        for ind in pop.individuals:
            self.assertEqual(ind.program.code, [Instr.const(1.0)])
            self.assertFalse(ind.evaluated)

    def test_error_before_evaluation_is_fatal(self):
        with self.assertRaises(FitnessNotEvaluatedError):
            Individual.random().error

    def test_sort_is_stable(self):
        inds = [Individual(Program([Instr.const(float(i))])) for i in range(4)]
        for ind, error in zip(inds, [2.0, 1.0, 2.0, 1.0]):
            ind.error = error
        pop = Population(list(inds))
        pop.sort()
        self.assertEqual([ind.program.code[0].value for ind in pop.individuals], [1.0, 3.0, 0.0, 2.0])
        self.assertIs(pop.best(), inds[1])

    def test_sort_requires_evaluation(self):
        pop = Population.random(2)
        with self.assertRaises(FitnessNotEvaluatedError):
            pop.sort()

    def test_clone_is_deep(self):
        ind = Individual(Program([Instr.const(1.0)]), 3.0)
        copy = ind.clone()
        copy.program.code.append(Instr.const(2.0))
        self.assertEqual(len(ind.program), 1)
        self.assertEqual(copy.error, 3.0)


class TestConfig(unittest.TestCase):

    def test_defaults(self):
        cfg = ApproxConfig()
        self.assertEqual(cfg.population_size, 70)
        self.assertEqual(cfg.n_best, 10)
        self.assertEqual(cfg.n_elite, 0)
        self.assertEqual(cfg.mutations_per_child, 2)
        self.assertGreaterEqual(cfg.workers, 1)

    def test_invalid_values(self):
        bad = [
            dict(population_size=0),
            dict(n_best=0),
            dict(population_size=5, n_best=6),
            dict(n_elite=-1),
            dict(population_size=5, n_best=2, n_elite=6),
            dict(mutations_per_child=-1),
            dict(nvars=0),
            dict(nvars=3),
            dict(generations=-1),
            dict(workers=0),
            dict(patience=0),
        ]
        for overrides in bad:
            with self.subTest(overrides=overrides):
                with self.assertRaises(ValueError):
                    ApproxConfig(**overrides)


class TestFitness(unittest.TestCase):

    def test_eval_into_image(self):
        goal = GrayScaleImage(4, 2)
        img = eval_into_image(goal, Program([Instr.const(0.0)]))
        self.assertEqual((img.width, img.height), (4, 2))
        self.assertTrue(np.all(img.data == 128))

    def test_exact_program_has_zero_error(self):
        goal = gradient_image()
        prg = Program([Instr.var(0)])
        self.assertEqual(eval_individual(goal, prg, perceptual=True), 0.0)
        self.assertEqual(eval_individual(goal, prg, perceptual=False), 0.0)

    def test_error_models(self):
        goal = gradient_image()
        prg = Program([Instr.const(0.0)])
        generated = eval_into_image(goal, prg)
        self.assertEqual(eval_individual(goal, prg, perceptual=False),
                         float(calc_image_error(goal, generated)))
        self.assertAlmostEqual(eval_individual(goal, prg, perceptual=True),
                               calc_perceptual_error(goal, generated))


class TestEvolution(unittest.TestCase):

    def test_evaluate_and_rank(self):
        approx = PixelApproximator(gradient_image(), small_config(), verbose=False)
        approx.population = Population([
            Individual(Program([Instr.const(0.0)])),
            Individual(Program([Instr.var(0)])),
            Individual(Program([Instr.const(1.0)])),
        ])
        approx.evaluate_population()
        approx.rank()
        self.assertEqual(approx.population.best().program.code, [Instr.var(0)])
        self.assertEqual(approx.best_error, 0.0)
        errors = [ind.error for ind in approx.population.individuals]
        self.assertEqual(errors, sorted(errors))

    def test_parents_are_the_n_best(self):
        approx = PixelApproximator(gradient_image(), small_config(mutations_per_child=0), verbose=False)
        ranked = [Individual(Program([Instr.const(v)]), float(i))
                  for i, v in enumerate([0.1, 0.2, 0.3, 0.4, 0.5])]
        approx.population = Population(ranked)
        new_pop = approx.evolve_generation()
        self.assertEqual(new_pop.size(), 12)
        values = [ind.program.code[0].value for ind in new_pop.individuals]
        expected = [ranked[i % 3].program.code[0].value for i in range(12)]
        self.assertEqual(values, expected)
        for ind in new_pop.individuals:
            self.assertFalse(ind.evaluated)

    def test_elites_are_unmutated(self):
        approx = PixelApproximator(gradient_image(), small_config(n_elite=2, mutations_per_child=3),
                                   verbose=False)
        ranked = [Individual(Program([Instr.var(0), Instr.const(0.5), ADD]), float(i)) for i in range(12)]
        approx.population = Population(ranked)
        approx.evolve_generation()
        for i in range(2):
            self.assertEqual(approx.population[i].program.code, ranked[i].program.code)
            self.assertIsNot(approx.population[i].program, ranked[i].program)

    def test_run(self):
        approx = PixelApproximator(gradient_image(), small_config(), verbose=False)
        best, error = approx.run()
        self.assertIsNotNone(best)
        self.assertEqual(error, approx.best_error)
        self.assertEqual(len(approx.history), 6)
        self.assertEqual(approx.population.size(), 12)

    def test_long_run_only_uses_x_and_y(self):
        approx = PixelApproximator(gradient_image(), small_config(generations=40, mutations_per_child=3),
                                   verbose=False)
        approx.run()
        self.assertEqual(len(approx.history), 40)
        for ind in approx.population.individuals:
            for instr in ind.program.code:
                if instr.op == Op.VAR:
                    self.assertIn(instr.index, (0, 1))

    def test_elitism_never_loses_the_best(self):
        approx = PixelApproximator(gradient_image(), small_config(generations=25, n_elite=1),
                                   verbose=False)
        approx.run()
        errors = [h['best_error'] for h in approx.history]
        for prev, cur in zip(errors, errors[1:]):
            self.assertLessEqual(cur, prev)

    def test_seed_is_reproducible(self):
        a = PixelApproximator(gradient_image(), small_config(seed=5), verbose=False)
        b = PixelApproximator(gradient_image(), small_config(seed=5), verbose=False)
        self.assertEqual(a.run()[1], b.run()[1])
        self.assertEqual(str(a.best_program), str(b.best_program))

    def test_patience_stops_early(self):
        # A one-pixel goal of 255 is matched by the seed program `1` at once
        goal = GrayScaleImage(1, 1, np.array([255], dtype=np.uint8))
        approx = PixelApproximator(goal, small_config(generations=50, patience=3, n_elite=1),
                                   verbose=False)
        _, error = approx.run()
        self.assertEqual(error, 0.0)
        self.assertEqual(len(approx.history), 4)

    def test_pool_evaluation(self):
        approx = PixelApproximator(gradient_image(), small_config(workers=2, generations=2), verbose=False)
        approx.run()
        self.assertEqual(len(approx.history), 2)


class TestArtifacts(unittest.TestCase):

    def test_save_best_and_results(self):
        with tempfile.TemporaryDirectory() as tmp:
            approx = PixelApproximator(gradient_image(), small_config(generations=3),
                                       output_dir=tmp, verbose=False)
            approx.run()
            results_file = os.path.join(tmp, "results.json")
            approx.save_results(results_file)

            self.assertTrue(os.path.exists(os.path.join(tmp, "result_gen_00000.png")))
            with open(os.path.join(tmp, "result_gen_00000.txt")) as f:
                self.assertTrue(f.read())
            with open(results_file) as f:
                results = json.load(f)

        self.assertEqual(results['best_error'], approx.best_error)
        self.assertEqual(results['best_program'], str(approx.best_program))
        self.assertEqual(len(results['history']), 3)
        self.assertEqual(results['config']['population_size'], 12)

    def test_main(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "goal.png")
            gradient_image().save(path)
            out = os.path.join(tmp, "out")
            main([path, "-g", "2", "-p", "4", "-b", "2", "-w", "1", "--seed", "3", "-o", out])
            self.assertTrue(os.path.exists(os.path.join(out, "pixapprox_results.json")))
            self.assertTrue(os.path.exists(os.path.join(out, "result_gen_00000.png")))


if __name__ == "__main__":
    unittest.main()
