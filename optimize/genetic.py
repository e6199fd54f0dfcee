"""Genetic-algorithm search over the DCA strategy configuration space.

The generational loop is single-threaded; only fitness evaluation fans out to
a bounded worker pool. A single ``numpy.random.Generator`` drives every random
decision (initialisation, selection, crossover, mutation) and is never handed
to the workers.
"""
from __future__ import annotations

import logging
import math
from concurrent.futures import Executor, ProcessPoolExecutor, ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional

import numpy as np
import pandas as pd

from . import constants as C
from .common import StrategyConfig
from .search_spaces import ComboFamily, parameter_lines, random_configuration
from .state import SimulationResult
from .strategy_model import run_backtest

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class GAParams:
    population_size: int = C.GA_POPULATION_SIZE
    generations: int = C.GA_GENERATIONS
    mutation_rate: float = C.GA_MUTATION_RATE
    crossover_rate: float = C.GA_CROSSOVER_RATE
    elite_size: int = C.GA_ELITE_SIZE
    tournament_size: int = C.GA_TOURNAMENT_SIZE
    max_workers: int = C.MAX_PARALLEL_WORKERS
    executor: str = "thread"


REDUCED_GA_PARAMS = GAParams(
    population_size=C.EXHAUSTIVE_POPULATION_SIZE,
    generations=C.EXHAUSTIVE_GENERATIONS,
    mutation_rate=C.EXHAUSTIVE_MUTATION_RATE,
    crossover_rate=C.EXHAUSTIVE_CROSSOVER_RATE,
    elite_size=C.EXHAUSTIVE_ELITE_SIZE,
)


@dataclass
class Individual:
    """Candidate configuration with its fitness and cached simulation result."""

    config: StrategyConfig
    fitness: float = 0.0
    result: Optional[SimulationResult] = None
    evaluated: bool = False

    def clone(self) -> "Individual":
        return Individual(
            config=self.config,
            fitness=self.fitness,
            result=self.result,
            evaluated=self.evaluated,
        )

    def invalidate(self) -> None:
        self.fitness = 0.0
        self.result = None
        self.evaluated = False


@dataclass
class GenerationStats:
    generation: int
    best: float
    average: float
    worst: float


@dataclass
class OptimizationResult:
    """Best configuration observed during one run and its backtest outcome."""

    config: StrategyConfig
    result: SimulationResult
    fitness: float
    history: List[GenerationStats] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Population & operators
# ---------------------------------------------------------------------------


def initialize_population(
    base: StrategyConfig,
    size: int,
    rng: np.random.Generator,
    family: ComboFamily,
) -> List[Individual]:
    return [Individual(config=random_configuration(base, family, rng)) for _ in range(int(size))]


def tournament_selection(population: List[Individual], k: int, rng: np.random.Generator) -> Individual:
    """Best of *k* uniform draws with replacement; the earliest draw wins ties."""

    if not population:
        raise ValueError("tournament selection requires a non-empty population")
    best = population[int(rng.integers(len(population)))]
    for _ in range(1, max(int(k), 1)):
        candidate = population[int(rng.integers(len(population)))]
        if candidate.fitness > best.fitness:
            best = candidate
    return best


def crossover(
    parent_a: Individual,
    parent_b: Individual,
    rate: float,
    rng: np.random.Generator,
    family: ComboFamily,
) -> Individual:
    """Uniform crossover: each applicable field comes from either parent on a fair coin."""

    child = parent_a.clone()
    if rng.random() >= rate:
        return child
    changes: Dict[str, object] = {}
    for spec in family.applicable_fields(parent_a.config):
        if rng.random() < 0.5:
            changes[spec.name] = getattr(parent_b.config, spec.name)
    child.config = family.normalize(replace(parent_a.config, **changes))
    child.invalidate()
    return child


def mutate(
    individual: Individual,
    rate: float,
    rng: np.random.Generator,
    family: ComboFamily,
) -> None:
    """Resample exactly one applicable field with probability *rate*."""

    if rng.random() >= rate:
        return
    applicable = family.applicable_fields(individual.config)
    if not applicable:
        return
    spec = applicable[int(rng.integers(len(applicable)))]
    config = replace(individual.config, **{spec.name: spec.sample(rng)})
    individual.config = family.normalize(config)
    individual.invalidate()


def rank_population(population: List[Individual]) -> None:
    population.sort(key=lambda ind: ind.fitness, reverse=True)


def next_generation(
    population: List[Individual],
    params: GAParams,
    rng: np.random.Generator,
    family: ComboFamily,
) -> List[Individual]:
    """Breed the next generation from an already-ranked population."""

    elite_count = min(max(int(params.elite_size), 0), len(population))
    offspring = [population[idx].clone() for idx in range(elite_count)]
    while len(offspring) < len(population):
        parent_a = tournament_selection(population, params.tournament_size, rng)
        parent_b = tournament_selection(population, params.tournament_size, rng)
        child = crossover(parent_a, parent_b, params.crossover_rate, rng, family)
        mutate(child, params.mutation_rate, rng, family)
        offspring.append(child)
    return offspring


# ---------------------------------------------------------------------------
# Fitness evaluation
# ---------------------------------------------------------------------------


def _score(config: StrategyConfig, series: pd.DataFrame, window_size: Optional[int]) -> SimulationResult:
    return run_backtest(config, series, window_size)


def _apply_score(individual: Individual, result: Optional[SimulationResult], error: Optional[BaseException]) -> None:
    individual.evaluated = True
    if error is not None:
        LOGGER.warning("Backtest failed for %s: %s", individual.config.indicators, error)
        individual.fitness = C.NON_FINITE_PENALTY
        individual.result = None
        return
    fitness = float(result.total_return) if result is not None else math.nan
    if not math.isfinite(fitness):
        LOGGER.warning("Non-finite fitness %s replaced by penalty", fitness)
        fitness = C.NON_FINITE_PENALTY
    individual.fitness = fitness
    individual.result = result


def create_executor(max_workers: int, executor: str = "thread") -> Optional[Executor]:
    """Build the evaluation pool, or ``None`` when a single worker is requested."""

    jobs = max(1, int(max_workers))
    if jobs == 1:
        return None
    if executor.lower().strip() == "process":
        return ProcessPoolExecutor(max_workers=jobs)
    return ThreadPoolExecutor(max_workers=jobs)


def _submit_all(
    pool: Executor,
    population: List[Individual],
    pending: List[int],
    series: pd.DataFrame,
    window_size: Optional[int],
) -> None:
    futures = {
        pool.submit(_score, population[idx].config, series, window_size): idx
        for idx in pending
    }
    for future in as_completed(futures):
        idx = futures[future]
        try:
            outcome = future.result()
        except Exception as exc:
            _apply_score(population[idx], None, exc)
        else:
            _apply_score(population[idx], outcome, None)


def evaluate_population(
    population: List[Individual],
    series: pd.DataFrame,
    *,
    window_size: Optional[int] = None,
    max_workers: int = C.MAX_PARALLEL_WORKERS,
    executor: str = "thread",
    pool: Optional[Executor] = None,
) -> int:
    """Score every unevaluated individual; returns how many were scored.

    Workers only read *series*; results are written back on the calling thread
    once each future completes, and the call returns after all of them finished.
    A caller-supplied *pool* is reused and left running; otherwise a pool is
    created for this call and shut down before returning.
    """

    pending = [idx for idx, individual in enumerate(population) if not individual.evaluated]
    if not pending:
        return 0

    if pool is not None and len(pending) > 1:
        _submit_all(pool, population, pending, series, window_size)
        return len(pending)

    owned = create_executor(max_workers, executor) if pool is None and len(pending) > 1 else None
    if owned is None:
        for idx in pending:
            try:
                outcome = _score(population[idx].config, series, window_size)
            except Exception as exc:
                _apply_score(population[idx], None, exc)
            else:
                _apply_score(population[idx], outcome, None)
        return len(pending)

    with owned:
        _submit_all(owned, population, pending, series, window_size)
    return len(pending)


# ---------------------------------------------------------------------------
# Driver
# ---------------------------------------------------------------------------


def _generation_stats(generation: int, population: List[Individual]) -> GenerationStats:
    values = [individual.fitness for individual in population]
    return GenerationStats(
        generation=generation,
        best=float(values[0]),
        average=float(np.mean(values)),
        worst=float(values[-1]),
    )


def _log_progress(stats: GenerationStats, total: int, best: Individual, detail: bool) -> None:
    LOGGER.info(
        "Gen %d/%d: best=%.2f%%, avg=%.2f%%, worst=%.2f%%",
        stats.generation,
        total,
        stats.best * 100,
        stats.average * 100,
        stats.worst * 100,
    )
    if detail:
        config = best.config
        LOGGER.info(
            "  Best so far: %.2f%% | mult=%.1f, tp=%.2f%%, threshold=%.2f%%, indicators=%s",
            best.fitness * 100,
            config.max_multiplier,
            config.tp_percent * 100,
            config.price_threshold * 100,
            "+".join(config.indicators),
        )
        for line in parameter_lines(config):
            LOGGER.info("    %s", line)


def run_genetic_optimization(
    base: StrategyConfig,
    series: pd.DataFrame,
    *,
    rng: np.random.Generator,
    family: ComboFamily,
    params: GAParams = GAParams(),
    window_size: Optional[int] = None,
) -> OptimizationResult:
    """Evolve a population for a fixed number of generations and return the best config."""

    if params.population_size <= 0 or params.generations <= 0:
        raise ValueError("population size and generation count must be positive")

    population = initialize_population(base, params.population_size, rng, family)
    best: Optional[Individual] = None
    history: List[GenerationStats] = []

    # 세대마다 워커를 다시 띄우지 않도록 실행 전체에서 풀 하나를 공유합니다.
    pool = create_executor(params.max_workers, params.executor)
    try:
        for generation in range(1, params.generations + 1):
            evaluate_population(
                population,
                series,
                window_size=window_size,
                max_workers=params.max_workers,
                executor=params.executor,
                pool=pool,
            )
            rank_population(population)

            if best is None or population[0].fitness > best.fitness:
                best = population[0].clone()

            stats = _generation_stats(generation, population)
            history.append(stats)
            is_last = generation == params.generations
            if generation % C.PROGRESS_REPORT_INTERVAL == 0 or is_last:
                _log_progress(
                    stats,
                    params.generations,
                    best,
                    detail=generation % C.DETAIL_REPORT_INTERVAL == 0 or is_last,
                )

            if not is_last:
                population = next_generation(population, params, rng, family)
    finally:
        if pool is not None:
            pool.shutdown(wait=True, cancel_futures=True)

    assert best is not None
    result = best.result if best.result is not None else SimulationResult(
        start_balance=base.initial_balance,
        end_balance=base.initial_balance,
    )
    return OptimizationResult(config=best.config, result=result, fitness=best.fitness, history=history)


__all__ = [
    "GAParams",
    "REDUCED_GA_PARAMS",
    "Individual",
    "GenerationStats",
    "OptimizationResult",
    "initialize_population",
    "tournament_selection",
    "crossover",
    "mutate",
    "rank_population",
    "next_generation",
    "create_executor",
    "evaluate_population",
    "run_genetic_optimization",
]
