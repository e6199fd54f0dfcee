import math
from concurrent.futures import ThreadPoolExecutor

import numpy as np
import pandas as pd
import pytest

from optimize import constants as C
from optimize.common import StrategyConfig
from optimize.genetic import (
    GAParams,
    Individual,
    create_executor,
    crossover,
    evaluate_population,
    initialize_population,
    mutate,
    run_genetic_optimization,
    tournament_selection,
)
from optimize.search_spaces import ADVANCED, CLASSIC
from optimize.state import SimulationResult


def _build_frame(periods: int = 50) -> pd.DataFrame:
    index = pd.date_range("2024-01-01", periods=periods, freq="1h", tz="UTC")
    close = pd.Series(np.linspace(100.0, 110.0, periods), index=index)
    return pd.DataFrame(
        {"open": close, "high": close + 1.0, "low": close - 1.0, "close": close, "volume": 10.0}
    )


def _score(config: StrategyConfig) -> float:
    return config.max_multiplier / 10.0 + config.price_threshold - config.rsi_period / 1000.0


def _fake_backtest(config, df, window_size=None):
    return SimulationResult(total_return=_score(config), start_balance=500.0, end_balance=500.0)


SMALL = GAParams(population_size=12, generations=6, elite_size=2, max_workers=1)


def test_best_fitness_never_decreases(monkeypatch):
    monkeypatch.setattr("optimize.genetic.run_backtest", _fake_backtest)
    run = run_genetic_optimization(
        StrategyConfig(), _build_frame(), rng=np.random.default_rng(11), family=CLASSIC, params=SMALL
    )
    bests = [stats.best for stats in run.history]
    assert len(bests) == SMALL.generations
    assert all(later >= earlier for earlier, later in zip(bests, bests[1:]))
    assert run.fitness == pytest.approx(max(bests))
    assert run.fitness == pytest.approx(_score(run.config))


def test_cycle_off_keeps_take_profit_zero(monkeypatch):
    seen = []

    def _recording(config, df, window_size=None):
        seen.append(config)
        return _fake_backtest(config, df, window_size)

    monkeypatch.setattr("optimize.genetic.run_backtest", _recording)
    run = run_genetic_optimization(
        StrategyConfig(cycle=False),
        _build_frame(),
        rng=np.random.default_rng(5),
        family=CLASSIC,
        params=SMALL,
    )
    assert run.config.tp_percent == 0.0
    assert seen and all(config.tp_percent == 0.0 for config in seen)


def test_operators_keep_canonical_indicator_set():
    rng = np.random.default_rng(2)
    family = ADVANCED.restrict(["hullma", "supertrend"])
    population = initialize_population(StrategyConfig(), 10, rng, family)
    for _ in range(50):
        a = population[int(rng.integers(len(population)))]
        b = population[int(rng.integers(len(population)))]
        child = crossover(a, b, 1.0, rng, family)
        mutate(child, 1.0, rng, family)
        assert child.config.indicators == ("hullma", "supertrend")
        assert child.config.family == "advanced"
        assert child.evaluated is False


def test_crossover_with_zero_rate_clones_first_parent():
    rng = np.random.default_rng(0)
    a = Individual(config=StrategyConfig(max_multiplier=2.5), fitness=0.4, evaluated=True)
    b = Individual(config=StrategyConfig(max_multiplier=1.2), fitness=0.1, evaluated=True)
    child = crossover(a, b, 0.0, rng, CLASSIC)
    assert child is not a
    assert child.config == a.config
    assert child.fitness == 0.4
    assert child.evaluated is True


def test_mutate_with_zero_rate_is_noop():
    individual = Individual(config=StrategyConfig(), fitness=0.2, evaluated=True)
    before = individual.config
    mutate(individual, 0.0, np.random.default_rng(1), CLASSIC)
    assert individual.config is before
    assert individual.fitness == 0.2
    assert individual.evaluated is True


def test_mutate_changes_at_most_one_field():
    rng = np.random.default_rng(9)
    base = StrategyConfig()
    for _ in range(30):
        individual = Individual(config=base, evaluated=True)
        mutate(individual, 1.0, rng, CLASSIC)
        diff = [key for key, value in base.to_dict().items() if individual.config.to_dict()[key] != value]
        assert len(diff) <= 1
        assert individual.evaluated is False


def test_tournament_ties_go_to_first_draw():
    population = [Individual(config=StrategyConfig(rsi_period=10 + idx), fitness=1.0) for idx in range(6)]
    winner = tournament_selection(population, 3, np.random.default_rng(42))
    first_draw = int(np.random.default_rng(42).integers(len(population)))
    assert winner is population[first_draw]


def test_tournament_prefers_higher_fitness():
    population = [Individual(config=StrategyConfig(), fitness=float(idx)) for idx in range(4)]
    winner = tournament_selection(population, len(population) * 10, np.random.default_rng(1))
    assert winner.fitness == 3.0


def test_failed_backtest_gets_penalty(monkeypatch):
    def _flaky(config, df, window_size=None):
        if config.rsi_period == 14:
            raise RuntimeError("boom")
        if config.rsi_period == 16:
            return SimulationResult(total_return=math.nan)
        return SimulationResult(total_return=0.05)

    monkeypatch.setattr("optimize.genetic.run_backtest", _flaky)
    population = [
        Individual(config=StrategyConfig(rsi_period=14)),
        Individual(config=StrategyConfig(rsi_period=16)),
        Individual(config=StrategyConfig(rsi_period=18)),
    ]
    scored = evaluate_population(population, _build_frame(), max_workers=2)
    assert scored == 3
    assert population[0].fitness == C.NON_FINITE_PENALTY
    assert population[0].result is None
    assert population[1].fitness == C.NON_FINITE_PENALTY
    assert population[2].fitness == pytest.approx(0.05)
    assert all(individual.evaluated for individual in population)


def test_evaluate_skips_already_scored(monkeypatch):
    calls = []

    def _counting(config, df, window_size=None):
        calls.append(config)
        return SimulationResult(total_return=0.1)

    monkeypatch.setattr("optimize.genetic.run_backtest", _counting)
    population = [
        Individual(config=StrategyConfig(), fitness=0.7, evaluated=True),
        Individual(config=StrategyConfig(rsi_period=20)),
    ]
    assert evaluate_population(population, _build_frame()) == 1
    assert len(calls) == 1
    assert population[0].fitness == 0.7


def test_thread_pool_matches_serial(monkeypatch):
    monkeypatch.setattr("optimize.genetic.run_backtest", _fake_backtest)
    rng = np.random.default_rng(4)
    configs = [individual.config for individual in initialize_population(StrategyConfig(), 16, rng, CLASSIC)]
    serial = [Individual(config=config) for config in configs]
    pooled = [Individual(config=config) for config in configs]

    evaluate_population(serial, _build_frame(), max_workers=1)
    evaluate_population(pooled, _build_frame(), max_workers=4, executor="thread")

    assert [item.fitness for item in pooled] == pytest.approx([item.fitness for item in serial])


def test_same_seed_same_result(monkeypatch):
    monkeypatch.setattr("optimize.genetic.run_backtest", _fake_backtest)
    runs = [
        run_genetic_optimization(
            StrategyConfig(), _build_frame(), rng=np.random.default_rng(21), family=CLASSIC, params=SMALL
        )
        for _ in range(2)
    ]
    assert runs[0].config == runs[1].config
    assert runs[0].fitness == runs[1].fitness


def test_invalid_budget_rejected():
    with pytest.raises(ValueError):
        run_genetic_optimization(
            StrategyConfig(),
            _build_frame(),
            rng=np.random.default_rng(0),
            family=CLASSIC,
            params=GAParams(population_size=0),
        )


def test_single_pool_shared_across_generations(monkeypatch):
    monkeypatch.setattr("optimize.genetic.run_backtest", _fake_backtest)
    created = []

    class CountingPool(ThreadPoolExecutor):
        def __init__(self, *args, **kwargs):
            super().__init__(*args, **kwargs)
            created.append(self)

    monkeypatch.setattr("optimize.genetic.ThreadPoolExecutor", CountingPool)
    params = GAParams(population_size=8, generations=4, elite_size=2, max_workers=3)

    run_genetic_optimization(
        StrategyConfig(), _build_frame(), rng=np.random.default_rng(5), family=CLASSIC, params=params
    )

    assert len(created) == 1
    assert created[0]._shutdown


def test_create_executor_single_worker_is_serial():
    assert create_executor(1) is None
    pool = create_executor(2, "thread")
    assert isinstance(pool, ThreadPoolExecutor)
    pool.shutdown()
