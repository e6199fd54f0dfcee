"""최적화 실행을 위한 CLI 진입점."""
from __future__ import annotations

import argparse
import importlib.util
import sys
from pathlib import Path
from typing import List, Optional, Sequence

from . import constants as C
from . import main_loop

# Typer 로 CLI를 제공할 수 있는지 여부를 확인합니다.
typer_spec = importlib.util.find_spec("typer")
if typer_spec is not None:  # pragma: no cover - 선택적 의존성
    import typer
else:  # pragma: no cover - Typer 미설치 환경 폴백
    typer = None  # type: ignore[assignment]

TYPER_AVAILABLE = typer_spec is not None

_ORIGINAL_ARGV: List[str] = []

if TYPER_AVAILABLE:
    app = typer.Typer(help="DCA 전략 백테스트/최적화 CLI")
else:  # pragma: no cover - Typer 없음
    app = None  # type: ignore[assignment]


def _build_argparse_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="optimize.run",
        description="DCA 전략 백테스트 및 GA 최적화를 실행하는 CLI",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("--config", type=Path, help="전략 설정 YAML 경로")
    parser.add_argument("--data", type=Path, help="캔들 CSV 경로")
    parser.add_argument("--symbol", type=str, help="심볼 강제 지정")
    parser.add_argument("--interval", type=str, help="캔들 인터벌 강제 지정 (예: 5m)")
    parser.add_argument("--output", type=Path, help="결과 저장 디렉터리(기본: results/<SYMBOL>_<interval>)")
    parser.add_argument("--optimize", action="store_true", help="유전 알고리즘으로 파라미터 최적화")
    parser.add_argument("--exhaustive", action="store_true", help="지표 조합 전수 탐색")
    parser.add_argument("--advanced-combo", action="store_true", help="고급 지표 패밀리 사용")
    parser.add_argument("--all-intervals", action="store_true", help="데이터 루트의 모든 인터벌을 실행하고 최고 인터벌 선택")
    parser.add_argument("--data-root", type=Path, default=C.DEFAULT_DATA_ROOT, help="<EXCHANGE>/<SYMBOL>/<INTERVAL>/candles.csv 루트")
    parser.add_argument("--console-only", action="store_true", help="콘솔 출력만 하고 결과 파일은 쓰지 않음")
    parser.add_argument("--cycle", dest="cycle", action="store_true", help="익절 사이클 모드 사용")
    parser.add_argument("--no-cycle", dest="cycle", action="store_false", help="익절 사이클 모드 비활성화")
    parser.set_defaults(cycle=None)
    parser.add_argument("--period", type=str, help="최근 구간만 사용 (예: 30d, 7days, 168h)")
    parser.add_argument("--seed", type=int, help="난수 시드")
    parser.add_argument("--workers", type=int, default=C.MAX_PARALLEL_WORKERS, help="적합도 평가 worker 수")
    parser.add_argument("--executor", choices=["thread", "process"], default="thread", help="적합도 평가 실행기")
    parser.add_argument("--initial-balance", type=float, help="초기 자본")
    parser.add_argument("--commission", type=float, help="수수료율")
    parser.add_argument("--window", type=int, help="지표 워밍업 캔들 수")
    parser.add_argument("--base-amount", type=float, help="기본 주문 금액")
    parser.add_argument("--max-multiplier", type=float, help="최대 주문 배수")
    parser.add_argument("--price-threshold", type=float, help="DCA 추가 진입 하락폭")
    parser.add_argument("--tp-percent", type=float, help="익절 비율")
    parser.add_argument("--min-order-qty", type=float, help="최소 주문 수량 단위")
    parser.add_argument("--wf-enable", action="store_true", help="워크포워드 검증 실행")
    parser.add_argument("--wf-rolling", action="store_true", help="롤링 워크포워드 (기본: 홀드아웃)")
    parser.add_argument("--wf-split-ratio", type=float, default=C.DEFAULT_WF_SPLIT_RATIO, help="홀드아웃 학습 비율")
    parser.add_argument("--wf-train-days", type=int, default=C.DEFAULT_WF_TRAIN_DAYS, help="롤링 학습 기간(일)")
    parser.add_argument("--wf-test-days", type=int, default=C.DEFAULT_WF_TEST_DAYS, help="롤링 검증 기간(일)")
    parser.add_argument("--wf-roll-days", type=int, default=C.DEFAULT_WF_ROLL_DAYS, help="롤링 이동 간격(일)")
    return parser


if TYPER_AVAILABLE:

    @app.callback(invoke_without_command=True)
    def _typer_entry(
        ctx: typer.Context,
        config: Optional[Path] = typer.Option(None, help="전략 설정 YAML 경로"),
        data: Optional[Path] = typer.Option(None, help="캔들 CSV 경로"),
        symbol: Optional[str] = typer.Option(None, help="심볼 강제 지정"),
        interval: Optional[str] = typer.Option(None, help="캔들 인터벌 강제 지정"),
        output: Optional[Path] = typer.Option(None, help="결과 저장 디렉터리"),
        optimize: bool = typer.Option(False, "--optimize", help="유전 알고리즘 최적화"),
        exhaustive: bool = typer.Option(False, "--exhaustive", help="지표 조합 전수 탐색"),
        advanced_combo: bool = typer.Option(False, "--advanced-combo", help="고급 지표 패밀리 사용"),
        all_intervals: bool = typer.Option(False, "--all-intervals", help="모든 인터벌 실행 후 최고 인터벌 선택"),
        data_root: Path = typer.Option(C.DEFAULT_DATA_ROOT, help="<EXCHANGE>/<SYMBOL>/<INTERVAL>/candles.csv 루트"),
        console_only: bool = typer.Option(False, "--console-only", help="결과 파일을 쓰지 않음"),
        cycle: Optional[bool] = typer.Option(None, "--cycle/--no-cycle", help="익절 사이클 모드"),
        period: Optional[str] = typer.Option(None, help="최근 구간만 사용"),
        seed: Optional[int] = typer.Option(None, help="난수 시드"),
        workers: int = typer.Option(C.MAX_PARALLEL_WORKERS, help="적합도 평가 worker 수"),
        executor: str = typer.Option("thread", help="적합도 평가 실행기 (thread/process)"),
        initial_balance: Optional[float] = typer.Option(None, help="초기 자본"),
        commission: Optional[float] = typer.Option(None, help="수수료율"),
        window: Optional[int] = typer.Option(None, help="지표 워밍업 캔들 수"),
        base_amount: Optional[float] = typer.Option(None, help="기본 주문 금액"),
        max_multiplier: Optional[float] = typer.Option(None, help="최대 주문 배수"),
        price_threshold: Optional[float] = typer.Option(None, help="DCA 추가 진입 하락폭"),
        tp_percent: Optional[float] = typer.Option(None, help="익절 비율"),
        min_order_qty: Optional[float] = typer.Option(None, help="최소 주문 수량 단위"),
        wf_enable: bool = typer.Option(False, "--wf-enable", help="워크포워드 검증 실행"),
        wf_rolling: bool = typer.Option(False, "--wf-rolling", help="롤링 워크포워드"),
        wf_split_ratio: float = typer.Option(C.DEFAULT_WF_SPLIT_RATIO, help="홀드아웃 학습 비율"),
        wf_train_days: int = typer.Option(C.DEFAULT_WF_TRAIN_DAYS, help="롤링 학습 기간(일)"),
        wf_test_days: int = typer.Option(C.DEFAULT_WF_TEST_DAYS, help="롤링 검증 기간(일)"),
        wf_roll_days: int = typer.Option(C.DEFAULT_WF_ROLL_DAYS, help="롤링 이동 간격(일)"),
    ) -> argparse.Namespace:
        namespace = argparse.Namespace(
            config=config,
            data=data,
            symbol=symbol,
            interval=interval,
            output=output,
            optimize=optimize,
            exhaustive=exhaustive,
            advanced_combo=advanced_combo,
            all_intervals=all_intervals,
            data_root=data_root,
            console_only=console_only,
            cycle=cycle,
            period=period,
            seed=seed,
            workers=workers,
            executor=executor,
            initial_balance=initial_balance,
            commission=commission,
            window=window,
            base_amount=base_amount,
            max_multiplier=max_multiplier,
            price_threshold=price_threshold,
            tp_percent=tp_percent,
            min_order_qty=min_order_qty,
            wf_enable=wf_enable,
            wf_rolling=wf_rolling,
            wf_split_ratio=wf_split_ratio,
            wf_train_days=wf_train_days,
            wf_test_days=wf_test_days,
            wf_roll_days=wf_roll_days,
        )
        ctx.obj = namespace
        if ctx.resilient_parsing:
            return namespace

        main_loop.execute(namespace, list(_ORIGINAL_ARGV))
        return namespace

else:  # pragma: no cover - Typer 미사용 환경에서 placeholder 유지
    app = None  # type: ignore[assignment]


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    """CLI 인자를 파싱해 :class:`argparse.Namespace` 로 반환합니다."""

    tokens = list(argv or [])
    global _ORIGINAL_ARGV
    _ORIGINAL_ARGV = list(tokens)

    if not TYPER_AVAILABLE:
        return _build_argparse_parser().parse_args(tokens)

    assert typer is not None and app is not None  # for type-checkers
    cmd = typer.main.get_command(app)
    with cmd.make_context("optimize", tokens, resilient_parsing=True) as ctx:
        cmd.invoke(ctx)
        namespace = ctx.obj if isinstance(ctx.obj, argparse.Namespace) else argparse.Namespace()
    return namespace


def main(argv: Optional[Sequence[str]] = None) -> None:
    """Entry point for ``python -m optimize.run``."""

    original_argv = list(sys.argv[1:]) if argv is None else list(argv)

    global _ORIGINAL_ARGV
    _ORIGINAL_ARGV = list(original_argv)
    if not TYPER_AVAILABLE or app is None:
        namespace = parse_args(original_argv)
        main_loop.execute(namespace, list(_ORIGINAL_ARGV))
        return

    assert typer is not None
    app(args=original_argv)


__all__ = ["parse_args", "main", "app", "TYPER_AVAILABLE"]
