"""
Backtest Engine
===============

Replays the recommendation pipeline over historical candles.

`analyze_at()` produces the recommendation the engine would have made
at the last candle of a series, using only that series: a synthetic
quote from the last bar, indicators and patterns computed directly (no
cache), an optional regime override and a prompt that pins the as-of
date.

`run()` walks a series bar by bar. While flat it asks `analyze_at()`
for a recommendation and opens a position on BUY or SELL; while in a
position it exits when a bar's range touches the target (win) or the
stop (loss). A position still open at the end is closed at the last
close as "expired".

Metrics:
- Win rate over closed wins and losses
- Average win / loss (%), profit factor (999 when there are no losses)
- Total return, max drawdown, Sharpe (per bar, annualized by sqrt(252))
- Longest win / lose streaks, expectancy
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence
import asyncio
import logging

import numpy as np

from tradepilot.analytics.indicators import calculate_indicators
from tradepilot.analytics.patterns import detect_patterns, significant_patterns
from tradepilot.budget import AIBudgetTracker
from tradepilot.engine.parser import (
    BUY_STOP_FACTOR,
    BUY_TARGET_FACTOR,
    SELL_STOP_FACTOR,
    SELL_TARGET_FACTOR,
    parse_recommendation_response,
)
from tradepilot.engine.prompt import build_backtest_prompt
from tradepilot.engine.sanitize import sanitize_symbol
from tradepilot.errors import ReasoningError, ResponseParseError
from tradepilot.models import (
    Action,
    AnalysisOutcome,
    Candle,
    MarketRegime,
    OutcomeKind,
    Quote,
    Recommendation,
)
from tradepilot.reasoning import Persona, ReasoningBackend

logger = logging.getLogger(__name__)

MIN_BACKTEST_CANDLES = 50
DEFAULT_BACKTEST_THRESHOLD = 70
INDICATOR_WINDOW = 200
NO_LOSS_PROFIT_FACTOR = 999.0
TRADING_DAYS_PER_YEAR = 252


# ============== RESULT TYPES ==============

@dataclass
class BacktestTrade:
    symbol: str
    action: Action
    confidence: int
    entry_time: int
    entry_price: float
    price_target: float
    stop_loss: float
    rationale: str = ""
    exit_time: Optional[int] = None
    exit_price: Optional[float] = None
    outcome: str = "pending"  # pending, win, loss, expired
    pnl_percent: float = 0.0
    pnl_dollars: float = 0.0
    days_held: float = 0.0

    def close(self, time: int, price: float, outcome: str, position_size: float):
        self.exit_time = time
        self.exit_price = price
        self.outcome = outcome
        self.pnl_percent = pnl_percent(self.action, self.entry_price, price)
        self.pnl_dollars = position_size * self.pnl_percent / 100
        self.days_held = round((time - self.entry_time) / 86400, 1)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "action": self.action.value,
            "confidence": self.confidence,
            "entry_time": self.entry_time,
            "entry_price": self.entry_price,
            "price_target": self.price_target,
            "stop_loss": self.stop_loss,
            "exit_time": self.exit_time,
            "exit_price": self.exit_price,
            "outcome": self.outcome,
            "pnl_percent": round(self.pnl_percent, 4),
            "pnl_dollars": round(self.pnl_dollars, 2),
            "days_held": self.days_held,
        }


@dataclass(frozen=True)
class EquityPoint:
    time: int
    equity: float
    drawdown_percent: float


@dataclass(frozen=True)
class BacktestMetrics:
    total_trades: int = 0
    winning_trades: int = 0
    losing_trades: int = 0
    win_rate: float = 0.0
    avg_win: float = 0.0
    avg_loss: float = 0.0
    profit_factor: float = 0.0
    max_drawdown_percent: float = 0.0
    sharpe_ratio: float = 0.0
    avg_holding_days: float = 0.0
    total_return: float = 0.0
    total_return_percent: float = 0.0
    longest_win_streak: int = 0
    longest_lose_streak: int = 0
    expectancy: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return dict(vars(self))


@dataclass
class BacktestResult:
    symbol: str
    initial_capital: float
    trades: List[BacktestTrade] = field(default_factory=list)
    equity_curve: List[EquityPoint] = field(default_factory=list)
    outcomes: List[AnalysisOutcome] = field(default_factory=list)
    metrics: BacktestMetrics = field(default_factory=BacktestMetrics)
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "initial_capital": self.initial_capital,
            "trades": [t.to_dict() for t in self.trades],
            "equity_curve": [vars(p) for p in self.equity_curve],
            "metrics": self.metrics.to_dict(),
            "analyses": len(self.outcomes),
            "errors": list(self.errors),
        }


# ============== TRADE MATH ==============

def pnl_percent(action: Action, entry: float, exit_price: float) -> float:
    if action is Action.BUY:
        return (exit_price - entry) / entry * 100
    return (entry - exit_price) / entry * 100


def default_target(action: Action, price: float) -> float:
    factor = BUY_TARGET_FACTOR if action is Action.BUY else SELL_TARGET_FACTOR
    return round(price * factor, 2)


def default_stop(action: Action, price: float) -> float:
    factor = BUY_STOP_FACTOR if action is Action.BUY else SELL_STOP_FACTOR
    return round(price * factor, 2)


def check_exit(trade: BacktestTrade, candle: Candle) -> Optional[tuple]:
    """(exit_price, outcome) when the bar touches the target or the stop.

    The target is checked first, so a bar spanning both counts as a win.
    """
    if trade.action is Action.BUY:
        if candle.high >= trade.price_target:
            return trade.price_target, "win"
        if candle.low <= trade.stop_loss:
            return trade.stop_loss, "loss"
    elif trade.action is Action.SELL:
        if candle.low <= trade.price_target:
            return trade.price_target, "win"
        if candle.high >= trade.stop_loss:
            return trade.stop_loss, "loss"
    return None


def _streaks(trades: Sequence[BacktestTrade]) -> tuple:
    win = lose = best_win = best_lose = 0
    for trade in trades:
        if trade.outcome == "win":
            win, lose = win + 1, 0
            best_win = max(best_win, win)
        elif trade.outcome == "loss":
            win, lose = 0, lose + 1
            best_lose = max(best_lose, lose)
    return best_win, best_lose


def calculate_metrics(
    trades: Sequence[BacktestTrade],
    equity_curve: Sequence[EquityPoint],
    initial_capital: float,
    final_capital: float,
) -> BacktestMetrics:
    wins = [t for t in trades if t.outcome == "win"]
    losses = [t for t in trades if t.outcome == "loss"]
    decided = len(wins) + len(losses)

    win_rate = len(wins) / decided * 100 if decided else 0.0
    avg_win = float(np.mean([t.pnl_percent for t in wins])) if wins else 0.0
    avg_loss = abs(float(np.mean([t.pnl_percent for t in losses]))) if losses else 0.0

    gross_profit = sum(t.pnl_dollars for t in wins)
    gross_loss = abs(sum(t.pnl_dollars for t in losses))
    if gross_loss > 0:
        profit_factor = gross_profit / gross_loss
    else:
        profit_factor = NO_LOSS_PROFIT_FACTOR if gross_profit > 0 else 0.0

    sharpe = 0.0
    if len(equity_curve) > 1:
        equity = np.array([p.equity for p in equity_curve], dtype="float64")
        returns = np.diff(equity) / equity[:-1]
        std = returns.std()
        if std > 0:
            sharpe = float(returns.mean() * np.sqrt(TRADING_DAYS_PER_YEAR) / std)

    closed = [t for t in trades if t.outcome in ("win", "loss")]
    best_win, best_lose = _streaks(trades)
    total_return = final_capital - initial_capital

    return BacktestMetrics(
        total_trades=len(trades),
        winning_trades=len(wins),
        losing_trades=len(losses),
        win_rate=round(win_rate, 2),
        avg_win=round(avg_win, 4),
        avg_loss=round(avg_loss, 4),
        profit_factor=round(profit_factor, 4),
        max_drawdown_percent=round(max((p.drawdown_percent for p in equity_curve), default=0.0), 4),
        sharpe_ratio=round(sharpe, 4),
        avg_holding_days=round(float(np.mean([t.days_held for t in closed])), 2) if closed else 0.0,
        total_return=round(total_return, 2),
        total_return_percent=round(total_return / initial_capital * 100, 4) if initial_capital else 0.0,
        longest_win_streak=best_win,
        longest_lose_streak=best_lose,
        expectancy=round(win_rate / 100 * avg_win - (100 - win_rate) / 100 * avg_loss, 4),
    )


# ============== ENGINE ==============

class BacktestEngine:
    """
    Historical replay of the recommendation pipeline.

    Example Usage:
        engine = BacktestEngine(backend)
        outcome = await engine.analyze_at("AAPL", candles[:120])
        result = await engine.run("AAPL", candles, step=5)
        print(result.metrics.win_rate)
    """

    def __init__(
        self,
        backend: ReasoningBackend,
        ai_budget: Optional[AIBudgetTracker] = None,
        persona: Optional[Persona] = None,
        call_delay: float = 0.1,
    ):
        self.backend = backend
        self.ai_budget = ai_budget
        self.persona = persona
        self.call_delay = call_delay

    @staticmethod
    def synthetic_quote(symbol: str, candles: Sequence[Candle]) -> Quote:
        """Quote as it would have looked at the close of the last bar."""
        last = candles[-1]
        change = last.close - last.open
        return Quote(
            symbol=symbol,
            price=last.close,
            change=round(change, 4),
            change_percent=round(change / last.open * 100, 4) if last.open else 0.0,
            volume=int(last.volume or 0),
            high=last.high,
            low=last.low,
            open=last.open,
            previous_close=candles[-2].close if len(candles) > 1 else last.open,
            timestamp=float(last.time),
            source="backtest",
        )

    async def analyze_at(
        self,
        symbol: str,
        candles: Sequence[Candle],
        regime_override: Optional[MarketRegime] = None,
        confidence_threshold: int = DEFAULT_BACKTEST_THRESHOLD,
        skip_budget_check: bool = True,
        headlines: Optional[List[str]] = None,
    ) -> AnalysisOutcome:
        """
        Recommendation as of the last candle in `candles`.

        The AI budget is charged, atomically and just before the backend
        call, only when `skip_budget_check` is False. Position sizing
        suggested by the backend is carried through unchanged.
        """
        symbol = sanitize_symbol(symbol)

        if not self.backend.has_credentials:
            return AnalysisOutcome.skipped_no_credentials(symbol)

        use_budget = not skip_budget_check and self.ai_budget is not None

        if len(candles) < MIN_BACKTEST_CANDLES:
            logger.warning(f"Insufficient historical data for {symbol}: {len(candles)} candles")
            return AnalysisOutcome.failed(symbol, f"Insufficient history ({len(candles)} < {MIN_BACKTEST_CANDLES})")

        candles = list(candles)
        last = candles[-1]
        quote = self.synthetic_quote(symbol, candles)
        indicators = calculate_indicators(candles)
        all_patterns = detect_patterns(candles, regime=regime_override)
        patterns = significant_patterns(all_patterns)
        logger.debug(f"Backtest {symbol}: {len(all_patterns)} patterns, {len(patterns)} significant")

        prompt = build_backtest_prompt(
            symbol, quote, indicators, headlines or [], regime_override, patterns, last.time
        )

        if use_budget and not self.ai_budget.try_acquire():
            status = self.ai_budget.status()
            logger.warning(f"Daily AI budget exhausted ({status.used}/{status.limit})")
            return AnalysisOutcome.skipped_budget_exhausted(symbol)

        try:
            response = await self.backend.complete(prompt, persona=self.persona)
        except ReasoningError as e:
            logger.warning(f"Backtest: no response from reasoning backend: {e}")
            response = None

        if not response:
            return AnalysisOutcome.failed(symbol, "No response from reasoning backend")

        try:
            parsed = parse_recommendation_response(response, quote.price)
        except ResponseParseError as e:
            logger.warning(f"Backtest: failed to parse response: {e}")
            return AnalysisOutcome.failed(symbol, f"Parse failed: {e}")

        if parsed.confidence < confidence_threshold:
            logger.debug(f"Backtest confidence too low ({parsed.confidence}% < {confidence_threshold}%)")
            return AnalysisOutcome.skipped_low_confidence(symbol, parsed.confidence, confidence_threshold)

        return AnalysisOutcome.success(Recommendation(
            ticker=symbol,
            action=parsed.action,
            confidence=parsed.confidence,
            rationale=parsed.rationale,
            price_target=parsed.price_target,
            stop_loss=parsed.stop_loss,
            sources=["Technical Analysis (Backtest)", self.backend.label],
            suggested_shares=parsed.suggested_shares,
            suggested_dollar_amount=parsed.suggested_dollar_amount,
            timestamp=float(last.time),
        ))

    async def run(
        self,
        symbol: str,
        candles: Sequence[Candle],
        step: int = 1,
        window: Optional[int] = INDICATOR_WINDOW,
        start_index: Optional[int] = None,
        initial_capital: float = 10_000.0,
        position_size_percent: float = 10.0,
        confidence_threshold: int = DEFAULT_BACKTEST_THRESHOLD,
        regime_override: Optional[MarketRegime] = None,
    ) -> BacktestResult:
        """
        Simulate trading `symbol` over `candles`.

        Args:
            step: Analyze every `step`-th bar while flat
            window: Trailing candles handed to analyze_at (None for all history)
            start_index: First bar to simulate (default: first bar with 50 candles of history)
            initial_capital: Starting equity
            position_size_percent: Notional per trade as % of initial capital
        """
        symbol = sanitize_symbol(symbol)
        candles = list(candles)
        step = max(1, int(step))
        result = BacktestResult(symbol=symbol, initial_capital=initial_capital)
        position_size = initial_capital * position_size_percent / 100

        start = MIN_BACKTEST_CANDLES - 1 if start_index is None else max(start_index, MIN_BACKTEST_CANDLES - 1)
        if start >= len(candles):
            result.errors.append(f"Insufficient history: {len(candles)} candles")
            return result

        capital = initial_capital
        peak = initial_capital
        open_trade: Optional[BacktestTrade] = None
        logger.info(f"Backtest {symbol}: simulating {len(candles) - start} bars")

        for i in range(start, len(candles)):
            candle = candles[i]

            if open_trade is not None:
                hit = check_exit(open_trade, candle)
                if hit is not None:
                    open_trade.close(candle.time, hit[0], hit[1], position_size)
                    capital += open_trade.pnl_dollars
                    result.trades.append(open_trade)
                    logger.info(f"Closed trade: {open_trade.outcome}, P&L: {open_trade.pnl_percent:.2f}%")
                    open_trade = None

            if open_trade is None and (i - start) % step == 0:
                history = candles[max(0, i + 1 - window):i + 1] if window else candles[:i + 1]
                outcome = await self.analyze_at(
                    symbol,
                    history,
                    regime_override=regime_override,
                    confidence_threshold=confidence_threshold,
                )
                result.outcomes.append(outcome)
                rec = outcome.recommendation
                if rec is not None and rec.action is not Action.HOLD:
                    open_trade = BacktestTrade(
                        symbol=symbol,
                        action=rec.action,
                        confidence=rec.confidence,
                        entry_time=candle.time,
                        entry_price=candle.close,
                        price_target=rec.price_target or default_target(rec.action, candle.close),
                        stop_loss=rec.stop_loss or default_stop(rec.action, candle.close),
                        rationale=rec.rationale,
                    )
                    logger.info(
                        f"{format_date(candle.time)} opened {rec.action.value} @ ${candle.close:.2f} "
                        f"(conf: {rec.confidence}%)"
                    )
                elif outcome.kind is OutcomeKind.FAILED:
                    result.errors.append(f"{candle.time}: {outcome.reason}")
                if self.call_delay:
                    await asyncio.sleep(self.call_delay)

            unrealized = 0.0
            if open_trade is not None:
                unrealized = position_size * pnl_percent(open_trade.action, open_trade.entry_price, candle.close) / 100
            equity = capital + unrealized
            peak = max(peak, equity)
            drawdown = (peak - equity) / peak * 100 if peak > 0 else 0.0
            result.equity_curve.append(EquityPoint(candle.time, round(equity, 2), round(drawdown, 4)))

        if open_trade is not None:
            last = candles[-1]
            open_trade.close(last.time, last.close, "expired", position_size)
            capital += open_trade.pnl_dollars
            result.trades.append(open_trade)

        result.metrics = calculate_metrics(result.trades, result.equity_curve, initial_capital, capital)
        logger.info(
            f"Backtest {symbol} complete: {len(result.trades)} trades, "
            f"{result.metrics.win_rate:.1f}% win rate, {result.metrics.total_return_percent:.2f}% return"
        )
        return result


def format_date(timestamp: int) -> str:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).strftime("%Y-%m-%d")
