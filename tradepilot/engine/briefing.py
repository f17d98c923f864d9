"""
Briefing Mode
=============

Analyzes a watchlist one symbol at a time, pausing between symbols to
stay inside provider and reasoning rate limits, and summarizes the
outcomes.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence
import asyncio
import logging
import time

from tradepilot.models import AnalysisOutcome, OutcomeKind

logger = logging.getLogger(__name__)

DEFAULT_DELAY_SECONDS = 5.0


@dataclass
class BriefingReport:
    """Outcomes of one briefing run, in watchlist order."""
    started_at: float = field(default_factory=time.time)
    finished_at: Optional[float] = None
    outcomes: List[AnalysisOutcome] = field(default_factory=list)

    @property
    def recommendations(self):
        return [o.recommendation for o in self.outcomes if o.ok]

    def counts(self) -> Dict[str, int]:
        counts = {kind.value: 0 for kind in OutcomeKind}
        for outcome in self.outcomes:
            counts[outcome.kind.value] += 1
        return counts

    @property
    def budget_exhausted(self) -> bool:
        return any(o.kind is OutcomeKind.SKIPPED_BUDGET_EXHAUSTED for o in self.outcomes)

    def summary(self) -> str:
        lines = [f"Briefing: {len(self.outcomes)} symbols, {len(self.recommendations)} recommendations"]
        for outcome in self.outcomes:
            rec = outcome.recommendation
            if rec is not None:
                lines.append(f"  {rec.ticker:<6} {rec.action.value:<4} {rec.confidence:>3}%  {rec.rationale}")
            else:
                lines.append(f"  {outcome.symbol:<6} {outcome.kind.value}: {outcome.reason}")
        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "counts": self.counts(),
            "outcomes": [o.to_dict() for o in self.outcomes],
        }


async def run_briefing(
    engine,
    symbols: Sequence[str],
    delay_seconds: float = DEFAULT_DELAY_SECONDS,
    confidence_threshold: Optional[int] = None,
    stop_on_budget_exhausted: bool = True,
) -> BriefingReport:
    """
    Analyze `symbols` sequentially with `delay_seconds` between them.

    Stops early once the AI budget is exhausted, since every remaining
    symbol would be skipped for the same reason.
    """
    report = BriefingReport()
    logger.info(f"Starting briefing for {len(symbols)} symbols")

    for i, symbol in enumerate(symbols):
        if i > 0 and delay_seconds > 0:
            await asyncio.sleep(delay_seconds)

        outcome = await engine.analyze(symbol, confidence_threshold=confidence_threshold)
        report.outcomes.append(outcome)
        logger.info(f"{symbol}: {outcome.kind.value}")

        if stop_on_budget_exhausted and outcome.kind is OutcomeKind.SKIPPED_BUDGET_EXHAUSTED:
            logger.warning(f"AI budget exhausted, skipping remaining {len(symbols) - i - 1} symbols")
            break

    report.finished_at = time.time()
    logger.info(f"Briefing complete: {report.counts()}")
    return report
