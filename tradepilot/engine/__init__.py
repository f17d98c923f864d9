"""
Recommendation engine: prompt assembly, response parsing, orchestration,
historical backtesting and watchlist briefings.
"""

from tradepilot.engine.backtest import BacktestEngine, BacktestResult
from tradepilot.engine.briefing import BriefingReport, run_briefing
from tradepilot.engine.orchestrator import (
    AnalysisPhase,
    PhaseStatus,
    RecommendationEngine,
    build_engine,
)
from tradepilot.engine.parser import ParsedResponse, parse_recommendation_response
from tradepilot.engine.sanitize import sanitize_for_prompt, sanitize_symbol

__all__ = [
    "AnalysisPhase",
    "BacktestEngine",
    "BacktestResult",
    "BriefingReport",
    "ParsedResponse",
    "PhaseStatus",
    "RecommendationEngine",
    "build_engine",
    "parse_recommendation_response",
    "run_briefing",
    "sanitize_for_prompt",
    "sanitize_symbol",
]
