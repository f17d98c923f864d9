"""
Recommendation Engine
=====================

Orchestrates one analysis request end to end:

    credential check -> AI budget check
    -> regime (context cache)
    -> price (gateway quote)
    -> technicals (gateway candles -> context cache indicators)
    -> relative strength vs SPY
    -> patterns (context cache, significant only)
    -> memory (similar past scenarios)
    -> news
    -> ai (prompt -> budget charge -> backend -> parse -> confidence gate)

Every request ends in an AnalysisOutcome. Price and technicals are
required; regime, patterns, memory and news degrade to empty context.
The AI budget is checked up front and charged atomically right before
the backend call, so an analysis that fails earlier costs nothing.

Progress is reported through an optional callback:
    on_phase_update(phase_id, status, result_text)
with phase ids regime/price/technicals/patterns/news/ai and statuses
active/complete/error. Callback exceptions are logged and ignored.
"""

from enum import Enum
from typing import Callable, List, Optional
import logging
import os

from tradepilot.analytics.indicators import (
    RelativeStrength,
    calculate_relative_strength,
    calculate_rsi,
)
from tradepilot.analytics.patterns import significant_patterns
from tradepilot.analytics.regime import MarketRegimeClassifier, RegimeThresholds
from tradepilot.budget import AIBudgetTracker, ApiBudgetTracker, BudgetStore
from tradepilot.context_cache import ContextCache
from tradepilot.credentials import CredentialStore
from tradepilot.engine.parser import parse_recommendation_response
from tradepilot.engine.prompt import build_analysis_prompt
from tradepilot.engine.sanitize import MAX_LENGTHS, sanitize_symbol
from tradepilot.errors import ReasoningError, ResponseParseError
from tradepilot.gateway import MarketDataGateway
from tradepilot.memory import MemoryScenario, MemorySignature, MemoryStore
from tradepilot.models import (
    AnalysisOutcome,
    MarketRegime,
    Recommendation,
    RiskSettings,
)
from tradepilot.news import FinnhubNewsFeed, NewsFeed, StaticNewsFeed, select_headlines
from tradepilot.providers import FinnhubProvider, Interval, ProviderKind, create_provider
from tradepilot.reasoning import Persona, ReasoningBackend, create_backend

logger = logging.getLogger(__name__)

DEFAULT_CONFIDENCE_THRESHOLD = 60
SPY_SYMBOL = "SPY"
MIN_SPY_CANDLES = 15
MEMORY_MATCHES = 5

PhaseCallback = Callable[[str, str, Optional[str]], None]


class AnalysisPhase(Enum):
    REGIME = "regime"
    PRICE = "price"
    TECHNICALS = "technicals"
    PATTERNS = "patterns"
    NEWS = "news"
    AI = "ai"


class PhaseStatus(Enum):
    ACTIVE = "active"
    COMPLETE = "complete"
    ERROR = "error"


class RecommendationEngine:
    """
    Produces gated trading recommendations for single symbols.

    All collaborators are injected; `build_engine(config)` wires the
    production set.

    Example Usage:
        engine = build_engine(Config.from_env())
        outcome = await engine.analyze("AAPL")
        if outcome.ok:
            print(outcome.recommendation.action, outcome.recommendation.confidence)
        await engine.close()
    """

    def __init__(
        self,
        gateway: MarketDataGateway,
        backend: ReasoningBackend,
        ai_budget: AIBudgetTracker,
        context_cache: ContextCache,
        memory: Optional[MemoryStore] = None,
        news: Optional[NewsFeed] = None,
        risk_settings: Optional[RiskSettings] = None,
        persona: Optional[Persona] = Persona.STERLING,
        recommendation_format: str = "standard",
        include_options_language: bool = False,
        confidence_threshold: int = DEFAULT_CONFIDENCE_THRESHOLD,
        record_memories: bool = True,
        credentials: Optional[CredentialStore] = None,
    ):
        self.gateway = gateway
        self.backend = backend
        self.ai_budget = ai_budget
        self.context_cache = context_cache
        self.memory = memory or MemoryStore()
        self.news = news or StaticNewsFeed()
        self.risk_settings = risk_settings or RiskSettings()
        self.persona = persona
        self.recommendation_format = recommendation_format
        self.include_options_language = include_options_language
        self.confidence_threshold = confidence_threshold
        self.record_memories = record_memories
        self.credentials = credentials

        # Stats
        self.total_requests = 0
        self.outcome_counts = {}

    # ============== PUBLIC API ==============

    async def analyze(
        self,
        symbol: str,
        confidence_threshold: Optional[int] = None,
        on_phase_update: Optional[PhaseCallback] = None,
    ) -> AnalysisOutcome:
        """
        Analyze one symbol.

        Args:
            symbol: Ticker symbol
            confidence_threshold: Minimum confidence to return a recommendation
                (engine default when None)
            on_phase_update: Optional progress callback

        Returns:
            AnalysisOutcome; `recommendation` is set only for SUCCESS
        """
        symbol = sanitize_symbol(symbol)
        self.total_requests += 1
        try:
            outcome = await self._analyze(symbol, confidence_threshold, on_phase_update)
        except Exception as e:
            logger.exception(f"Analysis failed for {symbol}: {e}")
            outcome = AnalysisOutcome.failed(symbol, f"Unexpected error: {e}")

        self.outcome_counts[outcome.kind.value] = self.outcome_counts.get(outcome.kind.value, 0) + 1
        return outcome

    # ============== PIPELINE ==============

    @staticmethod
    def _notify(callback: Optional[PhaseCallback], phase: AnalysisPhase, status: PhaseStatus,
                result: Optional[str] = None):
        if callback is None:
            return
        try:
            callback(phase.value, status.value, result)
        except Exception as e:
            logger.warning(f"Phase update callback error: {e}")

    def _log_budget_exhausted(self, symbol: str):
        status = self.ai_budget.status()
        logger.warning(
            f"Daily AI budget exhausted ({status.used}/{status.limit} calls). "
            f"Skipping analysis for {symbol}"
        )

    async def _analyze(
        self,
        symbol: str,
        confidence_threshold: Optional[int],
        on_phase_update: Optional[PhaseCallback],
    ) -> AnalysisOutcome:
        def update(phase: AnalysisPhase, status: PhaseStatus, result: Optional[str] = None):
            self._notify(on_phase_update, phase, status, result)

        logger.info(f"Starting analysis for {symbol}")

        # 1. Preconditions, before any data is fetched
        if not self.backend.has_credentials:
            logger.warning("No reasoning backend credential configured, skipping analysis")
            return AnalysisOutcome.skipped_no_credentials(symbol)

        if not self.ai_budget.can_make_call():
            self._log_budget_exhausted(symbol)
            return AnalysisOutcome.skipped_budget_exhausted(symbol)

        # 2. Market regime
        update(AnalysisPhase.REGIME, PhaseStatus.ACTIVE)
        regime = await self.context_cache.get_regime()
        update(
            AnalysisPhase.REGIME,
            PhaseStatus.COMPLETE,
            regime.regime.value.replace("_", " ") if regime else "Unknown",
        )

        # 3. Price
        update(AnalysisPhase.PRICE, PhaseStatus.ACTIVE)
        quote = await self.gateway.quote(symbol)
        if quote is None:
            update(AnalysisPhase.PRICE, PhaseStatus.ERROR, "No data")
            logger.warning(f"No quote data for {symbol}")
            return AnalysisOutcome.failed(symbol, "No quote data")
        update(AnalysisPhase.PRICE, PhaseStatus.COMPLETE, f"${quote.price:.2f}")

        # 4. Technicals
        update(AnalysisPhase.TECHNICALS, PhaseStatus.ACTIVE)
        interval = Interval.FIVE_MIN if symbol == SPY_SYMBOL else Interval.DAILY
        candles = await self.gateway.candles(symbol, interval)
        if not candles:
            update(AnalysisPhase.TECHNICALS, PhaseStatus.ERROR, "No history")
            logger.warning(f"No historical data for {symbol}")
            return AnalysisOutcome.failed(symbol, "No historical data")

        indicators = self.context_cache.get_indicators(symbol, candles)
        update(
            AnalysisPhase.TECHNICALS,
            PhaseStatus.COMPLETE,
            f"RSI {indicators.rsi14}" if indicators.rsi14 is not None else "Calculating...",
        )

        relative_strength = None
        if symbol != SPY_SYMBOL and indicators.rsi14 is not None:
            relative_strength = await self._relative_strength(indicators.rsi14)

        # 5. Patterns
        update(AnalysisPhase.PATTERNS, PhaseStatus.ACTIVE)
        all_patterns = self.context_cache.get_patterns(symbol, candles, regime)
        patterns = significant_patterns(all_patterns)
        update(AnalysisPhase.PATTERNS, PhaseStatus.COMPLETE, f"{len(patterns)} found" if patterns else "None")
        logger.info(f"Detected {len(all_patterns)} patterns, {len(patterns)} significant")

        # 6. Memory
        regime_name = regime.regime.value if regime else None
        signature = MemorySignature.from_indicators(indicators, [p.name for p in patterns], regime_name)
        memory_context = self._memory_context(signature, regime_name)

        # 7. News
        update(AnalysisPhase.NEWS, PhaseStatus.ACTIVE)
        headlines = await self._headlines(symbol)
        update(AnalysisPhase.NEWS, PhaseStatus.COMPLETE, f"{len(headlines)} articles" if headlines else "None")

        # 8. Reasoning
        update(AnalysisPhase.AI, PhaseStatus.ACTIVE)
        prompt = build_analysis_prompt(
            symbol,
            quote,
            indicators,
            headlines,
            regime,
            patterns,
            memory_context=memory_context,
            include_options_language=self.include_options_language,
            relative_strength=relative_strength,
            recommendation_format=self.recommendation_format,
            risk_settings=self.risk_settings,
            persona=self.persona,
        )

        # Check and charge in one step; the call is spent whether or not the response is usable
        if not self.ai_budget.try_acquire():
            update(AnalysisPhase.AI, PhaseStatus.ERROR, "Budget exhausted")
            self._log_budget_exhausted(symbol)
            return AnalysisOutcome.skipped_budget_exhausted(symbol)

        try:
            response = await self.backend.complete(prompt, persona=self.persona)
        except ReasoningError as e:
            logger.warning(f"No response from reasoning backend: {e}")
            response = None

        if not response:
            update(AnalysisPhase.AI, PhaseStatus.ERROR, "No response")
            return AnalysisOutcome.failed(symbol, "No response from reasoning backend")

        try:
            parsed = parse_recommendation_response(response, quote.price)
        except ResponseParseError as e:
            update(AnalysisPhase.AI, PhaseStatus.ERROR, "Parse failed")
            logger.warning(f"Failed to parse reasoning response: {e}")
            return AnalysisOutcome.failed(symbol, f"Parse failed: {e}")

        # 9. Confidence gate
        threshold = self.confidence_threshold if confidence_threshold is None else confidence_threshold
        if parsed.confidence < threshold:
            update(AnalysisPhase.AI, PhaseStatus.COMPLETE, f"Low conf: {parsed.confidence}%")
            logger.info(f"Confidence too low ({parsed.confidence}% < {threshold}%), skipping recommendation")
            return AnalysisOutcome.skipped_low_confidence(symbol, parsed.confidence, threshold)

        update(AnalysisPhase.AI, PhaseStatus.COMPLETE, f"{parsed.action.value} {parsed.confidence}%")

        recommendation = Recommendation(
            ticker=symbol,
            action=parsed.action,
            confidence=parsed.confidence,
            rationale=parsed.rationale,
            price_target=parsed.price_target,
            stop_loss=parsed.stop_loss,
            sources=["Technical Analysis", self.backend.label],
            suggested_shares=parsed.suggested_shares,
            suggested_dollar_amount=parsed.suggested_dollar_amount,
        )

        if self.record_memories:
            self.memory.save(MemoryScenario(
                id=recommendation.id,
                symbol=symbol,
                signature=signature,
                action=parsed.action,
                confidence=parsed.confidence,
                price=quote.price,
            ))

        logger.info(
            f"Generated {parsed.action.value} recommendation for {symbol} ({parsed.confidence}% confidence)"
        )
        return AnalysisOutcome.success(recommendation)

    async def _relative_strength(self, symbol_rsi: float) -> Optional[RelativeStrength]:
        spy_rsi = self.context_cache.get_spy_rsi()
        if spy_rsi is None:
            logger.debug("Fetching SPY data for relative strength")
            spy_candles = await self.gateway.candles(SPY_SYMBOL, Interval.DAILY)
            if len(spy_candles) >= MIN_SPY_CANDLES:
                spy_rsi = calculate_rsi(spy_candles)
                if spy_rsi is not None:
                    self.context_cache.set_spy_rsi(spy_rsi)
        if spy_rsi is None:
            return None

        strength = calculate_relative_strength(symbol_rsi, spy_rsi)
        logger.info(f"Relative strength: {strength.interpretation} (diff: {strength.differential})")
        return strength

    def _memory_context(self, signature: MemorySignature, regime_name: Optional[str]) -> str:
        try:
            matches = self.memory.find_similar(signature, k=MEMORY_MATCHES)
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Failed to query memory: {e}")
            return ""
        if not matches:
            return ""
        logger.info(f"Found {len(matches)} similar past scenarios for context")
        return self.memory.build_memory_context(matches, regime_name, max_chars=MAX_LENGTHS["memory"])

    async def _headlines(self, symbol: str) -> List[str]:
        try:
            headlines = await self.news.recent_headlines(symbol)
        except Exception as e:
            logger.warning(f"Failed to fetch news for {symbol}: {e}")
            return []
        return select_headlines(headlines, symbol)

    # ============== STATUS ==============

    async def current_regime(self) -> Optional[MarketRegime]:
        return await self.context_cache.get_regime()

    def get_stats(self) -> dict:
        return {
            "total_requests": self.total_requests,
            "outcomes": dict(self.outcome_counts),
            "backend": self.backend.label,
            "ai_budget": self.ai_budget.status().to_dict(),
            "market_data": self.gateway.cache_status(),
            "context_cache": self.context_cache.stats(),
            "memory": self.memory.stats(),
        }

    async def close(self):
        """Release network sessions and flush persisted budget state."""
        await self.gateway.close()
        await self.backend.close()
        await self.news.close()
        if self.credentials is not None:
            await self.credentials.close()
        self.gateway.budget.close()
        self.ai_budget.close()


# ============== FACTORY ==============

def build_engine(config, thresholds: Optional[RegimeThresholds] = None) -> RecommendationEngine:
    """
    Wire a RecommendationEngine from configuration.

    Budget counters persist under `config.budget_state_dir`; memory
    persists to `config.memory_state_path` when set.
    """
    credentials = CredentialStore(
        vault_addr=config.vault_addr,
        vault_token=config.vault_token,
        overrides={
            "twelvedata": config.twelvedata_api_key,
            "polygon": config.polygon_api_key,
            "finnhub": config.finnhub_api_key,
            "alpha_vantage": config.alpha_vantage_api_key,
        },
    )

    state_dir = config.budget_state_dir
    api_budget = ApiBudgetTracker(
        BudgetStore(os.path.join(state_dir, "api_budget.json") if state_dir else None),
        tiers={
            "twelvedata": config.twelvedata_tier,
            "polygon": config.polygon_tier,
            "finnhub": config.finnhub_tier,
            "alpha_vantage": config.alpha_vantage_tier,
        },
    )
    ai_budget = AIBudgetTracker(
        BudgetStore(os.path.join(state_dir, "ai_budget.json") if state_dir else None),
        daily_limit=config.ai_daily_budget,
    )

    provider = create_provider(
        ProviderKind(config.market_data_provider),
        api_key=config.market_data_api_key,
        credentials=credentials,
    )
    gateway = MarketDataGateway(provider, api_budget)
    classifier = MarketRegimeClassifier(gateway, thresholds)

    if config.finnhub_api_key:
        news: NewsFeed = FinnhubNewsFeed(FinnhubProvider(api_key=config.finnhub_api_key, credentials=credentials))
    else:
        news = StaticNewsFeed()

    logger.info(
        f"Engine wired: market data={provider.name}, reasoning={config.ai_provider}, "
        f"threshold={config.confidence_threshold}%"
    )
    return RecommendationEngine(
        gateway=gateway,
        backend=create_backend(config),
        ai_budget=ai_budget,
        context_cache=ContextCache(classifier),
        memory=MemoryStore(config.memory_state_path),
        news=news,
        risk_settings=config.risk_settings,
        persona=Persona.parse(config.persona),
        recommendation_format=config.recommendation_format,
        include_options_language=config.include_options_language,
        confidence_threshold=config.confidence_threshold,
        credentials=credentials,
    )
