"""
Market Regime Classification
============================

Classifies the macro market state from two inputs: the VIX level and
SPY's position relative to its 50-day moving average.

Regimes:
-------
| VIX            | SPY vs MA50 | Regime               | Risk     |
|----------------|-------------|----------------------|----------|
| < 15           | above       | LOW_VOL_BULLISH      | low      |
| < 15           | below       | LOW_VOL_BEARISH      | moderate |
| 15 - 25        | above       | ELEVATED_VOL_BULLISH | moderate |
| 15 - 25        | below       | ELEVATED_VOL_BEARISH | high     |
| > 25           | above       | HIGH_VOL_BULLISH     | high     |
| > 25           | below       | HIGH_VOL_BEARISH     | extreme  |
| > 25           | within 0.5% | CHOPPY               | extreme  |
| any            | MA50 n/a    | NEUTRAL              | moderate |

The regime does not decide BUY/SELL. It shapes the prompt: position
sizing guidance, pattern score alignment, and how much weight to give
historical scenarios recorded under different conditions.
"""

from dataclasses import dataclass
from typing import Dict, Optional, Tuple
import logging
import time

from tradepilot.analytics.indicators import calculate_sma
from tradepilot.models import MarketRegime, RegimeType, RiskLevel

logger = logging.getLogger(__name__)

DEFAULT_VIX = 18.0
VIX_SYMBOL = "VIX"
SPY_SYMBOL = "SPY"


@dataclass(frozen=True)
class RegimeThresholds:
    """User-tunable classification thresholds."""
    vix_low: float = 15.0
    vix_high: float = 25.0
    sideways_percent: float = 0.5


# description, guidance, risk
REGIME_PROFILES: Dict[RegimeType, Tuple[str, str, RiskLevel]] = {
    RegimeType.LOW_VOL_BULLISH: (
        "Low volatility bull market - ideal conditions",
        "Momentum strategies favored. Consider full position sizes.",
        RiskLevel.LOW,
    ),
    RegimeType.LOW_VOL_BEARISH: (
        "Quiet decline - low volatility but trending down",
        "Be cautious of complacency. Watch for trend reversal signals.",
        RiskLevel.MODERATE,
    ),
    RegimeType.HIGH_VOL_BULLISH: (
        "Volatile rally - high fear but market rising",
        "Reduce position sizes. Take profits on rallies.",
        RiskLevel.HIGH,
    ),
    RegimeType.HIGH_VOL_BEARISH: (
        "Fear mode - high volatility, market declining",
        "Defensive posture. Consider cash or hedges. Avoid new longs.",
        RiskLevel.EXTREME,
    ),
    RegimeType.ELEVATED_VOL_BULLISH: (
        "Elevated volatility with bullish trend",
        "Moderate risk exposure. Be selective with entries.",
        RiskLevel.MODERATE,
    ),
    RegimeType.ELEVATED_VOL_BEARISH: (
        "Elevated volatility with bearish trend",
        "Caution advised. Tighten stops and reduce exposure.",
        RiskLevel.HIGH,
    ),
    RegimeType.CHOPPY: (
        "High volatility with no clear trend direction",
        "Dangerous conditions. Avoid directional bets. Wait for clarity.",
        RiskLevel.EXTREME,
    ),
    RegimeType.NEUTRAL: (
        "Mixed signals - no clear regime",
        "Wait for clarity before making large moves.",
        RiskLevel.MODERATE,
    ),
}

REGIME_LABELS: Dict[RegimeType, str] = {
    RegimeType.LOW_VOL_BULLISH: "Risk On",
    RegimeType.LOW_VOL_BEARISH: "Quiet Decline",
    RegimeType.ELEVATED_VOL_BULLISH: "Cautious Bull",
    RegimeType.ELEVATED_VOL_BEARISH: "Caution",
    RegimeType.HIGH_VOL_BULLISH: "Volatile Rally",
    RegimeType.HIGH_VOL_BEARISH: "Fear Mode",
    RegimeType.CHOPPY: "Choppy",
    RegimeType.NEUTRAL: "Mixed",
}


def get_regime_label(regime: RegimeType) -> str:
    """Short human label for a regime."""
    return REGIME_LABELS.get(regime, "Mixed")


def build_regime(
    regime_type: RegimeType,
    vix: float,
    spy_price: float,
    spy_ma50: Optional[float],
    timestamp: Optional[float] = None,
) -> MarketRegime:
    """Attach the fixed description, guidance and risk tier to a regime type."""
    description, guidance, risk = REGIME_PROFILES[regime_type]
    return MarketRegime(
        regime=regime_type,
        vix=vix,
        spy_price=spy_price,
        spy_ma50=spy_ma50,
        risk_level=risk,
        description=description,
        guidance=guidance,
        timestamp=timestamp if timestamp is not None else time.time(),
    )


class MarketRegimeClassifier:
    """
    Classifies the market regime from VIX and SPY.

    Usage:
        classifier = MarketRegimeClassifier(gateway)
        regime = await classifier.detect()
        if regime:
            print(format_regime_for_prompt(regime))

        # Pure classification, no I/O
        classifier.classify(vix=12, spy_price=510, spy_ma50=500)
    """

    def __init__(self, gateway=None, thresholds: Optional[RegimeThresholds] = None):
        """
        Args:
            gateway: MarketDataGateway used by detect(); classify() needs none
            thresholds: Classification thresholds (defaults 15 / 25 / 0.5%)
        """
        self.gateway = gateway
        self.thresholds = thresholds or RegimeThresholds()

    def classify(self, vix: float, spy_price: float, spy_ma50: Optional[float]) -> RegimeType:
        """
        Map VIX and SPY vs MA50 to a regime.

        CHOPPY takes precedence: high volatility while SPY sits within the
        sideways band of its MA50. Without an MA50 there is no trend
        reading and the result is NEUTRAL.
        """
        t = self.thresholds

        if not spy_ma50:
            return RegimeType.NEUTRAL

        sideways = abs(spy_price - spy_ma50) / spy_ma50 < t.sideways_percent / 100
        if sideways and vix > t.vix_high:
            return RegimeType.CHOPPY

        above = spy_price > spy_ma50
        if vix < t.vix_low:
            return RegimeType.LOW_VOL_BULLISH if above else RegimeType.LOW_VOL_BEARISH
        if vix > t.vix_high:
            return RegimeType.HIGH_VOL_BULLISH if above else RegimeType.HIGH_VOL_BEARISH
        return RegimeType.ELEVATED_VOL_BULLISH if above else RegimeType.ELEVATED_VOL_BEARISH

    async def detect(self) -> Optional[MarketRegime]:
        """
        Fetch VIX, SPY and SPY's daily history and classify.

        Returns None when no SPY quote is available. A missing VIX quote
        falls back to 18 (elevated volatility).
        """
        if self.gateway is None:
            raise ValueError("MarketRegimeClassifier.detect() requires a gateway")

        quotes = await self.gateway.quotes([VIX_SYMBOL, SPY_SYMBOL])
        by_symbol = {q.symbol: q for q in quotes}

        spy = by_symbol.get(SPY_SYMBOL)
        if spy is None:
            logger.warning("Could not fetch SPY quote, regime unavailable")
            return None

        vix_quote = by_symbol.get(VIX_SYMBOL)
        vix = vix_quote.price if vix_quote is not None else DEFAULT_VIX
        if vix_quote is None:
            logger.info(f"VIX unavailable, using default {DEFAULT_VIX}")

        spy_candles = await self.gateway.candles(SPY_SYMBOL, "1day")
        spy_ma50 = calculate_sma(spy_candles, 50)

        regime_type = self.classify(vix, spy.price, spy_ma50)
        regime = build_regime(regime_type, vix, spy.price, spy_ma50)

        logger.info(
            f"Current regime: {regime_type.value} "
            f"(VIX: {vix}, SPY: ${spy.price}, MA50: {spy_ma50 if spy_ma50 is not None else 'N/A'})"
        )
        return regime

    def volatility_label(self, vix: float) -> str:
        if vix < self.thresholds.vix_low:
            return "Low"
        if vix > self.thresholds.vix_high:
            return "High"
        return "Elevated"


def format_regime_for_prompt(regime: MarketRegime, thresholds: Optional[RegimeThresholds] = None) -> str:
    """Render the regime block of the recommendation prompt."""
    vol = MarketRegimeClassifier(thresholds=thresholds).volatility_label(regime.vix)

    if regime.spy_ma50:
        position = "Above" if regime.spy_price > regime.spy_ma50 else "Below"
        ma50 = f"${regime.spy_ma50:.2f}"
    else:
        position = "N/A"
        ma50 = "N/A"

    return (
        "**MARKET REGIME:**\n"
        f"- Current Regime: {regime.regime.value.replace('_', ' ')}\n"
        f"- VIX Level: {regime.vix:.2f} ({vol} volatility)\n"
        f"- SPY vs MA(50): {position} (${regime.spy_price:.2f} vs {ma50})\n"
        f"- Risk Level: {regime.risk_level.value.upper()}\n"
        f"- Trading Guidance: {regime.guidance}"
    )
