"""
Prompt Construction
===================

Assembles the analysis prompt sent to the reasoning backend. All
untrusted text goes through `sanitize_for_prompt` first; pattern names,
regime text and indicator values are internal and used as is.

Sections, in order:
1. Market regime
2. Current price data
3. Technical indicators (and relative strength vs SPY)
4. Candlestick patterns with guidance
5. Recent news
6. Historical context from the memory store
7. Instructions (regime rules, options language, risk parameters)
8. Output format, persona voice and the JSON schema
"""

from datetime import datetime, timezone
from typing import List, Optional, Sequence

from tradepilot.analytics.indicators import RelativeStrength
from tradepilot.analytics.regime import format_regime_for_prompt
from tradepilot.engine.sanitize import sanitize_for_prompt, sanitize_symbol
from tradepilot.models import DetectedPattern, MarketRegime, Quote, RiskSettings, TechnicalIndicators
from tradepilot.reasoning import PERSONA_PROMPTS, Persona

FORMAT_INSTRUCTIONS = {
    "concise": "Keep rationale under 50 words. Be direct and actionable.",
    "detailed": (
        "Provide comprehensive breakdown with all indicators, patterns, risk factors, "
        "and confidence reasoning."
    ),
    "standard": "Include 2-3 sentences with key data points and reasoning.",
}

PATTERN_GUIDANCE = """Pattern guidance:
- High reliability patterns (score 70+) are strong signals
- Volume-confirmed patterns carry more weight
- Patterns aligned with market regime trend are stronger signals
- Bullish patterns in bearish regime (or vice versa) may indicate reversal"""

REGIME_INSTRUCTIONS = """**INSTRUCTIONS:**
Based on this data AND THE MARKET REGIME, provide a trading recommendation. The market regime is critical context:
- In HIGH_VOL_BEARISH (Fear Mode): Be very cautious, favor HOLD or defensive positions
- In HIGH_VOL_BULLISH: Reduce position size recommendations, tighter stops
- In CHOPPY: Avoid directional bets entirely. Strongly favor HOLD. Wait for trend clarity.
- In LOW_VOL_BULLISH: More aggressive targets acceptable
- In LOW_VOL_BEARISH: Watch for reversal signals"""

OPTIONS_LANGUAGE = """**OPTIONS-AWARE SUGGESTIONS:**
When confidence is 75% or higher, include optional options strategy suggestions in the rationale:
- For BUY recommendations: Mention "or Buy Call for leverage" as an alternative
- For SELL recommendations: Mention "or Buy Put for downside protection" as an alternative
- Only suggest options when conviction is high and risk/reward is clear"""


# ============== SECTION HELPERS ==============

def _signed(value: float) -> str:
    return "+" if value > 0 else ""


def rsi_label(rsi: float) -> str:
    if rsi > 70:
        return "(Overbought)"
    if rsi < 30:
        return "(Oversold)"
    return "(Neutral)"


def format_price_section(symbol: str, quote: Quote, heading: str = "**CURRENT PRICE DATA:**") -> str:
    return "\n".join([
        heading,
        f"- Symbol: {symbol}",
        f"- Current Price: ${quote.price:.2f}",
        f"- Change: {_signed(quote.change)}${quote.change:.2f} "
        f"({_signed(quote.change_percent)}{quote.change_percent:.2f}%)",
        f"- Volume: {int(quote.volume):,}",
    ])


def format_indicator_section(indicators: TechnicalIndicators) -> str:
    lines = ["**TECHNICAL INDICATORS:**"]

    if indicators.rsi14 is not None:
        lines.append(f"- RSI (14): {indicators.rsi14} {rsi_label(indicators.rsi14)}")
    else:
        lines.append("- RSI: N/A")

    macd = indicators.macd
    if macd is not None:
        direction = "Bullish" if macd.histogram > 0 else "Bearish"
        lines.append(f"- MACD: {direction} (Value: {macd.value}, Signal: {macd.signal})")
    else:
        lines.append("- MACD: N/A")

    bands = indicators.bollinger
    if bands is not None:
        note = ""
        if bands.percent_b > 1:
            note = " - Above upper band"
        elif bands.percent_b < 0:
            note = " - Below lower band"
        lines.append(
            f"- Bollinger Bands: Upper ${bands.upper}, Middle ${bands.middle}, Lower ${bands.lower} "
            f"(%B: {bands.percent_b}{note})"
        )
    else:
        lines.append("- Bollinger Bands: N/A")

    if indicators.atr14 is not None:
        lines.append(f"- ATR (14): ${indicators.atr14} (volatility measure for stop-loss sizing)")
    else:
        lines.append("- ATR (14): N/A")

    for label, value in (("MA(20)", indicators.ma20), ("MA(50)", indicators.ma50), ("MA(200)", indicators.ma200)):
        lines.append(f"- {label}: ${value:.2f}" if value is not None else f"- {label}: N/A")

    lines.append(f"- Trend: {indicators.trend.value}")
    lines.append(f"- Momentum: {indicators.momentum.value}")
    lines.append(f"- Volatility: {indicators.volatility}")
    return "\n".join(lines)


def format_relative_strength(symbol: str, strength: Optional[RelativeStrength]) -> str:
    if strength is None:
        return ""
    sign = _signed(strength.differential)
    if strength.interpretation == "outperforming":
        reading = f"{symbol} is showing stronger momentum than the broad market"
    elif strength.interpretation == "underperforming":
        reading = f"{symbol} is lagging the broad market"
    else:
        reading = f"{symbol} is moving in line with the broad market"
    return "\n".join([
        "**RELATIVE STRENGTH vs SPY:**",
        f"- {symbol} RSI: {strength.symbol_rsi} | SPY RSI: {strength.spy_rsi}",
        f"- Differential: {sign}{strength.differential} ({strength.interpretation.upper()})",
        f"- {reading}",
    ])


def format_pattern_section(patterns: Sequence[DetectedPattern]) -> str:
    if not patterns:
        return "No significant patterns detected"
    return "\n".join(
        f"- {p.name} ({p.type.value}, {p.reliability.value} reliability, score: {p.reliability_score})"
        for p in patterns
    )


def format_news_section(headlines: Sequence[str], empty: str = "No recent news available") -> str:
    if not headlines:
        return empty
    return "\n".join(f"{i}. {h}" for i, h in enumerate(headlines, 1))


def format_risk_section(risk: RiskSettings) -> str:
    return "\n".join([
        "**USER RISK PARAMETERS:**",
        f"- Daily Trading Budget: ${risk.daily_budget:,.0f}",
        f"- Max Position Size: {risk.max_position_percent:g}% of portfolio (${round(risk.max_position_dollars):,})",
        f"- Daily Loss Limit: {risk.loss_limit_percent:g}% (${round(risk.loss_limit_dollars):,})",
        "",
        "**POSITION SIZING RULES:**",
        "- Calculate suggestedDollarAmount based on the position size limit above",
        "- Calculate suggestedShares = suggestedDollarAmount / current price (round down to whole number)",
        "- Stop-loss should limit potential loss to the daily loss limit",
        "- In HIGH_VOL regimes, reduce position size by 50%",
    ])


def format_persona_section(persona: Optional[Persona]) -> str:
    if persona is None:
        return ""
    profile = PERSONA_PROMPTS[Persona.parse(persona)]
    return (
        "**RATIONALE STYLE (IMPORTANT):**\n"
        f"You are {profile.name}, {profile.title}.\n"
        f"{profile.rationale_style}\n\n"
        "Write the rationale field in this voice. The rationale should sound like "
        f"{profile.name} is speaking directly to the trader."
    )


def _json_schema(include_options_language: bool, with_sizing: bool) -> str:
    rationale = (
        "Brief 2-3 sentence explanation referencing market regime, candlestick patterns, "
        "and specific data points"
    )
    if include_options_language:
        rationale += ". Include options alternative if confidence >= 75%"
    fields = [
        '  "action": "BUY" | "SELL" | "HOLD"',
        '  "confidence": 0-100',
        f'  "rationale": "{rationale}"',
    ]
    if with_sizing:
        fields += ['  "suggestedShares": number or null', '  "suggestedDollarAmount": number or null']
    fields += ['  "priceTarget": number or null', '  "stopLoss": number or null']
    return "{\n" + ",\n".join(fields) + "\n}"


def _rules(with_sizing: bool) -> str:
    rules = [
        "- confidence should be 0-100 (whole number)",
        "- priceTarget and stopLoss are optional but recommended for BUY/SELL",
        "- When ATR is available, use it for stop-loss sizing: stopLoss = current price - (2 × ATR) "
        "for BUY, current price + (2 × ATR) for SELL",
        "- When Bollinger Bands show %B < 0.2 (near lower band), this supports BUY signals; "
        "%B > 0.8 (near upper band) supports SELL signals",
        "- rationale MUST reference the market regime, any significant candlestick patterns, "
        "AND specific technical data (RSI, MACD, Bollinger Bands, etc.)",
        '- In high volatility regimes or when volatility is "high", recommend tighter stops '
        "and lower position sizes",
    ]
    if with_sizing:
        rules += [
            "- suggestedShares and suggestedDollarAmount should respect the user's position size limit",
            "- For HOLD recommendations, suggestedShares and suggestedDollarAmount should be null",
        ]
    rules.append("- Be honest about uncertainty - lower confidence if data is mixed or regime is risky")
    return "Rules:\n" + "\n".join(rules)


def _join(sections: List[str]) -> str:
    return "\n\n".join(s for s in sections if s)


# ============== PROMPTS ==============

def build_analysis_prompt(
    symbol: str,
    quote: Quote,
    indicators: TechnicalIndicators,
    headlines: Sequence[str],
    regime: Optional[MarketRegime],
    patterns: Sequence[DetectedPattern],
    memory_context: str = "",
    include_options_language: bool = False,
    relative_strength: Optional[RelativeStrength] = None,
    recommendation_format: str = "standard",
    risk_settings: Optional[RiskSettings] = None,
    persona: Optional[Persona] = None,
) -> str:
    """Build the live-analysis prompt for one symbol."""
    safe_symbol = sanitize_symbol(symbol)
    safe_headlines = [h for h in (sanitize_for_prompt(h, "headline") for h in headlines) if h]
    safe_memory = sanitize_for_prompt(memory_context, "memory")

    regime_section = (
        format_regime_for_prompt(regime)
        if regime is not None
        else "**MARKET REGIME:** Unable to calculate (insufficient data)"
    )
    output_format = FORMAT_INSTRUCTIONS.get(recommendation_format, FORMAT_INSTRUCTIONS["standard"])

    return _join([
        f"You are a professional trading analyst. Analyze the following data for {safe_symbol} "
        "and provide a trading recommendation.",
        regime_section,
        format_price_section(safe_symbol, quote),
        format_indicator_section(indicators),
        format_relative_strength(safe_symbol, relative_strength),
        "**RECENT CANDLESTICK PATTERNS:**\n" + format_pattern_section(patterns),
        PATTERN_GUIDANCE,
        "**RECENT NEWS (Last 24 hours):**\n" + format_news_section(safe_headlines),
        safe_memory,
        REGIME_INSTRUCTIONS,
        OPTIONS_LANGUAGE if include_options_language else "",
        format_risk_section(risk_settings) if risk_settings is not None else "",
        f"**OUTPUT FORMAT:** {output_format}",
        format_persona_section(persona),
        "Respond ONLY with valid JSON in this exact format:",
        _json_schema(include_options_language, with_sizing=risk_settings is not None),
        _rules(with_sizing=risk_settings is not None),
        "Respond with ONLY the JSON object, no additional text.",
    ])


def format_as_of(timestamp: float) -> str:
    """'Monday, March 4, 2024' for an epoch timestamp (UTC)."""
    moment = datetime.fromtimestamp(timestamp, tz=timezone.utc)
    return f"{moment:%A}, {moment:%B} {moment.day}, {moment.year}"


def build_backtest_prompt(
    symbol: str,
    quote: Quote,
    indicators: TechnicalIndicators,
    headlines: Sequence[str],
    regime: Optional[MarketRegime],
    patterns: Sequence[DetectedPattern],
    timestamp: float,
) -> str:
    """
    Build the prompt for a historical point in time.

    The as-of date is stated twice and the backend is told not to use
    anything that happened afterwards.
    """
    safe_symbol = sanitize_symbol(symbol)
    safe_headlines = [h for h in (sanitize_for_prompt(h, "headline") for h in headlines) if h]
    as_of = format_as_of(timestamp)

    regime_section = (
        format_regime_for_prompt(regime)
        if regime is not None
        else "**MARKET REGIME:** Not available for this backtest point"
    )

    return _join([
        f"You are a professional trading analyst. Analyze the following historical data for "
        f"{safe_symbol} as of {as_of} and provide a trading recommendation.",
        f"**IMPORTANT:** This is a backtest simulation. You are analyzing data as it appeared on "
        f"{as_of}. Do NOT reference any events or information after this date.",
        regime_section,
        format_price_section(safe_symbol, quote, heading=f"**PRICE DATA (as of {as_of}):**"),
        format_indicator_section(indicators),
        "**CANDLESTICK PATTERNS:**\n" + format_pattern_section(patterns),
        f"**NEWS HEADLINES (around {as_of}):**\n"
        + format_news_section(safe_headlines, empty="No news data available for this period"),
        "**INSTRUCTIONS:**\n"
        "Based on this data, provide a trading recommendation. Consider:\n"
        "- Technical indicator alignment (RSI, MACD, Moving Averages)\n"
        "- Candlestick pattern signals and their reliability scores\n"
        "- Overall trend direction\n"
        "- Any news sentiment if available",
        "Respond ONLY with valid JSON in this exact format:",
        _json_schema(False, with_sizing=False),
        "Rules:\n"
        "- confidence should be 0-100 (whole number)\n"
        "- priceTarget: For BUY, set ~3-7% above current price. For SELL, set ~3-7% below.\n"
        "- stopLoss: For BUY, set ~2-4% below current price. For SELL, set ~2-4% above.\n"
        "- rationale MUST reference specific numbers (RSI value, MA levels, pattern names)\n"
        "- Be honest about uncertainty - lower confidence if signals are mixed",
        "Respond with ONLY the JSON object, no additional text.",
    ])
