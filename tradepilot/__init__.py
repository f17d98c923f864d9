"""
TradePilot
==========

AI-assisted trading recommendation engine. Pulls quotes and candles
through a budget-aware market data gateway, derives indicators,
candlestick patterns and the market regime, recalls similar past
scenarios and asks a reasoning backend (OpenAI, Anthropic, Groq or a
local Ollama model) for a gated BUY/SELL/HOLD recommendation.

Subpackages:
- providers: Market data adapters (TwelveData, Polygon, Finnhub, Alpha Vantage)
- analytics: Indicators, candlestick patterns, regime classification
- engine: Prompt, parser, orchestrator, backtest and briefing

Quick Start:
-----------
```python
from tradepilot.config import Config
from tradepilot.engine import build_engine

engine = build_engine(Config.from_env())
outcome = await engine.analyze("AAPL")
if outcome.ok:
    print(outcome.recommendation.to_dict())
await engine.close()
```

CLI Usage:
----------
```bash
# Analyze the watchlist once
python -m tradepilot.run_briefing --once

# Specific symbols
python -m tradepilot.run_briefing --once --symbols AAPL,NVDA

# Show configuration
python -m tradepilot.run_briefing --show-config
```
"""

from .config import Config

__all__ = ["Config"]
__version__ = "1.0.0"
