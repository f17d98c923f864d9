"""
TradePilot Configuration
========================

Central configuration for the recommendation engine and its data
pipeline. All settings can be overridden via environment variables.

Environment Variables:
---------------------
Market Data:
- MARKET_DATA_PROVIDER: twelvedata, polygon, finnhub, alpha_vantage or mock
- TWELVEDATA_API_KEY / TWELVEDATA_TIER: TwelveData key and plan (free, basic, pro)
- POLYGON_API_KEY / POLYGON_TIER: Polygon.io key and plan (free, starter, developer, advanced)
- FINNHUB_API_KEY / FINNHUB_TIER: Finnhub key and plan (free, premium)
- ALPHA_VANTAGE_API_KEY / ALPHA_VANTAGE_TIER: Alpha Vantage key and plan (free, premium)

Reasoning Backend:
- AI_PROVIDER: openai, anthropic, groq or ollama
- AI_MODEL: Model name for the chosen provider
- OPENAI_API_KEY / ANTHROPIC_API_KEY / GROQ_API_KEY: Remote LLM keys
- OLLAMA_URL: Local LLM endpoint (no key required)
- AI_DAILY_BUDGET: Max reasoning calls per day (-1 for unlimited)

Recommendation Settings:
- CONFIDENCE_THRESHOLD: Minimum confidence to surface a recommendation
- PERSONA: sterling, jax or cipher
- RECOMMENDATION_FORMAT: standard, concise or detailed
- INCLUDE_OPTIONS_LANGUAGE: Whether to mention options strategies

Risk Parameters:
- DAILY_BUDGET: Dollars available for new positions per day
- MAX_POSITION_PERCENT: Max single position as % of daily budget
- LOSS_LIMIT_PERCENT: Daily loss limit as % of daily budget

Briefing:
- WATCHLIST: Comma-separated symbols analyzed by the briefing runner
- BRIEFING_DELAY_SECONDS: Pause between consecutive symbols

State:
- BUDGET_STATE_DIR: Directory for persisted budget counters
- MEMORY_STATE_PATH: JSON file for recommendation memory
- VAULT_ADDR / VAULT_TOKEN: HashiCorp Vault for credential lookup
"""

import os
from dataclasses import dataclass, field
from typing import List, Optional

from tradepilot.models import RiskSettings


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() == "true"


@dataclass
class Config:
    """
    Engine configuration with environment variable overrides.

    Usage:
        config = Config.from_env()
        print(config.market_data_provider)
    """

    # ==========================================================================
    # Market Data
    # ==========================================================================
    market_data_provider: str = "twelvedata"
    twelvedata_api_key: Optional[str] = None
    polygon_api_key: Optional[str] = None
    finnhub_api_key: Optional[str] = None
    alpha_vantage_api_key: Optional[str] = None
    twelvedata_tier: str = "free"
    polygon_tier: str = "free"
    finnhub_tier: str = "free"
    alpha_vantage_tier: str = "free"

    # ==========================================================================
    # Reasoning Backend
    # ==========================================================================
    ai_provider: str = "openai"
    ai_model: Optional[str] = None
    openai_api_key: Optional[str] = None
    anthropic_api_key: Optional[str] = None
    groq_api_key: Optional[str] = None
    ollama_url: str = "http://localhost:11434"
    ai_daily_budget: int = 15

    # ==========================================================================
    # Recommendation Settings
    # ==========================================================================
    confidence_threshold: int = 60
    persona: str = "sterling"
    recommendation_format: str = "standard"
    include_options_language: bool = False

    # ==========================================================================
    # Risk Parameters
    # ==========================================================================
    daily_budget: float = 1000.0
    max_position_percent: float = 10.0
    loss_limit_percent: float = 5.0

    # ==========================================================================
    # Briefing
    # ==========================================================================
    watchlist: List[str] = field(default_factory=lambda: [
        "AAPL", "MSFT", "NVDA", "GOOGL", "AMZN", "META", "TSLA", "SPY"
    ])
    briefing_delay_seconds: float = 5.0

    # ==========================================================================
    # State
    # ==========================================================================
    budget_state_dir: str = ".tradepilot"
    memory_state_path: Optional[str] = None
    vault_addr: Optional[str] = None
    vault_token: Optional[str] = None

    # ==========================================================================
    # Derived Settings
    # ==========================================================================

    @property
    def risk_settings(self) -> RiskSettings:
        return RiskSettings(
            daily_budget=self.daily_budget,
            max_position_percent=self.max_position_percent,
            loss_limit_percent=self.loss_limit_percent,
        )

    @property
    def market_data_api_key(self) -> Optional[str]:
        """Get the API key for the selected market data provider."""
        return {
            "twelvedata": self.twelvedata_api_key,
            "polygon": self.polygon_api_key,
            "finnhub": self.finnhub_api_key,
            "alpha_vantage": self.alpha_vantage_api_key,
        }.get(self.market_data_provider)

    @property
    def market_data_tier(self) -> str:
        return {
            "twelvedata": self.twelvedata_tier,
            "polygon": self.polygon_tier,
            "finnhub": self.finnhub_tier,
            "alpha_vantage": self.alpha_vantage_tier,
        }.get(self.market_data_provider, "free")

    @property
    def ai_api_key(self) -> Optional[str]:
        """Get the LLM API key based on provider. Ollama runs locally without one."""
        if self.ai_provider == "openai":
            return self.openai_api_key
        elif self.ai_provider == "anthropic":
            return self.anthropic_api_key
        elif self.ai_provider == "groq":
            return self.groq_api_key
        return None

    @classmethod
    def from_env(cls) -> "Config":
        """
        Create configuration from environment variables.

        All settings have sensible defaults that work for local development.
        """
        watchlist_str = os.getenv("WATCHLIST", "")
        watchlist = [s.strip().upper() for s in watchlist_str.split(",") if s.strip()] if watchlist_str else None

        config = cls(
            # Market data
            market_data_provider=os.getenv("MARKET_DATA_PROVIDER", "twelvedata").lower(),
            twelvedata_api_key=os.getenv("TWELVEDATA_API_KEY"),
            polygon_api_key=os.getenv("POLYGON_API_KEY"),
            finnhub_api_key=os.getenv("FINNHUB_API_KEY"),
            alpha_vantage_api_key=os.getenv("ALPHA_VANTAGE_API_KEY"),
            twelvedata_tier=os.getenv("TWELVEDATA_TIER", "free"),
            polygon_tier=os.getenv("POLYGON_TIER", "free"),
            finnhub_tier=os.getenv("FINNHUB_TIER", "free"),
            alpha_vantage_tier=os.getenv("ALPHA_VANTAGE_TIER", "free"),

            # Reasoning backend
            ai_provider=os.getenv("AI_PROVIDER", "openai").lower(),
            ai_model=os.getenv("AI_MODEL"),
            openai_api_key=os.getenv("OPENAI_API_KEY"),
            anthropic_api_key=os.getenv("ANTHROPIC_API_KEY"),
            groq_api_key=os.getenv("GROQ_API_KEY"),
            ollama_url=os.getenv("OLLAMA_URL", "http://localhost:11434"),
            ai_daily_budget=int(os.getenv("AI_DAILY_BUDGET", "15")),

            # Recommendation settings
            confidence_threshold=int(os.getenv("CONFIDENCE_THRESHOLD", "60")),
            persona=os.getenv("PERSONA", "sterling").lower(),
            recommendation_format=os.getenv("RECOMMENDATION_FORMAT", "standard").lower(),
            include_options_language=_env_bool("INCLUDE_OPTIONS_LANGUAGE"),

            # Risk parameters
            daily_budget=float(os.getenv("DAILY_BUDGET", "1000")),
            max_position_percent=float(os.getenv("MAX_POSITION_PERCENT", "10")),
            loss_limit_percent=float(os.getenv("LOSS_LIMIT_PERCENT", "5")),

            # Briefing
            briefing_delay_seconds=float(os.getenv("BRIEFING_DELAY_SECONDS", "5")),

            # State
            budget_state_dir=os.getenv("BUDGET_STATE_DIR", ".tradepilot"),
            memory_state_path=os.getenv("MEMORY_STATE_PATH"),
            vault_addr=os.getenv("VAULT_ADDR"),
            vault_token=os.getenv("VAULT_TOKEN"),
        )

        # Override watchlist if provided
        if watchlist:
            config.watchlist = watchlist

        return config

    def print_summary(self):
        """Print configuration summary for debugging (never prints secrets)."""
        print("=" * 60)
        print("TradePilot Recommendation Engine Configuration")
        print("=" * 60)
        print(f"Watchlist: {', '.join(self.watchlist[:5])}{'...' if len(self.watchlist) > 5 else ''}")
        print(f"Briefing delay: {self.briefing_delay_seconds}s between symbols")
        print()
        print("Market Data:")
        print(f"  Provider: {self.market_data_provider} ({self.market_data_tier} tier)")
        print(f"  TwelveData: {'✓' if self.twelvedata_api_key else '✗'}")
        print(f"  Polygon.io: {'✓' if self.polygon_api_key else '✗'}")
        print(f"  Finnhub: {'✓' if self.finnhub_api_key else '✗'}")
        print(f"  Alpha Vantage: {'✓' if self.alpha_vantage_api_key else '✗'}")
        print()
        print("Reasoning Backend:")
        print(f"  Provider: {self.ai_provider} (model: {self.ai_model or 'default'})")
        print(f"  OpenAI: {'✓' if self.openai_api_key else '✗'}")
        print(f"  Anthropic: {'✓' if self.anthropic_api_key else '✗'}")
        print(f"  Groq: {'✓' if self.groq_api_key else '✗'}")
        print(f"  Ollama: {self.ollama_url} (no key required)")
        print(f"  Daily AI budget: {'unlimited' if self.ai_daily_budget == -1 else self.ai_daily_budget}")
        print()
        print("Recommendations:")
        print(f"  Confidence threshold: {self.confidence_threshold}%")
        print(f"  Persona: {self.persona}")
        print(f"  Format: {self.recommendation_format}")
        print(f"  Options language: {'✓' if self.include_options_language else '✗'}")
        print()
        print("Risk:")
        print(f"  Daily budget: ${self.daily_budget:,.2f}")
        print(f"  Max position: {self.max_position_percent}%")
        print(f"  Loss limit: {self.loss_limit_percent}%")
        print()
        print("State:")
        print(f"  Budget state: {self.budget_state_dir}")
        print(f"  Memory: {self.memory_state_path or 'in-memory only'}")
        print(f"  Vault: {self.vault_addr or '✗ (environment only)'}")
        print("=" * 60)
