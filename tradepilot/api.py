"""
TradePilot HTTP API
===================

Thin FastAPI layer over the recommendation engine.

Endpoints:
- GET  /health                       Service status and backend label
- POST /analyze                      Analyze one symbol
- GET  /budget                       Market data and AI budget usage
- GET  /regime                       Current market regime (cached)
- POST /cache/invalidate             Drop cached context
- POST /memory/{scenario_id}/outcome Record what happened after a recommendation

Run:
    uvicorn tradepilot.api:app --host 0.0.0.0 --port 8000
"""

from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional
import logging
import os

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field
import uvicorn

from tradepilot import __version__
from tradepilot.config import Config
from tradepilot.context_cache import CacheKind
from tradepilot.engine.orchestrator import RecommendationEngine, build_engine
from tradepilot.memory import Outcome

logger = logging.getLogger(__name__)


# =============================================================================
# Pydantic Models
# =============================================================================

class AnalyzeRequest(BaseModel):
    """Request model for a single-symbol analysis."""
    symbol: str = Field(..., min_length=1, max_length=10, description="Stock ticker symbol")
    confidence_threshold: Optional[int] = Field(
        None, ge=0, le=100, description="Override the configured confidence threshold"
    )


class RecommendationModel(BaseModel):
    id: str
    ticker: str
    action: str
    confidence: int
    rationale: str
    price_target: Optional[float] = None
    stop_loss: Optional[float] = None
    suggested_shares: Optional[int] = None
    suggested_dollar_amount: Optional[float] = None
    sources: List[str] = []
    timestamp: float


class PhaseUpdate(BaseModel):
    phase: str
    status: str
    result: Optional[str] = None


class AnalyzeResponse(BaseModel):
    kind: str
    symbol: str
    recommendation: Optional[RecommendationModel] = None
    reason: Optional[str] = None
    phases: List[PhaseUpdate] = []


class HealthResponse(BaseModel):
    status: str
    service: str
    version: str
    reasoning_backend: str
    backend_configured: bool


class InvalidateRequest(BaseModel):
    kind: CacheKind = Field(CacheKind.ALL, description="regime, indicators, patterns or all")


class OutcomeRequest(BaseModel):
    outcome: Outcome
    price_change_percent: float = 0.0
    days_held: int = Field(0, ge=0)


# =============================================================================
# Application Factory
# =============================================================================

def create_app(config: Optional[Config] = None, engine: Optional[RecommendationEngine] = None) -> FastAPI:
    """
    Build the API app.

    The engine is created in the lifespan from `config` (or the
    environment) unless one is passed in, and closed on shutdown so
    budget counters are flushed.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting TradePilot API...")
        if getattr(app.state, "engine", None) is None:
            app.state.engine = build_engine(config or Config.from_env())
        logger.info("TradePilot API started successfully")
        try:
            yield
        finally:
            logger.info("Shutting down TradePilot API...")
            await app.state.engine.close()
            logger.info("TradePilot API shutdown complete")

    app = FastAPI(
        title="TradePilot",
        description="AI-assisted trading recommendation engine",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.engine = engine

    def get_engine() -> RecommendationEngine:
        if app.state.engine is None:
            raise HTTPException(status_code=503, detail="Engine not initialized")
        return app.state.engine

    @app.get("/health", response_model=HealthResponse)
    async def health_check():
        """Health check for load balancers and monitoring."""
        current = get_engine()
        return HealthResponse(
            status="healthy",
            service="tradepilot",
            version=__version__,
            reasoning_backend=current.backend.label,
            backend_configured=current.backend.has_credentials,
        )

    @app.post("/analyze", response_model=AnalyzeResponse)
    async def analyze(request: AnalyzeRequest):
        """
        Analyze one symbol.

        Skipped and failed analyses are normal results (HTTP 200) with
        `kind` explaining why there is no recommendation.
        """
        phases: List[PhaseUpdate] = []

        def on_phase(phase: str, status: str, result: Optional[str]):
            phases.append(PhaseUpdate(phase=phase, status=status, result=result))

        outcome = await get_engine().analyze(
            request.symbol,
            confidence_threshold=request.confidence_threshold,
            on_phase_update=on_phase,
        )
        data = outcome.to_dict()
        return AnalyzeResponse(**data, phases=phases)

    @app.get("/budget")
    async def budget() -> Dict[str, Any]:
        current = get_engine()
        return {
            "ai": current.ai_budget.status().to_dict(),
            "market_data": {
                name: status.to_dict() for name, status in current.gateway.budget.status_all().items()
            },
        }

    @app.get("/regime")
    async def regime() -> Dict[str, Any]:
        current = await get_engine().current_regime()
        if current is None:
            raise HTTPException(status_code=503, detail="Market regime unavailable")
        return current.to_dict()

    @app.post("/cache/invalidate")
    async def invalidate_cache(request: InvalidateRequest) -> Dict[str, Any]:
        current = get_engine()
        current.context_cache.invalidate(request.kind)
        return {"invalidated": request.kind.value, "cache": current.context_cache.stats()}

    @app.post("/memory/{scenario_id}/outcome")
    async def record_outcome(scenario_id: str, request: OutcomeRequest) -> Dict[str, Any]:
        updated = get_engine().memory.update_outcome(
            scenario_id, request.outcome, request.price_change_percent, request.days_held
        )
        if not updated:
            raise HTTPException(status_code=404, detail=f"Unknown scenario {scenario_id}")
        return {"id": scenario_id, "outcome": request.outcome.value}

    @app.get("/stats")
    async def stats() -> Dict[str, Any]:
        return get_engine().get_stats()

    return app


app = create_app()


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", "8000"))
    uvicorn.run(app, host=host, port=port)
