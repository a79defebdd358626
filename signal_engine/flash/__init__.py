"""
Flash-move pipeline: detection, risk assessment, execution and orchestration.
"""

from .models import (
    ActiveFlashPosition,
    EnhancedFlashMoveEvent,
    FlashMoveResult,
    PortfolioRiskMetrics,
    PositionState,
    RiskAssessment,
    Strategy,
)
from .detection import FlashDetectionEngine
from .risk import FlashRiskManager
from .execution import FlashExecutionEngine
from .metadata import MarketMetadataResolver
from .orchestrator import FlashMoveOrchestrator

__all__ = [
    "ActiveFlashPosition",
    "EnhancedFlashMoveEvent",
    "FlashMoveResult",
    "PortfolioRiskMetrics",
    "PositionState",
    "RiskAssessment",
    "Strategy",
    "FlashDetectionEngine",
    "FlashRiskManager",
    "FlashExecutionEngine",
    "MarketMetadataResolver",
    "FlashMoveOrchestrator",
]
