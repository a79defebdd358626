"""
Prediction-market signal engine.
Live order-book ingestion, intra-market arbitrage detection and flash-move trading.
"""

__version__ = "0.1.0"
