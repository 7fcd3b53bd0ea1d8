"""
Quality gates and semantic repair.
"""

from claimcheck.quality.gates import (
    GateName,
    GateResult,
    QualityGate,
    QualityGateManager,
    QualityGateReport,
    detect_regulation,
)
from claimcheck.quality.repair import (
    RepairContext,
    RepairLog,
    RepairLogEntry,
    RepairStatus,
    RepairStrategy,
    RepairStrategyRegistry,
    SemanticRepairEngine,
    default_registry,
)

__all__ = [
    "GateName",
    "GateResult",
    "QualityGate",
    "QualityGateManager",
    "QualityGateReport",
    "detect_regulation",
    "RepairContext",
    "RepairLog",
    "RepairLogEntry",
    "RepairStatus",
    "RepairStrategy",
    "RepairStrategyRegistry",
    "SemanticRepairEngine",
    "default_registry",
]
