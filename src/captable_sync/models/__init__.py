"""SQLAlchemy models for the cap table sync service."""

from .issuer import Issuer
from .stakeholder import Stakeholder
from .stock_class import StockClass, StockClassType
from .stock_plan import StockPlan
from .sync_dead_letter import SyncDeadLetter
from .transactions import (
    ConvertibleIssuance,
    EquityCompensationExercise,
    EquityCompensationIssuance,
    IssuerAuthorizedSharesAdjustment,
    LedgerTransaction,
    StockAcceptance,
    StockCancellation,
    StockClassAuthorizedSharesAdjustment,
    StockIssuance,
    StockIssuanceType,
    StockPlanPoolAdjustment,
    StockReissuance,
    StockRepurchase,
    StockRetraction,
    StockTransfer,
    TransactionKind,
    WarrantIssuance,
)

__all__ = [
    "Issuer",
    "Stakeholder",
    "StockClass", "StockClassType",
    "StockPlan",
    "SyncDeadLetter",
    "LedgerTransaction", "TransactionKind", "StockIssuanceType",
    "IssuerAuthorizedSharesAdjustment", "StockClassAuthorizedSharesAdjustment",
    "StockAcceptance", "StockCancellation", "StockIssuance", "StockReissuance",
    "StockRepurchase", "StockRetraction", "StockTransfer",
    "StockPlanPoolAdjustment", "EquityCompensationIssuance", "EquityCompensationExercise",
    "WarrantIssuance", "ConvertibleIssuance",
]
