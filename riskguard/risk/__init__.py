from riskguard.risk.checks import DEFAULT_PIPELINE, RiskCheck, RiskCheckResult, TradeRiskParams
from riskguard.risk.limits import RiskLimits
from riskguard.risk.service import RiskService

__all__ = ["DEFAULT_PIPELINE", "RiskCheck", "RiskCheckResult", "RiskLimits", "RiskService", "TradeRiskParams"]
