from .config import Config
from .schema import ContextConfig, ModelConfig, SummaryContextChars, SummaryMode, TokenBudget

__all__ = [
    "Config",
    "ContextConfig",
    "ModelConfig",
    "SummaryContextChars",
    "SummaryMode",
    "TokenBudget",
]
