"""Secret lifecycle engine: find hardcoded secrets, store them in Vault and
replace them with ``{{vault:<path>:<key>}}`` reference tokens.
"""

from .config import RuleConfig, VaultSettings, load_config
from .keys import derive_key
from .patterns import PatternRegistry, SecretPattern
from .pipeline import PipelineResult, PipelineState, VaultManager
from .references import ReferenceToken, decode, encode, resolve_references
from .rewriter import Rewriter, RewriteResult
from .scanner import DetectedSecret, ScanReport, Scanner, should_visit
from .validator import ReferenceValidator, ValidationReport, ValidatorState

__all__ = [
    "RuleConfig",
    "VaultSettings",
    "load_config",
    "derive_key",
    "PatternRegistry",
    "SecretPattern",
    "PipelineResult",
    "PipelineState",
    "VaultManager",
    "ReferenceToken",
    "decode",
    "encode",
    "resolve_references",
    "Rewriter",
    "RewriteResult",
    "DetectedSecret",
    "ScanReport",
    "Scanner",
    "should_visit",
    "ReferenceValidator",
    "ValidationReport",
    "ValidatorState",
]

__version__ = "0.1.0"
