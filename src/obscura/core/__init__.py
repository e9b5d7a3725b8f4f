"""
Core Analysis Package

Two subsystems sharing the jsparse parse/walk primitive:
- deobfuscator.py: staged deobfuscation pipeline (classifier, unpackers,
  jsvmp, advanced, passes/, optimizer)
- crypto/: crypto primitive detection and security evaluation

engine.py combines both behind ObscuraEngine.
"""

from .completion import CompletionProvider, CompletionResponse
from .crypto import CryptoDetectionResult, CryptoDetectOptions, CryptoDetector
from .deobfuscator import DeobfuscateOptions, DeobfuscationResult, Deobfuscator
from .engine import ObscuraEngine, ObscuraResult
from .errors import CompletionError, JSParseError, ObscuraError, PipelineError, RuleError

__all__ = [
    'CompletionError',
    'CompletionProvider',
    'CompletionResponse',
    'CryptoDetectionResult',
    'CryptoDetectOptions',
    'CryptoDetector',
    'DeobfuscateOptions',
    'DeobfuscationResult',
    'Deobfuscator',
    'JSParseError',
    'ObscuraEngine',
    'ObscuraError',
    'ObscuraResult',
    'PipelineError',
    'RuleError',
]
