"""
Crypto Detection Package
Detection of cryptographic primitives in JavaScript and rating of their use

Modules:
- models.py: result containers and CryptoDetectOptions
- rules.py: keyword, library, constant and security rule tables (YAML overridable)
- ast_detector.py: single-pass syntax tree detection and parameter extraction
- security.py: security evaluation and strength scoring
- detector.py: CryptoDetector, merging all detection sources
"""

from .ast_detector import detect_by_ast, merge_parameters
from .detector import CryptoDetector, escape_regex, find_line_number
from .models import (
    AstDetection, CodeLocation, CryptoAlgorithm, CryptoDetectionResult, CryptoDetectOptions, CryptoLibrary,
    CryptoParameters, SecurityIssue, StrengthAssessment,
)
from .rules import CryptoRulesManager
from .security import analyze_strength, evaluate_security

__all__ = [
    'AstDetection',
    'CodeLocation',
    'CryptoAlgorithm',
    'CryptoDetectionResult',
    'CryptoDetectOptions',
    'CryptoDetector',
    'CryptoLibrary',
    'CryptoParameters',
    'CryptoRulesManager',
    'SecurityIssue',
    'StrengthAssessment',
    'analyze_strength',
    'detect_by_ast',
    'escape_regex',
    'evaluate_security',
    'find_line_number',
    'merge_parameters',
]
