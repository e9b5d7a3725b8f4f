"""
Crypto Detection Models
Containers for detected primitives, their parameters and the security verdict
"""

from dataclasses import dataclass, field, fields
from typing import Any, Dict, List, Optional

SYMMETRIC = "symmetric"
ASYMMETRIC = "asymmetric"
HASH = "hash"
CUSTOM = "custom"
ALGORITHM_TYPES = (SYMMETRIC, ASYMMETRIC, HASH, CUSTOM)

CRITICAL = "critical"
HIGH = "high"
MEDIUM = "medium"
LOW = "low"
SEVERITIES = (CRITICAL, HIGH, MEDIUM, LOW)

STRONG = "strong"
MODERATE = "moderate"
WEAK = "weak"
BROKEN = "broken"

# Python field -> JSON key
_PARAMETER_KEYS = {
    'mode': 'mode',
    'padding': 'padding',
    'key_size': 'keySize',
    'length': 'length',
    'iv': 'iv',
    'iterations': 'iterations',
    'tag_length': 'tagLength',
}


@dataclass
class CodeLocation:
    """Where a detection was made"""
    file: str = "current"
    line: int = 0
    column: int = 0

    def to_dict(self) -> Dict:
        return {'file': self.file, 'line': self.line, 'column': self.column}


@dataclass
class CryptoParameters:
    """Configuration of a crypto call (mode, padding, key size, ...)"""
    mode: Optional[str] = None
    padding: Optional[str] = None
    key_size: Optional[int] = None
    length: Optional[int] = None
    iv: Optional[str] = None
    iterations: Optional[int] = None
    tag_length: Optional[int] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CryptoParameters':
        """Build parameters from snake_case or camelCase keys; unknown keys land in extra"""
        params = cls()
        by_json_key = {json_key: name for name, json_key in _PARAMETER_KEYS.items()}
        for key, value in data.items():
            name = key if key in _PARAMETER_KEYS else by_json_key.get(key)
            if name:
                setattr(params, name, value)
            elif key == 'extra' and isinstance(value, dict):
                params.extra.update(value)
            else:
                params.extra[key] = value
        return params

    def update(self, other: 'CryptoParameters') -> None:
        """Fill fields that are still unset from other"""
        for option in fields(self):
            if option.name == 'extra':
                for key, value in other.extra.items():
                    self.extra.setdefault(key, value)
            elif getattr(self, option.name) is None:
                setattr(self, option.name, getattr(other, option.name))

    def is_empty(self) -> bool:
        return not self.to_dict()

    def to_dict(self) -> Dict:
        data = {
            json_key: getattr(self, name)
            for name, json_key in _PARAMETER_KEYS.items()
            if getattr(self, name) is not None
        }
        data.update(self.extra)
        return data


@dataclass
class CryptoAlgorithm:
    """One detected cryptographic primitive"""
    name: str
    type: str
    confidence: float
    usage: str = ""
    location: CodeLocation = field(default_factory=CodeLocation)
    parameters: Optional[CryptoParameters] = None

    def to_dict(self) -> Dict:
        data = {
            'name': self.name,
            'type': self.type,
            'confidence': self.confidence,
            'usage': self.usage,
            'location': self.location.to_dict(),
        }
        if self.parameters is not None:
            data['parameters'] = self.parameters.to_dict()
        return data


@dataclass
class CryptoLibrary:
    """A crypto library referenced by the code"""
    name: str
    version: Optional[str] = None
    confidence: float = 0.0

    def to_dict(self) -> Dict:
        return {'name': self.name, 'version': self.version, 'confidence': self.confidence}


@dataclass
class SecurityIssue:
    """A weakness found by the security evaluator"""
    severity: str
    issue: str
    recommendation: str = ""
    algorithm: Optional[str] = None

    def to_dict(self) -> Dict:
        data = {
            'severity': self.severity,
            'issue': self.issue,
            'recommendation': self.recommendation,
        }
        if self.algorithm:
            data['algorithm'] = self.algorithm
        return data


@dataclass
class StrengthAssessment:
    """Overall rating plus the four factor scores"""
    overall: str = STRONG
    score: int = 100
    factors: Dict[str, int] = field(default_factory=lambda: {
        'algorithm': 100, 'mode': 100, 'keySize': 100, 'implementation': 100,
    })

    def to_dict(self) -> Dict:
        return {'overall': self.overall, 'score': self.score, 'factors': dict(self.factors)}


@dataclass
class AstDetection:
    """Output of the single-pass syntax tree detector"""
    algorithms: List[CryptoAlgorithm] = field(default_factory=list)
    parameters: Dict[str, CryptoParameters] = field(default_factory=dict)


@dataclass
class CryptoDetectOptions:
    """Options for CryptoDetector.detect()"""
    use_ai: bool = False

    def __post_init__(self):
        if not isinstance(self.use_ai, bool):
            raise TypeError(f"Option use_ai must be a bool, got {type(self.use_ai).__name__}")

    def to_dict(self) -> Dict:
        return {'use_ai': self.use_ai}


@dataclass
class CryptoDetectionResult:
    """Complete crypto analysis of one source text"""
    algorithms: List[CryptoAlgorithm] = field(default_factory=list)
    libraries: List[CryptoLibrary] = field(default_factory=list)
    confidence: float = 0.0
    security_issues: List[SecurityIssue] = field(default_factory=list)
    strength: StrengthAssessment = field(default_factory=StrengthAssessment)

    def to_dict(self) -> Dict:
        return {
            'algorithms': [algorithm.to_dict() for algorithm in self.algorithms],
            'libraries': [library.to_dict() for library in self.libraries],
            'confidence': self.confidence,
            'securityIssues': [issue.to_dict() for issue in self.security_issues],
            'strength': self.strength.to_dict(),
        }
