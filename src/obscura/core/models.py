"""
Deobfuscation Result Models
Records shared by the pipeline and the stages it delegates to
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional


@dataclass(frozen=True)
class TransformationRecord:
    """One entry of the audit trail, immutable once appended"""
    type: str
    description: str
    success: bool
    warnings: Optional[List[str]] = None

    def to_dict(self) -> Dict:
        data = {
            'type': self.type,
            'description': self.description,
            'success': self.success,
        }
        if self.warnings:
            data['warnings'] = list(self.warnings)
        return data


@dataclass
class UnresolvedPart:
    """Something a stage recognized but could not undo"""
    location: str
    reason: str
    suggestion: str = ""

    def to_dict(self) -> Dict:
        return {
            'location': self.location,
            'reason': self.reason,
            'suggestion': self.suggestion,
        }


@dataclass
class DeobfuscationResult:
    """Container for one pipeline run"""
    code: str
    transformations: List[TransformationRecord] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    unresolved_parts: List[UnresolvedPart] = field(default_factory=list)
    confidence: float = 0.1
    obfuscation_types: List[str] = field(default_factory=list)
    readability_score: int = 0
    analysis: str = ""

    @property
    def successful_transformations(self) -> List[TransformationRecord]:
        return [record for record in self.transformations if record.success]

    def to_dict(self) -> Dict:
        """Convert to the camelCase document used by the CLI and API"""
        return {
            'code': self.code,
            'transformations': [record.to_dict() for record in self.transformations],
            'warnings': list(self.warnings),
            'unresolvedParts': [part.to_dict() for part in self.unresolved_parts],
            'confidence': self.confidence,
            'obfuscationType': list(self.obfuscation_types),
            'readabilityScore': self.readability_score,
            'analysis': self.analysis,
        }
