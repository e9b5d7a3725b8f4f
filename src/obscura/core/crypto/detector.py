"""
Crypto Detector
Finds cryptographic primitives in JavaScript and rates how they are used

Detection sources, merged by algorithm name:
1. Syntax tree pass (library calls, tables, custom loops)
2. Keyword scan for literal algorithm names
3. Optional AI pass through a CompletionProvider
"""

import logging
import re
from typing import Any, Dict, List, Optional

from ..cache import DEFAULT_CAPACITY, ResultCache, make_cache_key
from ..completion import CompletionProvider, parse_json_reply
from .ast_detector import detect_by_ast, merge_parameters
from .models import (
    ALGORITHM_TYPES, CUSTOM, CodeLocation, CryptoAlgorithm, CryptoDetectionResult, CryptoDetectOptions,
    CryptoLibrary, CryptoParameters,
)
from .rules import CryptoRulesManager
from .security import analyze_strength, evaluate_security

logger = logging.getLogger(__name__)

ALGORITHM_RULE_TYPES = frozenset(ALGORITHM_TYPES)
AI_DEFAULT_CONFIDENCE = 0.5


def escape_regex(text: str) -> str:
    """Backslash-escape regex metacharacters in text"""
    return re.sub(r'([.*+?^${}()|\[\]\\])', r'\\\1', text)


def find_line_number(code: str, needle: str) -> int:
    """1-based line of the first occurrence of needle, or 0 when absent"""
    index = code.find(needle)
    if index < 0:
        return 0
    return code.count('\n', 0, index) + 1


def _keyword_pattern(keyword: str) -> re.Pattern:
    # "des" inside "des-ede3-cbc" names Triple DES
    return re.compile(r'(?<![A-Za-z0-9_$])' + escape_regex(keyword) + r'(?![A-Za-z0-9_$]|-ede)', re.IGNORECASE)


class CryptoDetector:
    """
    Crypto primitive detector with security evaluation

    Usage:
        detector = CryptoDetector()
        result = detector.detect(code, CryptoDetectOptions(use_ai=False))
    """

    def __init__(self, provider: Optional[CompletionProvider] = None,
                 rules_manager: Optional[CryptoRulesManager] = None,
                 cache_capacity: int = DEFAULT_CAPACITY):
        """
        Initialize detector

        Args:
            provider: Optional completion capability for the AI pass
            rules_manager: Rule tables (defaults when None)
            cache_capacity: Maximum number of cached results
        """
        self.provider = provider
        self.rules_manager = rules_manager or CryptoRulesManager()
        self.cache: ResultCache[CryptoDetectionResult] = ResultCache(cache_capacity)

    def detect(self, code: str, options: Optional[CryptoDetectOptions] = None) -> CryptoDetectionResult:
        """
        Detect crypto usage in code

        Args:
            code: JavaScript source
            options: CryptoDetectOptions (defaults when None)

        Returns:
            CryptoDetectionResult; repeated calls return the cached object

        Raises:
            TypeError: If code is not a string
            Exception: Anything raised by the rules manager propagates
        """
        if not isinstance(code, str):
            raise TypeError(f"code must be a str, got {type(code).__name__}")
        options = options or CryptoDetectOptions()

        cache_key = make_cache_key(code, options.to_dict())
        cached = self.cache.get(cache_key)
        if cached is not None:
            return cached

        ast_detection = detect_by_ast(code, self.rules_manager)
        algorithms = list(ast_detection.algorithms)
        algorithms.extend(self.detect_by_keywords(code))
        if options.use_ai and self.provider is not None:
            algorithms.extend(self.detect_by_ai(code))

        algorithms = self.merge_results(algorithms)
        merge_parameters(algorithms, ast_detection.parameters)
        issues = evaluate_security(algorithms, code, self.rules_manager)

        result = CryptoDetectionResult(
            algorithms=algorithms,
            libraries=self.detect_libraries(code),
            confidence=self._overall_confidence(algorithms),
            security_issues=issues,
            strength=analyze_strength(algorithms, issues),
        )
        logger.debug("Crypto detection found %d algorithms, %d issues", len(algorithms), len(issues))

        self.cache.put(cache_key, result)
        return result

    def detect_by_keywords(self, code: str) -> List[CryptoAlgorithm]:
        """Literal algorithm-name mentions; bare mode and padding names are skipped"""
        algorithms = []
        for rule in self.rules_manager.get_keyword_rules():
            if rule.type not in ALGORITHM_RULE_TYPES:
                continue
            for keyword in rule.keywords:
                match = _keyword_pattern(keyword).search(code)
                if not match:
                    continue
                algorithms.append(CryptoAlgorithm(
                    name=rule.name,
                    type=rule.type,
                    confidence=rule.confidence,
                    usage=f"Keyword '{keyword}' found",
                    location=CodeLocation(line=code.count('\n', 0, match.start()) + 1),
                ))
                break
        return algorithms

    def detect_libraries(self, code: str) -> List[CryptoLibrary]:
        libraries = []
        for rule in self.rules_manager.get_library_rules():
            if not any(pattern in code for pattern in rule.patterns):
                continue
            version = None
            if rule.version_pattern:
                match = re.search(rule.version_pattern, code)
                if match:
                    version = match.group(1)
            libraries.append(CryptoLibrary(name=rule.name, version=version, confidence=rule.confidence))
        return libraries

    def detect_by_ai(self, code: str) -> List[CryptoAlgorithm]:
        """
        Ask the completion provider for detections

        Returns:
            Parsed algorithms; empty when there is no provider, the reply is
            not JSON, its algorithms field is not a list, or the call fails
        """
        if self.provider is None:
            return []
        try:
            reply = self.provider.chat(self.provider.build_crypto_detection_prompt(code))
        except Exception as exc:
            logger.warning("AI crypto detection failed: %s", exc)
            return []

        document = parse_json_reply(reply.content)
        if not isinstance(document, dict) or not isinstance(document.get('algorithms'), list):
            logger.debug("AI crypto detection returned no usable algorithms list")
            return []
        return [algorithm for algorithm in map(self._algorithm_from_ai, document['algorithms']) if algorithm]

    @staticmethod
    def _algorithm_from_ai(entry: Any) -> Optional[CryptoAlgorithm]:
        if not isinstance(entry, dict) or not isinstance(entry.get('name'), str) or not entry['name']:
            return None
        kind = entry.get('type') if entry.get('type') in ALGORITHM_TYPES else CUSTOM
        confidence = entry.get('confidence')
        if not isinstance(confidence, (int, float)) or isinstance(confidence, bool):
            confidence = AI_DEFAULT_CONFIDENCE
        parameters = entry.get('parameters')
        return CryptoAlgorithm(
            name=entry['name'],
            type=kind,
            confidence=float(max(0.0, min(1.0, confidence))),
            usage=str(entry.get('usage', '')),
            location=CodeLocation(file='ai-analysis'),
            parameters=CryptoParameters.from_dict(parameters) if isinstance(parameters, dict) else None,
        )

    @staticmethod
    def merge_results(algorithms: List[CryptoAlgorithm]) -> List[CryptoAlgorithm]:
        """Keep the highest-confidence entry per name, in first-seen name order"""
        best: Dict[str, CryptoAlgorithm] = {}
        for algorithm in algorithms:
            known = best.get(algorithm.name)
            if known is None or algorithm.confidence > known.confidence:
                best[algorithm.name] = algorithm
        return list(best.values())

    def clear_cache(self) -> None:
        self.cache.clear()

    def export_rules(self) -> str:
        return self.rules_manager.export_rules()

    def load_custom_rules(self, text: str) -> None:
        self.rules_manager.load_custom_rules(text)
        self.cache.clear()

    @staticmethod
    def _overall_confidence(algorithms: List[CryptoAlgorithm]) -> float:
        if not algorithms:
            return 0.0
        return round(sum(algorithm.confidence for algorithm in algorithms) / len(algorithms), 3)
