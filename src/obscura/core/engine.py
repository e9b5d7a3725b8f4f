"""
Core Analysis Engine
Facade over the deobfuscation pipeline, crypto detector and summarizer
"""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from .cache import DEFAULT_CAPACITY
from .classifier import classify
from .completion import CompletionProvider
from .crypto import CryptoDetectionResult, CryptoDetectOptions, CryptoDetector
from .deobfuscator import DeobfuscateOptions, DeobfuscationResult, Deobfuscator
from .summarizer import AISummarizer, CodeFile, ProjectSummary
from .unpackers import UniversalUnpacker, UnpackResult


@dataclass
class ObscuraResult:
    """
    Complete analysis of one script

    Crypto detection runs on the deobfuscated code, where decoded strings
    and renamed calls are visible.
    """
    input_file: str = ""
    file_size: int = 0
    obfuscation_types: List[str] = field(default_factory=list)
    deobfuscation: Optional[DeobfuscationResult] = None
    crypto: Optional[CryptoDetectionResult] = None

    def to_dict(self) -> Dict:
        """Convert all results to dictionary for JSON export"""
        return {
            'metadata': {
                'inputFile': self.input_file,
                'fileSize': self.file_size,
                'obfuscationTypes': self.obfuscation_types,
            },
            'deobfuscation': self.deobfuscation.to_dict() if self.deobfuscation else {},
            'crypto': self.crypto.to_dict() if self.crypto else {},
        }


class ObscuraEngine:
    """
    Main engine coordinating the JavaScript analysis modules

    Workflow:
    1. Classify obfuscation techniques
    2. Deobfuscate through the staged pipeline
    3. Detect crypto primitives in the recovered code
    4. Evaluate crypto security and strength
    """

    def __init__(self,
                 provider: Optional[CompletionProvider] = None,
                 cache_capacity: int = DEFAULT_CAPACITY,
                 rules_file: Optional[str] = None,
                 verbose: bool = False):
        """
        Initialize engine with all modules

        Args:
            provider: Optional completion capability for AI-assisted paths
            cache_capacity: Result cache size of the pipeline and the detector
            rules_file: Optional YAML crypto rules overriding the defaults
            verbose: Print progress lines
        """
        self.provider = provider
        self.verbose = verbose
        self.deobfuscator = Deobfuscator(provider=provider, cache_capacity=cache_capacity)
        self.crypto_detector = CryptoDetector(provider=provider, cache_capacity=cache_capacity)
        self.unpacker = UniversalUnpacker()
        self.summarizer = AISummarizer(provider)
        if rules_file:
            self.crypto_detector.rules_manager.load_rules(rules_file)

    def _progress(self, message: str) -> None:
        if self.verbose:
            print(message)

    def classify(self, code: str) -> List[str]:
        return classify(code)

    def unpack(self, code: str) -> UnpackResult:
        return self.unpacker.unpack(code)

    def deobfuscate(self, code: str, options: Optional[DeobfuscateOptions] = None) -> DeobfuscationResult:
        self._progress("[*] Deobfuscating...")
        result = self.deobfuscator.deobfuscate(code, options)
        applied = len(result.successful_transformations)
        self._progress(f"    Applied {applied} transformations "
                       f"(confidence: {result.confidence:.0%}, readability: {result.readability_score}/100)")
        if result.unresolved_parts:
            self._progress(f"[!] {len(result.unresolved_parts)} unresolved parts")
        return result

    def detect_crypto(self, code: str, use_ai: bool = False) -> CryptoDetectionResult:
        self._progress("[*] Detecting cryptographic primitives...")
        result = self.crypto_detector.detect(code, CryptoDetectOptions(use_ai=use_ai))
        self._progress(f"    Found {len(result.algorithms)} algorithms, {len(result.security_issues)} security issues")
        self._progress(f"    Strength: {result.strength.overall} ({result.strength.score}/100)")
        return result

    def analyze_text(self, code: str, options: Optional[DeobfuscateOptions] = None,
                     use_ai: bool = False, input_name: str = "text_input") -> ObscuraResult:
        """
        Deobfuscate code, then run crypto detection on the result

        Args:
            code: JavaScript source
            options: Pipeline options (defaults when None)
            use_ai: Enable the AI pass of crypto detection
            input_name: Name recorded in the result metadata

        Returns:
            ObscuraResult with both analyses
        """
        result = ObscuraResult(input_file=input_name, file_size=len(code.encode('utf-8', errors='replace')))

        self._progress("[*] Classifying obfuscation techniques...")
        result.obfuscation_types = self.classify(code)
        self._progress(f"    Detected: {', '.join(result.obfuscation_types)}")

        result.deobfuscation = self.deobfuscate(code, options)
        result.obfuscation_types = result.deobfuscation.obfuscation_types
        result.crypto = self.detect_crypto(result.deobfuscation.code, use_ai=use_ai)

        self._progress("[+] Analysis complete!")
        return result

    def analyze_file(self, file_path: str, options: Optional[DeobfuscateOptions] = None,
                     use_ai: bool = False) -> ObscuraResult:
        """Read a script (UTF-8, undecodable bytes replaced) and analyze it"""
        path = Path(file_path)
        code = path.read_text(encoding='utf-8', errors='replace')
        result = self.analyze_text(code, options=options, use_ai=use_ai, input_name=path.name)
        result.file_size = path.stat().st_size
        return result

    def summarize_files(self, file_paths: List[str]) -> ProjectSummary:
        """Summarize scripts with the AI summarizer (basic analysis without a provider)"""
        files = []
        for file_path in file_paths:
            path = Path(file_path)
            files.append(CodeFile(url=str(path), content=path.read_text(encoding='utf-8', errors='replace'),
                                  size=path.stat().st_size))
        self._progress(f"[*] Summarizing {len(files)} files...")
        return self.summarizer.summarize_project(files)

    def export_results(self, result: ObscuraResult, output_dir: str, base_name: str) -> None:
        """
        Export results to files

        Args:
            result: ObscuraResult to export
            output_dir: Directory to write output files
            base_name: Base name for output files
        """
        output_path = Path(output_dir)
        output_path.mkdir(parents=True, exist_ok=True)

        if result.deobfuscation is not None:
            code_file = output_path / f"{base_name}.deobfuscated.js"
            code_file.write_text(result.deobfuscation.code, encoding='utf-8')
            self._progress(f"[+] Deobfuscated code: {code_file}")

        json_file = output_path / f"{base_name}.json"
        with open(json_file, 'w', encoding='utf-8') as f:
            json.dump(result.to_dict(), f, indent=2)
        self._progress(f"[+] JSON summary: {json_file}")
