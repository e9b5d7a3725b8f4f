"""
Deobfuscation Pipeline
Recovers readable JavaScript from obfuscated input in conditional stages

Stages, in order:
1. Generic unpacking (packer, eval payloads, AAEncode, URL encoding)
2. JSVMP detection and restoration
3. Advanced techniques (VM protection, control-flow flattening, dead code,
   opaque predicates, string-array rotation, invisible unicode, escapes)
4. Baseline passes, always attempted
5. Structural optimizer
6. Variable renaming
7. LLM analysis (advisory)
8. jsbeautifier formatting

Stages 1-3 are selected by the classifier's technique tags unless an
explicit switch is given.

Error contract:
- JSParseError inside a stage becomes a failed TransformationRecord and the
  stage input passes through unchanged
- Any other exception escaping a stage aborts the call with PipelineError
- LLM failures are swallowed and reported as warnings

Features:
- Audit trail of every applied or failed countermeasure
- Heuristic confidence and readability scores
- Bounded per-instance result cache keyed on code and options
"""

import logging
import re
from dataclasses import asdict, dataclass, fields
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from .advanced import AdvancedDeobfuscator
from .cache import DEFAULT_CAPACITY, ResultCache, make_cache_key
from .classifier import (
    AAENCODE, CONTROL_FLOW_FLATTENING, DEAD_CODE_INJECTION, EVAL_OBFUSCATION, HEX_ENCODING,
    INVISIBLE_UNICODE, JJENCODE, JSFUCK, OPAQUE_PREDICATES, PACKER, STRING_ARRAY_ROTATION, UNKNOWN,
    URLENCODED, VM_PROTECTION, classify,
)
from .completion import CompletionProvider
from .deobfuscation_presets import PresetLibrary
from .errors import JSParseError, PipelineError
from .jsparse import beautify_js, is_valid_javascript
from .jsvmp import JSVMPDeobfuscator
from .models import DeobfuscationResult, TransformationRecord, UnresolvedPart
from .optimizer import optimize
from .passes import BasePass, StringArrayTable, VariableRenamer, get_baseline_passes
from .unpackers import UniversalUnpacker

logger = logging.getLogger(__name__)

__all__ = [
    'DeobfuscateOptions',
    'DeobfuscationResult',
    'Deobfuscator',
    'TransformationRecord',
    'UnresolvedPart',
    'confidence_score',
    'merge_obfuscation_types',
    'readability_score',
    'should_run',
]

UNPACK_TRIGGERS = (PACKER, AAENCODE, URLENCODED, EVAL_OBFUSCATION)
JSVMP_TRIGGERS = (VM_PROTECTION, JSFUCK, JJENCODE)
ADVANCED_TRIGGERS = (
    VM_PROTECTION, CONTROL_FLOW_FLATTENING, STRING_ARRAY_ROTATION, DEAD_CODE_INJECTION,
    OPAQUE_PREDICATES, INVISIBLE_UNICODE, HEX_ENCODING,
)

# Tags an advanced-stage description can confirm
ADVANCED_REPORTED = (
    INVISIBLE_UNICODE, VM_PROTECTION, CONTROL_FLOW_FLATTENING, OPAQUE_PREDICATES,
    DEAD_CODE_INJECTION, STRING_ARRAY_ROTATION,
)
UNPACKED_TAGS = {
    "Packer": PACKER,
    "AAEncode": AAENCODE,
    "URLEncode": URLENCODED,
    "Eval": EVAL_OBFUSCATION,
}

JSVMP_MIN_CONFIDENCE = 0.3
DEFAULT_ANALYSIS = "Deobfuscation pipeline completed."
ANALYSIS_UNAVAILABLE = "LLM analysis unavailable"

_IDENTIFIER = re.compile(r"\b[a-zA-Z_$][a-zA-Z0-9_$]*\b")
_OPTIONAL_SWITCHES = ("ast_optimize", "unpack", "jsvmp", "advanced")


@dataclass
class DeobfuscateOptions:
    """
    Options for one deobfuscation call

    Can be initialized from:
    1. Defaults: DeobfuscateOptions()
    2. Custom parameters: DeobfuscateOptions(aggressive=True, rename_variables=True)
    3. Preset + overrides: DeobfuscateOptions.from_preset("readable", llm=True)

    The switches ast_optimize, unpack, jsvmp and advanced are tri-state:
    None leaves the decision to technique detection.
    """
    auto: bool = True
    aggressive: bool = False
    ast_optimize: Optional[bool] = None
    rename_variables: bool = False
    llm: bool = False
    unpack: Optional[bool] = None
    jsvmp: Optional[bool] = None
    advanced: Optional[bool] = None
    aggressive_vm: bool = False
    beautify: bool = True

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        """Raise TypeError for values that are not booleans (or None for tri-state switches)"""
        for option in fields(self):
            value = getattr(self, option.name)
            if value is None and option.name in _OPTIONAL_SWITCHES:
                continue
            if not isinstance(value, bool):
                raise TypeError(f"Option {option.name} must be a bool, got {type(value).__name__}")

    @staticmethod
    def from_preset(preset_name: str, **overrides) -> 'DeobfuscateOptions':
        """
        Create options from a preset with optional overrides

        Example:
            options = DeobfuscateOptions.from_preset("aggressive", rename_variables=True)
        """
        preset = PresetLibrary.get_preset(preset_name)
        if not preset:
            raise ValueError(f"Unknown preset: {preset_name}. Available: {PresetLibrary.list_presets()}")

        options = DeobfuscateOptions(
            auto=preset.auto,
            aggressive=preset.aggressive,
            ast_optimize=preset.ast_optimize,
            rename_variables=preset.rename_variables,
            unpack=preset.unpack,
            jsvmp=preset.jsvmp,
            advanced=preset.advanced,
            aggressive_vm=preset.aggressive_vm,
            beautify=preset.beautify,
        )
        for key, value in overrides.items():
            if not hasattr(options, key):
                raise TypeError(f"Unknown option: {key}")
            setattr(options, key, value)
        options.validate()
        return options

    def to_dict(self) -> Dict:
        return asdict(self)


class _PipelineRun:
    """Mutable state of one deobfuscate() call"""

    def __init__(self):
        self.transformations: List[TransformationRecord] = []
        self.warnings: List[str] = []
        self.unresolved: List[UnresolvedPart] = []

    def record(self, kind: str, description: str, success: bool, warnings: Optional[List[str]] = None) -> None:
        self.transformations.append(TransformationRecord(
            type=kind,
            description=description,
            success=success,
            warnings=list(warnings) if warnings else None,
        ))


def should_run(explicit: Optional[bool], auto: bool, detected: Iterable[str], triggers: Iterable[str]) -> bool:
    """
    Decide whether a stage runs

    Args:
        explicit: User switch; when not None it decides alone
        auto: Technique-driven selection enabled
        detected: Tags found by the classifier
        triggers: Tags the stage counters

    Returns:
        True if the stage should run
    """
    if explicit is not None:
        return explicit
    return auto and bool(set(detected) & set(triggers))


def merge_obfuscation_types(original: Sequence[str], transformations: Sequence[TransformationRecord]) -> List[str]:
    """
    Refine detected tags with what successful stages confirmed

    The placeholder "unknown" is dropped once a specific tag is present.
    """
    types = list(dict.fromkeys(original))

    def add(tag: str) -> None:
        if tag not in types:
            types.append(tag)

    for record in transformations:
        if not record.success:
            continue
        if record.type == "unpack":
            for name, tag in UNPACKED_TAGS.items():
                if name in record.description:
                    add(tag)
        elif record.type == "jsvmp":
            description = record.description.lower()
            if JSFUCK in description:
                add(JSFUCK)
            elif JJENCODE in description:
                add(JJENCODE)
            else:
                add(VM_PROTECTION)
        elif record.type == "advanced":
            for tag in ADVANCED_REPORTED:
                if tag in record.description:
                    add(tag)

    if len(types) > 1 and UNKNOWN in types:
        types.remove(UNKNOWN)
    return types


def readability_score(code: str) -> int:
    """
    Heuristic readability of code (0-100)

    Rewards line structure, comments, descriptive identifiers, whitespace
    and the absence of obfuscator artifacts.
    """
    score = 0
    if "\n" in code:
        score += 20
    if "//" in code or "/*" in code:
        score += 10
    names = _IDENTIFIER.findall(code)
    if names and sum(len(name) for name in names) / len(names) > 3:
        score += 30
    if code and len("".join(code.split())) / len(code) < 0.8:
        score += 20
    if "_0x" not in code and "\\x" not in code:
        score += 20
    return min(score, 100)


def confidence_score(transformations: Sequence[TransformationRecord], readability: int, warning_count: int) -> float:
    """
    Heuristic confidence in the result

    Blends the success ratio and number of applied countermeasures with the
    readability score, minus a small penalty per warning.

    Returns:
        Confidence clamped to [0.1, 0.95]
    """
    succeeded = sum(1 for record in transformations if record.success)
    ratio = succeeded / len(transformations) if transformations else 0.0
    confidence = 0.45 * ratio + 0.15 * min(succeeded, 5) / 5 + 0.4 * readability / 100
    confidence -= 0.02 * warning_count
    return round(max(0.1, min(0.95, confidence)), 3)


class Deobfuscator:
    """
    Staged JavaScript deobfuscation pipeline

    The completion provider is optional. Without it every AI-assisted path
    is skipped and the rest of the pipeline is unaffected.
    """

    def __init__(self, provider: Optional[CompletionProvider] = None, cache_capacity: int = DEFAULT_CAPACITY):
        """
        Initialize pipeline

        Args:
            provider: Optional completion capability for LLM paths
            cache_capacity: Maximum number of cached results
        """
        self.provider = provider
        self.unpacker = UniversalUnpacker()
        self.jsvmp = JSVMPDeobfuscator(provider)
        self.advanced = AdvancedDeobfuscator(provider)
        self.cache: ResultCache[DeobfuscationResult] = ResultCache(cache_capacity)

    def deobfuscate(self, code: str, options: Optional[DeobfuscateOptions] = None) -> DeobfuscationResult:
        """
        Deobfuscate JavaScript source

        Args:
            code: JavaScript source text
            options: DeobfuscateOptions (defaults when None)

        Returns:
            DeobfuscationResult; a repeat call with the same code and options
            returns the identical cached object

        Raises:
            PipelineError: If a stage fails for a reason other than unparsable input
            TypeError: If code is not a string or options has the wrong type
        """
        if not isinstance(code, str):
            raise TypeError(f"code must be a str, got {type(code).__name__}")
        if options is None:
            options = DeobfuscateOptions()
        elif not isinstance(options, DeobfuscateOptions):
            raise TypeError(f"options must be DeobfuscateOptions, got {type(options).__name__}")

        cache_key = make_cache_key(code, options.to_dict())
        cached = self.cache.get(cache_key)
        if cached is not None:
            logger.debug("Deobfuscation result from cache")
            return cached

        run = _PipelineRun()
        detected = classify(code)
        logger.debug("Detected obfuscation types: %s", ", ".join(detected))

        jsvmp_switch = True if options.jsvmp is None and options.aggressive else options.jsvmp
        advanced_switch = True if options.advanced is None and options.aggressive else options.advanced

        # Step 1-3: technique-driven stages
        if should_run(options.unpack, options.auto, detected, UNPACK_TRIGGERS):
            code = self._guard("unpack", run, code, lambda text: self._run_unpack(text, run))
        if should_run(jsvmp_switch, options.auto, detected, JSVMP_TRIGGERS):
            code = self._guard("jsvmp", run, code, lambda text: self._run_jsvmp(text, options, run))
        if should_run(advanced_switch, options.auto, detected, ADVANCED_TRIGGERS):
            code = self._guard("advanced", run, code, lambda text: self._run_advanced(text, options, run))

        # Step 4: baseline passes, one string table per call
        table = StringArrayTable()
        for transformation in get_baseline_passes(table, options):
            code = self._apply_pass(transformation, code, run)

        # Step 5: structural optimizer
        ast_optimize = options.ast_optimize if options.ast_optimize is not None else options.auto
        if ast_optimize:
            code = self._guard("ast-optimize", run, code, lambda text: self._run_optimizer(text, run))

        # Step 6: variable renaming
        if options.rename_variables:
            code = self._apply_pass(VariableRenamer(options), code, run)

        # Step 7: advisory LLM analysis
        analysis = DEFAULT_ANALYSIS
        if options.llm and self.provider is not None:
            reply = self.llm_analysis(code)
            if reply:
                analysis = reply
                run.record("llm-analysis", "AI-assisted code analysis completed", True)
            else:
                analysis = ANALYSIS_UNAVAILABLE
                run.warnings.append(ANALYSIS_UNAVAILABLE)

        # Step 8: formatting
        if options.beautify:
            code = self._format(code)

        readability = readability_score(code)
        result = DeobfuscationResult(
            code=code,
            transformations=run.transformations,
            warnings=run.warnings,
            unresolved_parts=run.unresolved,
            confidence=confidence_score(run.transformations, readability, len(run.warnings)),
            obfuscation_types=merge_obfuscation_types(detected, run.transformations),
            readability_score=readability,
            analysis=analysis,
        )
        logger.debug("Deobfuscation completed (confidence: %.1f%%)", result.confidence * 100)

        self.cache.put(cache_key, result)
        return result

    def clear_cache(self) -> None:
        self.cache.clear()

    def llm_analysis(self, code: str) -> Optional[str]:
        """Advisory analysis from the completion provider, or None on any failure"""
        if self.provider is None:
            return None
        try:
            reply = self.provider.chat(self.provider.build_deobfuscation_prompt(code))
        except Exception as exc:
            logger.warning("LLM analysis failed: %s", exc)
            return None
        return reply.content or None

    # Stage runners

    def _guard(self, stage: str, run: _PipelineRun, code: str, stage_fn: Callable[[str], str]) -> str:
        """Run one delegated stage under the pipeline error contract"""
        logger.debug("Running %s stage", stage)
        try:
            return stage_fn(code)
        except JSParseError as exc:
            logger.warning("%s stage could not parse its input: %s", stage, exc)
            run.record(stage, f"{stage} failed: {exc}", False)
            return code
        except PipelineError:
            raise
        except Exception as exc:
            raise PipelineError(stage, exc) from exc

    def _apply_pass(self, transformation: BasePass, code: str, run: _PipelineRun) -> str:
        name = transformation.get_name()
        try:
            attempt = transformation.apply(code)
        except Exception as exc:
            raise PipelineError(name, exc) from exc

        if attempt.is_ok:
            run.record(name, transformation.describe(attempt.count), True)
        elif attempt.is_failed:
            run.record(name, f"Failed: {attempt.reason}", False)
        return attempt.code

    def _run_unpack(self, code: str, run: _PipelineRun) -> str:
        result = self.unpacker.unpack(code)
        if result.success and result.code != code:
            layers = " -> ".join(result.layers)
            run.record("unpack", f"Unpacked {result.type} obfuscation ({layers})", True)
            return result.code
        return code

    def _run_jsvmp(self, code: str, options: DeobfuscateOptions, run: _PipelineRun) -> str:
        result = self.jsvmp.deobfuscate(code, aggressive=options.aggressive_vm or options.aggressive)
        run.warnings.extend(f"[JSVMP] {warning}" for warning in result.warnings)
        run.unresolved.extend(result.unresolved_parts)
        if not result.is_jsvmp:
            return code

        percent = f"{result.confidence * 100:.1f}%"
        if result.confidence > JSVMP_MIN_CONFIDENCE:
            run.record("jsvmp", f"JSVMP deobfuscation (type: {result.vm_type}, confidence: {percent})", True,
                       warnings=result.warnings)
            return result.code

        run.warnings.append(f"[JSVMP] VM protection detected but restoration confidence too low ({percent}), "
                            f"code unchanged")
        run.record("jsvmp", f"JSVMP detected but confidence too low ({percent}), code unchanged", False)
        return code

    def _run_advanced(self, code: str, options: DeobfuscateOptions, run: _PipelineRun) -> str:
        result = self.advanced.deobfuscate(code, aggressive_vm=options.aggressive_vm, use_llm=options.llm)
        run.warnings.extend(f"[Advanced] {warning}" for warning in result.warnings)
        run.unresolved.extend(result.unresolved_parts)
        if not result.detected_techniques:
            return code
        techniques = ", ".join(result.detected_techniques)
        run.record("advanced", f"Advanced deobfuscation applied: {techniques} "
                               f"(confidence: {result.confidence * 100:.1f}%)", True,
                   warnings=result.warnings)
        return result.code

    def _run_optimizer(self, code: str, run: _PipelineRun) -> str:
        optimized = optimize(code)
        if optimized != code:
            run.record("ast-optimize", "AST optimizations applied (constant folding, dead branch elimination, "
                                       "property access normalization, sequence splitting)", True)
        return optimized

    def _format(self, code: str) -> str:
        if not is_valid_javascript(code):
            return code
        formatted = beautify_js(code)
        if not is_valid_javascript(formatted):
            logger.warning("Formatted output did not parse, keeping unformatted code")
            return code
        return formatted
