"""
JSVMP Deobfuscator
Recognize JavaScript virtual-machine protection and undo what can be undone statically

A JSVMP program ships its logic as bytecode plus an interpreter: a loop
that reads the next opcode through a program counter and dispatches on it
with a switch. This module finds the interpreter, classifies the VM family,
lists its instructions and applies the restoration that fits the family.
Bytecode is never executed.
"""

import logging
import re
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from esprima.nodes import Node

from .advanced import AdvancedDeobfuscator, find_dispatch_loops
from .classifier import JSFUCK_ALPHABET, method_name
from .completion import CompletionProvider, extract_code_block, parse_json_reply
from .errors import JSParseError
from .jsparse import MISSING, JSRewriter, is_number, js_number, literal_value, parse_js, walk
from .models import UnresolvedPart
from .optimizer import optimize, static_value
from .passes import ArrayIndexDecryptor, StringArrayExtractor, StringArrayTable

logger = logging.getLogger(__name__)

VM_OBFUSCATOR_IO = "obfuscator.io"
VM_JSFUCK = "jsfuck"
VM_JJENCODE = "jjencode"
VM_CUSTOM = "custom"

MIN_INSTRUCTIONS = 3
MANY_INSTRUCTIONS = 10
MIN_BYTECODE_LENGTH = 10
MAX_ENCODED_LENGTH = 100_000

REGEX_DISPATCH = re.compile(r"(while\s*\(|for\s*\(\s*;\s*;)[^{]*\{[\s\S]*?switch\s*\(")
REGEX_CASE = re.compile(r"\bcase\s+[^:]+:")
JJENCODE_MARKER = re.compile(r"\$=~\[\]")
_HEX_NUMBER = re.compile(r"^0[xX][0-9a-fA-F]+$")


@dataclass
class VMFeatures:
    """Structural evidence for an interpreter"""
    instruction_count: int = 0
    has_switch: bool = False
    has_instruction_array: bool = False
    has_program_counter: bool = False
    interpreter_location: str = ""
    complexity: str = "low"

    def to_dict(self) -> Dict:
        return {
            'instructionCount': self.instruction_count,
            'hasSwitch': self.has_switch,
            'hasInstructionArray': self.has_instruction_array,
            'hasProgramCounter': self.has_program_counter,
            'interpreterLocation': self.interpreter_location,
            'complexity': self.complexity,
        }


@dataclass
class VMInstruction:
    opcode: object
    name: str
    type: str
    description: str


@dataclass
class Restoration:
    """Code produced by one restoration strategy"""
    code: str
    confidence: float
    warnings: List[str] = field(default_factory=list)
    unresolved_parts: List[UnresolvedPart] = field(default_factory=list)


@dataclass
class JSVMPResult:
    """Container for one JSVMP run"""
    is_jsvmp: bool
    code: str
    vm_type: Optional[str] = None
    confidence: float = 0.0
    features: Optional[VMFeatures] = None
    instructions: List[VMInstruction] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    unresolved_parts: List[UnresolvedPart] = field(default_factory=list)
    processing_time: float = 0.0


class _DebuggerRemover(JSRewriter):
    def visit_DebuggerStatement(self, node):
        return self.drop_statement(node)


class _HexLiteralRewriter(JSRewriter):
    def visit_Literal(self, node):
        if is_number(literal_value(node)) and _HEX_NUMBER.match(node.raw or ""):
            return js_number(node.value)
        return None


def _complexity(instruction_count: int) -> str:
    if instruction_count < 20:
        return "low"
    if instruction_count < 50:
        return "medium"
    return "high"


class JSVMPDeobfuscator:
    """
    VM-protection detector and restorer

    Restoration strategies by VM family:
    - obfuscator.io: derotate, inline the string table, hex to decimal
    - jsfuck/jjencode: constant folding, then LLM decoding when available
    - custom: strip debugger traps, optimize, report the interpreter
    """

    def __init__(self, provider: Optional[CompletionProvider] = None):
        self.provider = provider
        self.advanced = AdvancedDeobfuscator(provider)

    # Detection

    def detect_jsvmp(self, code: str) -> Optional[VMFeatures]:
        """
        Look for an interpreter loop

        Falls back to a regex scan when the code does not parse.

        Returns:
            VMFeatures, or None when there is no interpreter
        """
        try:
            tree = parse_js(code)
        except JSParseError as exc:
            logger.debug("JSVMP detection falling back to regex: %s", exc)
            return self.detect_jsvmp_with_regex(code)

        best: Optional[VMFeatures] = None
        for loop, switch, function in find_dispatch_loops(tree):
            labels = {literal_value(case.test) for case in switch.cases if case.test is not None}
            features = VMFeatures(
                instruction_count=len(labels),
                has_switch=True,
                has_program_counter=_has_program_counter(loop, switch),
                interpreter_location=f"line {loop.loc.start.line}" + (f" in {function}()" if function else ""),
            )
            if best is None or features.instruction_count > best.instruction_count:
                best = features
        if best is None:
            return None

        best.has_instruction_array = _has_instruction_array(tree)
        best.complexity = _complexity(best.instruction_count)
        if best.instruction_count < MIN_INSTRUCTIONS:
            return None
        if best.instruction_count < MANY_INSTRUCTIONS and not (best.has_program_counter or best.has_instruction_array):
            return None
        return best

    def detect_jsvmp_with_regex(self, code: str) -> Optional[VMFeatures]:
        match = REGEX_DISPATCH.search(code)
        if not match:
            return None
        count = len(REGEX_CASE.findall(code[match.start():]))
        if count < 1:
            return None
        line = code.count("\n", 0, match.start()) + 1
        return VMFeatures(
            instruction_count=count,
            has_switch=True,
            has_instruction_array="[" in code,
            has_program_counter="++" in code,
            interpreter_location=f"line {line}",
            complexity=_complexity(count),
        )

    def identify_vm_type(self, code: str, features: Optional[VMFeatures] = None) -> str:
        """Classify the VM family from its textual fingerprints"""
        if "_0x" in code:
            return VM_OBFUSCATOR_IO
        head = "".join(code[:200].split())
        if head and sum(1 for char in head if char in JSFUCK_ALPHABET) / len(head) >= 0.95:
            return VM_JSFUCK
        if JJENCODE_MARKER.search(code):
            return VM_JJENCODE
        return VM_CUSTOM

    def extract_instructions(self, code: str, features: Optional[VMFeatures] = None) -> List[VMInstruction]:
        """List the cases of the largest switch as VM instructions"""
        try:
            tree = parse_js(code)
        except JSParseError:
            return []
        switches = [node for node, _ in walk(tree) if node.type == "SwitchStatement"]
        if not switches:
            return []
        dispatch = max(switches, key=lambda switch: len(switch.cases))

        instructions = []
        for case in dispatch.cases:
            if case.test is None:
                continue
            opcode = literal_value(case.test)
            if opcode is MISSING:
                opcode = code[case.test.range[0]:case.test.range[1]]
            kind = self.infer_instruction_type(case)
            instructions.append(VMInstruction(
                opcode=opcode,
                name=f"INST_{opcode}",
                type=kind,
                description=f"{kind} instruction with {len(case.consequent)} statements",
            ))
        return instructions

    def infer_instruction_type(self, case: Node) -> str:
        kinds = set()
        for statement in case.consequent:
            for node, _ in walk(statement):
                if node.type == "CallExpression":
                    kinds.add("stack" if method_name(node) in ("push", "pop") else "call")
                elif node.type == "AssignmentExpression":
                    kinds.add("arithmetic" if node.right.type == "BinaryExpression" else "assign")
                elif node.type in ("IfStatement", "ConditionalExpression"):
                    kinds.add("branch")
                elif node.type == "ReturnStatement":
                    kinds.add("return")
        for kind in ("stack", "branch", "arithmetic", "call", "assign", "return"):
            if kind in kinds:
                return kind
        return "unknown"

    # Restoration

    def restore_code(self, code: str, vm_type: str, aggressive: bool) -> Restoration:
        if vm_type == VM_OBFUSCATOR_IO:
            return self.restore_obfuscator_io(code)
        if vm_type in (VM_JSFUCK, VM_JJENCODE):
            return self.restore_encoded(code, vm_type)
        return self.restore_custom_vm(code, aggressive)

    def restore_obfuscator_io(self, code: str) -> Restoration:
        """Derotate and inline the string table, then print hex numbers in decimal"""
        warnings: List[str] = []
        unresolved: List[UnresolvedPart] = []
        confidence = 0.5

        derotated = self.advanced.derotate_string_array(code)
        if derotated != code:
            warnings.append("String array rotation removed; inlined strings use the unrotated order")
            code = derotated

        table = StringArrayTable()
        extracted = StringArrayExtractor(table).apply(code)
        decrypted = ArrayIndexDecryptor(table).apply(extracted.code)
        if decrypted.is_ok:
            code = decrypted.code
            confidence += 0.15
        elif table.arrays:
            warnings.append("String array found but its references could not be inlined")
        else:
            unresolved.append(UnresolvedPart(
                location="string array",
                reason="No literal string array declaration was found",
                suggestion="The table may be built at runtime; capture it after initialization",
            ))

        tree = parse_js(code)
        rewriter = _HexLiteralRewriter(code)
        rewritten = rewriter.rewrite(tree)
        if rewriter.changes:
            code = rewritten
            confidence += 0.1
        return Restoration(code=code, confidence=min(confidence, 0.9), warnings=warnings, unresolved_parts=unresolved)

    def restore_encoded(self, code: str, encoding: str) -> Restoration:
        """
        Decode a JSFuck or JJEncode payload

        Only payloads that fold to a constant string are decoded locally.
        Anything else goes to the completion provider when there is one.
        """
        if len(code) <= MAX_ENCODED_LENGTH:
            try:
                tree = parse_js(code)
            except JSParseError:
                tree = None
            if tree is not None and len(tree.body) == 1 and tree.body[0].type == "ExpressionStatement":
                value = static_value(tree.body[0].expression)
                if isinstance(value, str):
                    return Restoration(code=value, confidence=0.6)

        if self.provider is not None:
            return self.llm_decode_encoding(code, encoding)
        return Restoration(
            code=code,
            confidence=0.2,
            warnings=[f"{encoding} payload could not be decoded statically"],
            unresolved_parts=[UnresolvedPart(
                location="whole input",
                reason=f"{encoding} payload needs evaluation to decode",
                suggestion="Configure a completion provider or evaluate the payload in a sandbox",
            )],
        )

    def llm_decode_encoding(self, code: str, encoding: str) -> Restoration:
        focus = (f"Decode this {encoding} payload. Return JSON with: decoded, confidence, "
                 f"mechanism, keyFindings")
        try:
            reply = self.provider.chat(self.provider.build_code_analysis_prompt(code, focus))
        except Exception as exc:
            logger.warning("LLM decoding failed: %s", exc)
            return Restoration(code=code, confidence=0.1, warnings=[f"AI-assisted analysis failed: {exc}"])

        data = parse_json_reply(reply.content)
        if isinstance(data, dict) and isinstance(data.get("decoded"), str) and data["decoded"].strip():
            confidence = data.get("confidence")
            confidence = float(max(0.0, min(confidence, 0.9))) if is_number(confidence) else 0.5
            return Restoration(code=data["decoded"], confidence=confidence,
                               warnings=[f"{encoding} decoded with AI assistance"])

        block = extract_code_block(reply.content)
        if block:
            return Restoration(code=block, confidence=0.4, warnings=[f"{encoding} decoded from AI code block"])

        warnings = [f"{encoding} could not be fully decoded"]
        if isinstance(data, dict) and data.get("mechanism"):
            warnings.append(f"Mechanism: {data['mechanism']}")
        return Restoration(code=code, confidence=0.2, warnings=warnings)

    def restore_custom_vm(self, code: str, aggressive: bool = False) -> Restoration:
        """Remove debugger traps and simplify around the interpreter"""
        warnings: List[str] = []
        try:
            tree = parse_js(code)
        except JSParseError as exc:
            warnings.append(f"Custom VM code did not parse: {exc}")
            return Restoration(code=code, confidence=0.1, warnings=warnings)

        remover = _DebuggerRemover(code)
        cleaned = remover.rewrite(tree)
        if remover.changes:
            warnings.append(f"Removed {remover.changes} debugger statements")
        cleaned = optimize(cleaned)
        if aggressive:
            try:
                cleaned = self.advanced.remove_dead_code(cleaned)
            except JSParseError as exc:
                warnings.append(f"Dead code removal skipped: {exc}")

        confidence = 0.35
        unresolved = [UnresolvedPart(
            location="interpreter loop",
            reason="Custom VM bytecode semantics are not recovered statically",
            suggestion="Trace opcode handlers at runtime to map instructions",
        )]
        analysis = self.llm_analyze_vm(cleaned)
        if analysis:
            confidence = 0.5
            warnings.append(f"VM structure analysis: {analysis}")
        else:
            warnings.append("Custom VM interpreter left in place")
        return Restoration(code=cleaned, confidence=confidence, warnings=warnings, unresolved_parts=unresolved)

    def llm_analyze_vm(self, code: str) -> Optional[str]:
        """One-line summary of the VM layout from the completion provider, or None"""
        if self.provider is None:
            return None
        focus = ("VM structure: interpreter loop, bytecode variable, program counter, stack. "
                 "Include vmType and restorationSteps")
        try:
            reply = self.provider.chat(self.provider.build_code_analysis_prompt(code, focus))
        except Exception as exc:
            logger.warning("LLM VM analysis failed: %s", exc)
            return None
        data = parse_json_reply(reply.content)
        if not isinstance(data, dict):
            return None
        parts = []
        for key in ("vmType", "summary", "restorationApproach"):
            if isinstance(data.get(key), str):
                parts.append(f"{key}={data[key]}")
        steps = data.get("restorationSteps")
        if isinstance(steps, list):
            parts.append(f"steps={len(steps)}")
        return ", ".join(parts) or None

    # Pipeline

    def deobfuscate(self, code: str, aggressive: bool = False, extract_instructions: bool = True) -> JSVMPResult:
        """
        Detect and restore VM-protected code

        Args:
            code: JavaScript source
            aggressive: Also remove dead code around a custom interpreter
            extract_instructions: List the VM instruction set

        Returns:
            JSVMPResult; is_jsvmp is False and code unchanged when no VM is found
        """
        started = time.time()
        features = self.detect_jsvmp(code)
        vm_type = self.identify_vm_type(code, features)
        if features is None and vm_type in (VM_JSFUCK, VM_JJENCODE):
            # Encoders wrap an evaluator instead of an interpreter loop
            features = VMFeatures(interpreter_location="whole input")
        if features is None:
            return JSVMPResult(is_jsvmp=False, code=code, processing_time=time.time() - started)

        logger.debug("JSVMP %s with %d instructions at %s", vm_type, features.instruction_count,
                     features.interpreter_location)
        instructions = self.extract_instructions(code, features) if extract_instructions else []
        restoration = self.restore_code(code, vm_type, aggressive)
        return JSVMPResult(
            is_jsvmp=True,
            code=restoration.code,
            vm_type=vm_type,
            confidence=restoration.confidence,
            features=features,
            instructions=instructions,
            warnings=restoration.warnings,
            unresolved_parts=restoration.unresolved_parts,
            processing_time=time.time() - started,
        )


def _has_program_counter(loop: Node, switch: Node) -> bool:
    discriminant = switch.discriminant
    if discriminant.type == "MemberExpression" and discriminant.computed:
        return True
    for node, _ in walk(loop):
        if node.type == "UpdateExpression" and node.argument.type == "Identifier":
            return True
        if node.type == "AssignmentExpression" and node.operator in ("+=", "-=") and node.left.type == "Identifier":
            return True
    return False


def _has_instruction_array(tree: Node) -> bool:
    for node, _ in walk(tree):
        if node.type == "ArrayExpression" and len(node.elements) >= MIN_BYTECODE_LENGTH \
                and all(is_number(literal_value(element)) for element in node.elements):
            return True
        if node.type == "NewExpression" and node.callee.type == "Identifier" and node.callee.name == "Array":
            return True
        if node.type == "Literal" and isinstance(node.value, str) and len(node.value) >= 64 \
                and re.fullmatch(r"[0-9a-fA-F]+", node.value):
            return True
    return False
