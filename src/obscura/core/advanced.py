"""
Advanced Deobfuscation Stage
Detectors and countermeasures for techniques the baseline passes do not cover

Handles:
- Invisible unicode (zero-width characters carrying hidden text)
- Hex/unicode escaped string literals
- VM protection (switch-dispatch interpreters over numeric opcodes)
- Control-flow flattening
- Dead code and opaque predicates
- String-array rotation wrappers
- Optional LLM cleanup of whatever is left

Detectors are independent: a detector that cannot parse its input adds a
warning and the next detector still runs.
"""

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Set, Tuple

from esprima.nodes import Node

from .classifier import (
    CONTROL_FLOW_FLATTENING, DEAD_CODE_INJECTION, INVISIBLE_UNICODE, OPAQUE_PREDICATES,
    STRING_ARRAY_ROTATION, VM_PROTECTION, ZERO_WIDTH, find_rotation_wrappers, has_numeric_labels,
    loop_switch, method_name,
)
from .completion import CompletionProvider, extract_code_block
from .errors import JSParseError
from .jsparse import (
    MISSING, JSRewriter, beautify_js, is_number, is_string_literal, is_valid_javascript,
    literal_value, parse_js, walk,
)
from .models import UnresolvedPart
from .optimizer import js_truthy, optimize, static_value
from .passes import ControlFlowUnflattener, StringDecoder
from .passes.string_decoding import ESCAPE_PATTERN

logger = logging.getLogger(__name__)

STRING_ENCODING = "string-encoding"
AST_OPTIMIZED = "ast-optimized"
LLM_CLEANUP = "llm-cleanup"

ZWSP = "\u200b"
ZWNJ = "\u200c"
HIDDEN_RUN = re.compile("[\u200b\u200c]{8,}")
REGISTER_NAME = re.compile(r"^(r|reg|R)\d+$")
BRANCH_KEYWORDS = re.compile(r"\b(if|for|while|switch|case|catch)\b|\?|&&|\|\|")

VM_MARKER = "VM interpreter removed"
MIN_INSTRUCTION_ARRAY = 3

_BRANCH_TYPES = frozenset([
    "IfStatement", "ConditionalExpression", "ForStatement", "ForInStatement", "ForOfStatement",
    "WhileStatement", "DoWhileStatement", "SwitchCase", "CatchClause", "LogicalExpression",
])
_LOOP_TYPES = ("WhileStatement", "DoWhileStatement", "ForStatement")
_TERMINATORS = ("ReturnStatement", "ThrowStatement")


@dataclass
class VMInfo:
    """Outcome of VM-protection detection"""
    detected: bool = False
    type: Optional[str] = None
    instruction_count: int = 0
    line: int = 0

    def to_dict(self) -> Dict:
        return {
            'detected': self.detected,
            'type': self.type,
            'instructionCount': self.instruction_count,
        }


@dataclass
class VMStructure:
    """Shape of a recognized interpreter"""
    has_interpreter: bool = False
    has_stack: bool = False
    has_registers: bool = False
    interpreter_function: Optional[str] = None
    instruction_array: Optional[str] = None


@dataclass
class AdvancedResult:
    """Container for one advanced-stage run"""
    code: str
    detected_techniques: List[str] = field(default_factory=list)
    confidence: float = 0.1
    warnings: List[str] = field(default_factory=list)
    unresolved_parts: List[UnresolvedPart] = field(default_factory=list)


@dataclass
class _StageContext:
    aggressive_vm: bool
    warnings: List[str] = field(default_factory=list)
    unresolved: List[UnresolvedPart] = field(default_factory=list)


def find_dispatch_loops(tree: Node) -> List[Tuple[Node, Node, Optional[str]]]:
    """
    Find infinite loops that drive a switch

    Returns:
        (loop, switch, name of the enclosing function or None) triples
    """
    parents: Dict[int, Node] = {}
    found = []
    for node, parent in walk(tree):
        if parent is not None:
            parents[id(node)] = parent
        if node.type not in _LOOP_TYPES:
            continue
        if node.type == "ForStatement" and (node.init is not None or node.update is not None):
            continue
        switch = loop_switch(node)
        if switch is not None:
            found.append((node, switch, _enclosing_function(node, parents)))
    return found


def _enclosing_function(node: Node, parents: Dict[int, Node]) -> Optional[str]:
    current = parents.get(id(node))
    while current is not None:
        if current.type == "FunctionDeclaration" and current.id is not None:
            return current.id.name
        if current.type in ("FunctionExpression", "ArrowFunctionExpression"):
            holder = parents.get(id(current))
            if holder is not None and holder.type == "VariableDeclarator" and holder.id.type == "Identifier":
                return holder.id.name
            return None
        current = parents.get(id(current))
    return None


def _case_labels(switch: Node) -> Set:
    labels = set()
    for case in switch.cases:
        if case.test is None:
            continue
        value = literal_value(case.test)
        labels.add(value if value is not MISSING else id(case))
    return labels


class _BranchPruner(JSRewriter, ABC):
    """Keeps only the live arm of branches whose test it can decide"""

    @abstractmethod
    def decides(self, test: Node) -> bool:
        """Whether this pruner may evaluate the branch test"""

    def _test_value(self, test: Node):
        if not self.decides(test):
            return MISSING
        return static_value(test)

    def visit_IfStatement(self, node):
        value = self._test_value(node.test)
        if value is MISSING:
            return None
        if js_truthy(value):
            return self.inline_statement(node, node.consequent)
        if node.alternate is not None:
            return self.inline_statement(node, node.alternate)
        return self.drop_statement(node)

    def visit_ConditionalExpression(self, node):
        value = self._test_value(node.test)
        if value is MISSING:
            return None
        return self.promote(node, node.consequent if js_truthy(value) else node.alternate)


class _DeadCodeRemover(_BranchPruner):
    def decides(self, test):
        return test.type != "BinaryExpression"

    def visit_Program(self, node):
        return self._truncate(node)

    def visit_BlockStatement(self, node):
        return self._truncate(node)

    def _truncate(self, node: Node) -> Optional[str]:
        statements = node.body
        cut = next((index for index, statement in enumerate(statements) if statement.type in _TERMINATORS), None)
        if cut is None or cut == len(statements) - 1:
            return None

        live = statements[:cut + 1]
        head = self.render_span(node.range[0], live[-1].range[1], live)
        indent = self.indentation(live[-1])
        hoisted = [self._hoisted(statement) for statement in statements[cut + 1:]]
        tail = self.source[statements[-1].range[1]:node.range[1]]
        return head + "".join("\n" + indent + text for text in hoisted if text) + tail

    def _hoisted(self, statement: Node) -> str:
        """What an unreachable statement still contributes to its scope"""
        if statement.type == "FunctionDeclaration":
            return self.visit(statement)
        if statement.type == "VariableDeclaration" and statement.kind == "var":
            if all(declarator.id.type == "Identifier" for declarator in statement.declarations):
                return "var " + ", ".join(declarator.id.name for declarator in statement.declarations) + ";"
            return self.visit(statement)
        return ""


class _OpaquePredicateRemover(_BranchPruner):
    def decides(self, test):
        return test.type == "BinaryExpression"


class _RotationRemover(JSRewriter):
    def __init__(self, source: str, calls: Set[int]):
        super().__init__(source)
        self.calls = calls

    def visit_ExpressionStatement(self, node):
        expression = node.expression
        if expression.type == "UnaryExpression":
            expression = expression.argument
        if id(expression) in self.calls:
            return self.drop_statement(node)
        return None


class _InterpreterStripper(JSRewriter):
    def __init__(self, source: str, structure: VMStructure, loops: Set[int]):
        super().__init__(source)
        self.structure = structure
        self.loops = loops

    def visit_FunctionDeclaration(self, node):
        name = self.structure.interpreter_function
        if name and node.id is not None and node.id.name == name:
            return f"/* {VM_MARKER}: {name} */"
        return None

    def visit_VariableDeclaration(self, node):
        if len(node.declarations) != 1 or not self.in_statement_list(node):
            return None
        target = node.declarations[0].id
        if target.type != "Identifier":
            return None
        if target.name == self.structure.instruction_array:
            return f"/* VM bytecode removed: {target.name} */"
        if target.name == self.structure.interpreter_function:
            return f"/* {VM_MARKER}: {target.name} */"
        return None

    def _strip_loop(self, node):
        if id(node) in self.loops and self.in_statement_list(node):
            return f"/* {VM_MARKER} */"
        return None

    visit_WhileStatement = _strip_loop
    visit_DoWhileStatement = _strip_loop
    visit_ForStatement = _strip_loop


class AdvancedDeobfuscator:
    """
    Runs the advanced detectors in a fixed order and neutralizes what they find

    The completion provider is optional; without it the LLM paths return
    their input unchanged.
    """

    def __init__(self, provider: Optional[CompletionProvider] = None):
        self.provider = provider

    # Detection

    def detect_invisible_unicode(self, code: str) -> bool:
        return bool(ZERO_WIDTH.search(code))

    def detect_string_encoding(self, code: str) -> bool:
        """True when some string literal is written with hex or unicode escapes"""
        tree = parse_js(code)
        for node, _ in walk(tree):
            if is_string_literal(node) and ESCAPE_PATTERN.search(node.raw or ""):
                return True
        return False

    def detect_vm_protection(self, code: str) -> VMInfo:
        """
        Detect a switch-dispatch interpreter over numeric opcodes

        The instruction count is the number of distinct case labels of the
        largest dispatch switch.
        """
        tree = parse_js(code)
        info = VMInfo()
        for loop, switch, _ in find_dispatch_loops(tree):
            if not has_numeric_labels(switch):
                continue
            count = len(_case_labels(switch))
            if count > info.instruction_count or not info.detected:
                info.detected = True
                info.instruction_count = count
                info.line = loop.loc.start.line if loop.loc else 0
                info.type = "stack-vm" if _uses_stack(switch) else "custom-vm"
        return info

    def analyze_vm_structure(self, code: str) -> VMStructure:
        tree = parse_js(code)
        structure = VMStructure()
        loops = find_dispatch_loops(tree)
        if loops:
            structure.has_interpreter = True
            numeric = [entry for entry in loops if has_numeric_labels(entry[1])]
            structure.interpreter_function = (numeric or loops)[0][2]

        largest = 0
        for node, _ in walk(tree):
            if node.type == "CallExpression" and method_name(node) in ("push", "pop"):
                structure.has_stack = True
            elif node.type == "AssignmentExpression" and node.left.type == "Identifier" \
                    and REGISTER_NAME.match(node.left.name):
                structure.has_registers = True
            elif node.type == "VariableDeclarator" and node.id.type == "Identifier" and node.init is not None \
                    and node.init.type == "ArrayExpression":
                elements = node.init.elements
                if len(elements) >= MIN_INSTRUCTION_ARRAY and len(elements) > largest \
                        and all(is_number(literal_value(element)) for element in elements):
                    largest = len(elements)
                    structure.instruction_array = node.id.name
        return structure

    def detect_control_flow_flattening(self, code: str) -> bool:
        return bool(find_dispatch_loops(parse_js(code)))

    # Countermeasures

    def decode_invisible_unicode(self, code: str) -> str:
        """
        Recover text hidden as zero-width bits

        Each run of ZWSP (0) and ZWNJ (1) is read 8 bits per character.
        Zero-width characters left over afterwards are stripped.
        """
        def decode_run(match):
            bits = "".join("1" if char == ZWNJ else "0" for char in match.group())
            usable = len(bits) - len(bits) % 8
            chars = [chr(int(bits[index:index + 8], 2)) for index in range(0, usable, 8)]
            return "".join(char for char in chars if char.isprintable())

        decoded = HIDDEN_RUN.sub(decode_run, code)
        return ZERO_WIDTH.sub("", decoded)

    def simplify_vm_code(self, code: str, structure: VMStructure) -> str:
        """Replace the interpreter and its bytecode array with marker comments"""
        tree = parse_js(code)
        loops: Set[int] = set()
        if not structure.interpreter_function:
            loops = {id(loop) for loop, _, function in find_dispatch_loops(tree) if function is None}
        stripper = _InterpreterStripper(code, structure, loops)
        return stripper.rewrite(tree)

    def remove_dead_code(self, code: str) -> str:
        """Drop constant-guarded arms and statements after return/throw"""
        tree = parse_js(code)
        return _DeadCodeRemover(code).rewrite(tree)

    def remove_opaque_predicates(self, code: str) -> str:
        """Keep only the live branch of literal-vs-literal comparisons"""
        tree = parse_js(code)
        return _OpaquePredicateRemover(code).rewrite(tree)

    def derotate_string_array(self, code: str) -> str:
        """Remove IIFEs that rotate a string array at startup"""
        tree = parse_js(code)
        wrappers = find_rotation_wrappers(tree)
        if not wrappers:
            return code
        remover = _RotationRemover(code, {id(call) for call, _ in wrappers})
        return remover.rewrite(tree)

    def normalize_code(self, code: str) -> str:
        return beautify_js(code)

    def estimate_code_complexity(self, code: str) -> int:
        """Count of branch and loop constructs"""
        try:
            tree = parse_js(code)
        except JSParseError:
            return len(BRANCH_KEYWORDS.findall(code))
        return sum(1 for node, _ in walk(tree) if node.type in _BRANCH_TYPES)

    def calculate_confidence(self, techniques: List[str], warnings: List[str], code: str) -> float:
        """
        Blend techniques addressed, warnings and branch density

        Returns:
            Confidence clamped to [0.1, 0.95]
        """
        confidence = 0.5 + 0.1 * min(len(techniques), 4) - 0.05 * len(warnings)
        lines = code.count("\n") + 1
        density = self.estimate_code_complexity(code) / lines
        confidence -= min(0.2, 0.05 * density)
        return round(max(0.1, min(0.95, confidence)), 3)

    # LLM paths

    def extract_code_from_llm_response(self, text: str) -> Optional[str]:
        return extract_code_block(text)

    def is_valid_javascript(self, code: str) -> bool:
        return is_valid_javascript(code)

    def llm_cleanup(self, code: str, techniques: List[str]) -> str:
        """
        Ask the completion provider for a cleaned rewrite

        Returns:
            The first fenced code block of the reply when it parses,
            otherwise code unchanged
        """
        if self.provider is None:
            return code
        try:
            reply = self.provider.chat(self.provider.build_vm_cleanup_prompt(code, techniques))
        except Exception as exc:
            logger.warning("LLM cleanup unavailable: %s", exc)
            return code
        candidate = extract_code_block(reply.content)
        if candidate and is_valid_javascript(candidate):
            return candidate
        logger.debug("LLM cleanup reply rejected")
        return code

    def deobfuscate_vm(self, code: str, info: VMInfo) -> Tuple[str, bool]:
        """
        LLM-assisted VM cleanup

        Returns:
            (code, success); code is unchanged when success is False
        """
        techniques = [VM_PROTECTION]
        if info.type:
            techniques.append(f"{info.type} ({info.instruction_count} instructions)")
        cleaned = self.llm_cleanup(code, techniques)
        return cleaned, cleaned != code

    # Pipeline

    def deobfuscate(self, code: str, aggressive_vm: bool = False, ast_optimize: bool = False,
                    use_llm: bool = False) -> AdvancedResult:
        """
        Run every detector and apply the matching countermeasures

        Args:
            code: JavaScript source
            aggressive_vm: Allow removing a recognized VM interpreter
            ast_optimize: Finish with the structural optimizer
            use_llm: Ask the completion provider for a final cleanup

        Returns:
            AdvancedResult with the transformed code and what was addressed
        """
        context = _StageContext(aggressive_vm=aggressive_vm)
        steps: List[Tuple[str, Callable[[str, _StageContext], Optional[str]]]] = [
            (INVISIBLE_UNICODE, self._invisible_unicode_step),
            (STRING_ENCODING, self._string_encoding_step),
            (VM_PROTECTION, self._vm_step),
            (CONTROL_FLOW_FLATTENING, self._control_flow_step),
            (OPAQUE_PREDICATES, self._opaque_predicate_step),
            (DEAD_CODE_INJECTION, self._dead_code_step),
            (STRING_ARRAY_ROTATION, self._rotation_step),
        ]
        if ast_optimize:
            steps.append((AST_OPTIMIZED, self._optimize_step))

        techniques: List[str] = []
        current = code
        for technique, step in steps:
            try:
                updated = step(current, context)
            except JSParseError as exc:
                logger.debug("%s detector skipped: %s", technique, exc)
                context.warnings.append(f"{technique} detection skipped: {exc}")
                continue
            if updated is not None:
                techniques.append(technique)
                current = updated

        if use_llm and self.provider is not None and techniques:
            cleaned = self.llm_cleanup(current, techniques)
            if cleaned != current:
                techniques.append(LLM_CLEANUP)
                current = cleaned

        return AdvancedResult(
            code=current,
            detected_techniques=techniques,
            confidence=self.calculate_confidence(techniques, context.warnings, current),
            warnings=context.warnings,
            unresolved_parts=context.unresolved,
        )

    def _invisible_unicode_step(self, code: str, context: _StageContext) -> Optional[str]:
        if not self.detect_invisible_unicode(code):
            return None
        return self.decode_invisible_unicode(code)

    def _string_encoding_step(self, code: str, context: _StageContext) -> Optional[str]:
        if not self.detect_string_encoding(code):
            return None
        return StringDecoder().apply(code).code

    def _vm_step(self, code: str, context: _StageContext) -> Optional[str]:
        info = self.detect_vm_protection(code)
        if not info.detected:
            return None
        location = f"line {info.line}"
        if not context.aggressive_vm:
            context.unresolved.append(UnresolvedPart(
                location=location,
                reason=f"VM interpreter with {info.instruction_count} opcodes left in place",
                suggestion="Enable aggressive_vm to strip the interpreter, or trace it at runtime",
            ))
            return code

        if self.provider is not None:
            cleaned, success = self.deobfuscate_vm(code, info)
            if success:
                return cleaned
        structure = self.analyze_vm_structure(code)
        context.warnings.append(f"{VM_MARKER} at {location}; bytecode was not executed")
        context.unresolved.append(UnresolvedPart(
            location=location,
            reason="Program logic encoded as VM bytecode was removed with the interpreter",
            suggestion="Recover the original logic by tracing the interpreter dynamically",
        ))
        return self.simplify_vm_code(code, structure)

    def _control_flow_step(self, code: str, context: _StageContext) -> Optional[str]:
        if not self.detect_control_flow_flattening(code):
            return None
        attempt = ControlFlowUnflattener().apply(code)
        if not attempt.is_ok:
            context.warnings.append("Control flow flattening detected but no dispatch order array was found")
        return attempt.code

    def _opaque_predicate_step(self, code: str, context: _StageContext) -> Optional[str]:
        simplified = self.remove_opaque_predicates(code)
        return simplified if simplified != code else None

    def _dead_code_step(self, code: str, context: _StageContext) -> Optional[str]:
        simplified = self.remove_dead_code(code)
        return simplified if simplified != code else None

    def _rotation_step(self, code: str, context: _StageContext) -> Optional[str]:
        derotated = self.derotate_string_array(code)
        if derotated == code:
            return None
        context.warnings.append("String array rotation removed; array order may differ from the runtime order")
        return derotated

    def _optimize_step(self, code: str, context: _StageContext) -> Optional[str]:
        optimized = optimize(code)
        return optimized if optimized != code else None


def _uses_stack(switch: Node) -> bool:
    return any(node.type == "CallExpression" and method_name(node) in ("push", "pop")
               for node, _ in walk(switch))
