"""
Control-Flow Unflattening Pass
Restore statement order from javascript-obfuscator dispatch loops

Recognizes the shape

    var order = "2|0|1".split("|"), i = 0;
    while (true) {
        switch (order[i++]) {
            case "0": a(); continue;
            case "1": b(); continue;
            case "2": c(); continue;
        }
        break;
    }

and replaces the loop with the case bodies in dispatch order.
"""

from typing import Dict, List, Optional, Tuple

from esprima.nodes import Node

from ..jsparse import MISSING, JSRewriter, literal_value, terminate_statement, walk
from ..optimizer import js_truthy, static_value
from .base import BasePass


def find_dispatch_orders(tree: Node) -> Dict[str, List[str]]:
    """Map variable names to the label sequence of ``"a|b".split("|")`` initializers"""
    orders: Dict[str, List[str]] = {}
    for node, _ in walk(tree):
        if node.type != "VariableDeclarator" or node.id.type != "Identifier" or node.init is None:
            continue
        init = node.init
        if init.type != "CallExpression" or len(init.arguments) != 1:
            continue
        callee = init.callee
        if callee.type != "MemberExpression" or callee.computed or callee.property.name != "split":
            continue
        sequence = literal_value(callee.object)
        separator = literal_value(init.arguments[0])
        if isinstance(sequence, str) and isinstance(separator, str) and separator:
            orders[node.id.name] = sequence.split(separator)
    return orders


def is_infinite_test(test: Optional[Node]) -> bool:
    if test is None:
        return True
    value = static_value(test)
    return value is not MISSING and js_truthy(value)


def dispatch_switch(loop: Node) -> Optional[Node]:
    """The switch statement a dispatch loop drives, if loop has that shape"""
    body = loop.body
    if body.type == "SwitchStatement":
        return body
    if body.type != "BlockStatement" or not body.body:
        return None
    statements = body.body
    if statements[0].type != "SwitchStatement":
        return None
    if len(statements) == 1 or (len(statements) == 2 and statements[1].type == "BreakStatement"
                                and statements[1].label is None):
        return statements[0]
    return None


class _Unflattener(JSRewriter):
    def __init__(self, source: str, orders: Dict[str, List[str]]):
        super().__init__(source)
        self.orders = orders

    def visit_WhileStatement(self, node):
        return self._unflatten(node) if is_infinite_test(node.test) else None

    def visit_ForStatement(self, node):
        if node.init is not None or node.update is not None:
            return None
        return self._unflatten(node) if is_infinite_test(node.test) else None

    def _unflatten(self, loop: Node) -> Optional[str]:
        switch = dispatch_switch(loop)
        if switch is None:
            return None
        discriminant = switch.discriminant
        if discriminant.type != "MemberExpression" or not discriminant.computed:
            return None
        if discriminant.object.type != "Identifier" or discriminant.property.type != "UpdateExpression":
            return None
        order = self.orders.get(discriminant.object.name)
        if not order:
            return None

        cases = {}
        for case in switch.cases:
            label = literal_value(case.test) if case.test is not None else None
            if label is not None:
                cases[str(label)] = case

        statements: List[str] = []
        for label in order:
            case = cases.get(label)
            if case is None:
                return None
            body = list(case.consequent)
            while body and body[-1].type in ("ContinueStatement", "BreakStatement") and body[-1].label is None:
                body.pop()
            if any(statement.type in ("ContinueStatement", "BreakStatement") for statement in body):
                return None
            rendered = (terminate_statement(self.visit(statement)) for statement in body)
            statements.extend(text for text in rendered if text)

        if self.in_statement_list(loop):
            return ("\n" + self.indentation(loop)).join(statements)
        return "{ " + " ".join(statements) + " }"


class ControlFlowUnflattener(BasePass):
    """Replace split-order dispatch loops with straight-line code"""

    def get_name(self) -> str:
        return "unflatten-control-flow"

    def describe(self, count: int) -> str:
        return f"Unflattened {count} control flow patterns"

    def transform(self, code: str, tree: Node) -> Tuple[str, int]:
        orders = find_dispatch_orders(tree)
        if not orders:
            return code, 0
        rewriter = _Unflattener(code, orders)
        new_code = rewriter.rewrite(tree)
        return new_code, rewriter.changes
