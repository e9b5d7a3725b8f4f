"""
Baseline Passes Package
Independent source-to-source passes run by every deobfuscation call

Each module contains one family of passes:
- base.py: AttemptResult and the BasePass interface
- string_arrays.py: string table extraction and indexed lookup inlining
- literals.py: constant folding and obfuscator idiom simplification
- string_decoding.py: hex/unicode escape decoding
- control_flow.py: split-order dispatch loop unflattening
- renaming.py: _0x identifier renaming
"""

from .base import AttemptResult, BasePass
from .control_flow import ControlFlowUnflattener
from .literals import ExpressionSimplifier, LiteralTransformer
from .renaming import VariableRenamer
from .string_arrays import ArrayIndexDecryptor, StringArrayExtractor, StringArrayTable
from .string_decoding import StringDecoder

__all__ = [
    'AttemptResult',
    'BasePass',
    'StringArrayTable',
    'StringArrayExtractor',
    'LiteralTransformer',
    'StringDecoder',
    'ArrayIndexDecryptor',
    'ControlFlowUnflattener',
    'ExpressionSimplifier',
    'VariableRenamer',
    'get_baseline_passes',
]


def get_baseline_passes(table: StringArrayTable, options=None):
    """
    Get the baseline passes in execution order

    Args:
        table: String table shared by extraction and decryption for one call
        options: DeobfuscateOptions for the current call

    Returns:
        List of initialized pass instances in execution order
    """
    return [
        StringArrayExtractor(table, options),
        LiteralTransformer(options),
        StringDecoder(options),
        ArrayIndexDecryptor(table, options),
        ControlFlowUnflattener(options),
        ExpressionSimplifier(options),
    ]
