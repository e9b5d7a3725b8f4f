"""
Base Pass Interface
Defines the interface every baseline transformation pass implements
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Tuple

from esprima.nodes import Node

from ..errors import JSParseError
from ..jsparse import parse_js

logger = logging.getLogger(__name__)

STATUS_OK = "ok"
STATUS_UNCHANGED = "unchanged"
STATUS_FAILED = "failed"


@dataclass(frozen=True)
class AttemptResult:
    """
    Outcome of one transformation attempt

    Exactly one of three shapes:
    - ok: the pass applied ``count`` rewrites and produced ``code``
    - unchanged: the pass parsed its input and found nothing to do
    - failed: the input did not parse; ``code`` is the untouched input
    """
    status: str
    code: str
    count: int = 0
    reason: str = ""

    @classmethod
    def ok(cls, code: str, count: int) -> "AttemptResult":
        return cls(STATUS_OK, code, count=count)

    @classmethod
    def unchanged(cls, code: str) -> "AttemptResult":
        return cls(STATUS_UNCHANGED, code)

    @classmethod
    def failed(cls, code: str, reason: str) -> "AttemptResult":
        return cls(STATUS_FAILED, code, reason=reason)

    @property
    def is_ok(self) -> bool:
        return self.status == STATUS_OK

    @property
    def is_failed(self) -> bool:
        return self.status == STATUS_FAILED


class BasePass(ABC):
    """Abstract base class for baseline deobfuscation passes"""

    def __init__(self, options=None):
        """
        Initialize pass with optional configuration

        Args:
            options: DeobfuscateOptions for the current call
        """
        self.options = options

    @abstractmethod
    def get_name(self) -> str:
        """
        Get the transformation type recorded in the audit trail

        Returns:
            Record type (e.g., "string-decode", "decrypt-arrays")
        """
        pass

    @abstractmethod
    def transform(self, code: str, tree: Node) -> Tuple[str, int]:
        """
        Rewrite parsed code

        Args:
            code: Source text the tree was parsed from
            tree: Program node for code

        Returns:
            (new_code, number_of_rewrites)
        """
        pass

    def describe(self, count: int) -> str:
        return f"Applied {count} rewrites"

    def apply(self, code: str) -> AttemptResult:
        """
        Parse and transform code

        Parse failures are returned as a failed attempt. Every other
        exception propagates to the caller.
        """
        try:
            tree = parse_js(code)
            new_code, count = self.transform(code, tree)
        except JSParseError as exc:
            logger.warning("%s skipped: %s", self.get_name(), exc)
            return AttemptResult.failed(code, str(exc))

        if count == 0:
            return AttemptResult.unchanged(code)
        return AttemptResult.ok(new_code, count)
