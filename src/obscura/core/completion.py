"""
Completion Capability
Optional text-completion interface consumed by the AI-assisted paths

The engine never talks to a hosted model directly. Callers inject a
CompletionProvider; every call site must keep working when none is given.
Messages use the OpenAI-style ``{"role": ..., "content": ...}`` shape.
"""

import json
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

Message = Dict[str, str]

_FENCED_BLOCK = re.compile(r"```[ \t]*([\w+-]*)[ \t]*\r?\n(.*?)```", re.DOTALL)
_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)


@dataclass
class CompletionResponse:
    """Text returned by a provider"""
    content: str


class CompletionProvider(ABC):
    """Abstract chat-completion capability with prompt builders"""

    @abstractmethod
    def chat(self, messages: List[Message]) -> CompletionResponse:
        """
        Send a conversation and return the model reply

        Args:
            messages: Ordered system/user messages

        Returns:
            CompletionResponse with the reply text

        Raises:
            CompletionError: If the provider cannot produce a reply
        """
        pass

    def build_deobfuscation_prompt(self, code: str) -> List[Message]:
        return [
            {
                "role": "system",
                "content": "You are an advanced JavaScript deobfuscation expert. "
                           "Explain transformations and produce cleaned code guidance.",
            },
            {
                "role": "user",
                "content": "\n\n".join([
                    "Analyze obfuscation techniques and provide a concise remediation strategy.",
                    "Code:",
                    code,
                ]),
            },
        ]

    def build_crypto_detection_prompt(self, code: str) -> List[Message]:
        return [
            {
                "role": "system",
                "content": "You are a cryptography code auditor. Detect algorithms and return strict JSON only.",
            },
            {
                "role": "user",
                "content": "\n\n".join([
                    "Return JSON with: algorithms[] where each item contains "
                    "name, type, confidence, usage, parameters.",
                    "Code:",
                    code,
                ]),
            },
        ]

    def build_vm_cleanup_prompt(self, code: str, techniques: List[str]) -> List[Message]:
        listed = ", ".join(techniques) if techniques else "none detected"
        return [
            {
                "role": "system",
                "content": "You are a JavaScript reverse engineer specialized in virtual-machine "
                           "protected and flattened code. Reply with one ```javascript code block.",
            },
            {
                "role": "user",
                "content": "\n\n".join([
                    f"Detected techniques: {listed}",
                    "Rewrite the code below into readable, behavior-preserving JavaScript. "
                    "Remove dispatch loops, dead branches and decoding wrappers where their "
                    "effect is statically clear.",
                    "Code:",
                    code,
                ]),
            },
        ]

    def build_code_analysis_prompt(self, code: str, focus: str) -> List[Message]:
        return [
            {
                "role": "system",
                "content": "You are an expert JavaScript reverse engineer. Analyze code and return strict JSON only.",
            },
            {
                "role": "user",
                "content": "\n\n".join([
                    f"Focus: {focus}",
                    "Return JSON with: techStack, businessLogic, securityRisks, summary.",
                    "Code:",
                    code,
                ]),
            },
        ]


def extract_code_block(text: str) -> Optional[str]:
    """
    Extract the first fenced code block from a model reply

    Args:
        text: Raw reply text

    Returns:
        Code inside the first ``` fence, or None if there is no fence
    """
    if not text:
        return None
    match = _FENCED_BLOCK.search(text)
    if not match:
        return None
    code = match.group(2).strip()
    return code or None


def parse_json_reply(text: str) -> Optional[Any]:
    """
    Parse a JSON document out of a model reply

    Accepts bare JSON, a fenced json block, or the outermost {...} span.

    Returns:
        Decoded JSON value, or None when nothing parses
    """
    if not text:
        return None
    candidates = [text.strip()]
    block = extract_code_block(text)
    if block:
        candidates.append(block)
    match = _JSON_OBJECT.search(text)
    if match:
        candidates.append(match.group(0))

    for candidate in candidates:
        try:
            return json.loads(candidate)
        except (ValueError, TypeError):
            continue
    return None
