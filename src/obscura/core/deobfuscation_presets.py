"""
Deobfuscation Presets
Predefined option sets for different JavaScript analysis scenarios

Instead of toggling every stage by hand, pick a preset that matches how
much rewriting you are willing to accept.
"""

from dataclasses import dataclass
from typing import List, Optional


@dataclass
class DeobfuscationPreset:
    """Complete pipeline option preset"""
    name: str
    description: str

    # Stage selection
    auto: bool = True
    aggressive: bool = False
    ast_optimize: Optional[bool] = None
    unpack: Optional[bool] = None
    jsvmp: Optional[bool] = None
    advanced: Optional[bool] = None

    # Rewrites that trade fidelity for readability
    rename_variables: bool = False
    aggressive_vm: bool = False
    beautify: bool = True


class PresetLibrary:
    """Library of predefined deobfuscation presets"""

    @staticmethod
    def get_preset(name: str) -> Optional[DeobfuscationPreset]:
        """Get preset by name"""
        presets = {
            "conservative": PresetLibrary.conservative(),
            "balanced": PresetLibrary.balanced(),
            "aggressive": PresetLibrary.aggressive(),
            "readable": PresetLibrary.readable(),
        }
        return presets.get(name.lower())

    @staticmethod
    def list_presets() -> List[str]:
        """List all available preset names"""
        return ["conservative", "balanced", "aggressive", "readable"]

    @staticmethod
    def conservative() -> DeobfuscationPreset:
        """
        Conservative preset: Only rewrites that are always safe

        Use when:
        - Output must stay as close to the input as possible
        - Diffing deobfuscated code against the original
        - VM or flattening countermeasures are not wanted
        """
        return DeobfuscationPreset(
            name="conservative",
            description="Baseline passes only, no VM or advanced countermeasures",
            auto=False,
            ast_optimize=False,
            unpack=True,                 # Unpacking never changes program logic
            jsvmp=False,
            advanced=False,
        )

    @staticmethod
    def balanced() -> DeobfuscationPreset:
        """
        Balanced preset: Technique-driven stage selection

        Use when:
        - General analysis of unknown scripts
        - Only countering what the classifier actually detects
        """
        return DeobfuscationPreset(
            name="balanced",
            description="Stages run when the classifier detects their techniques",
        )

    @staticmethod
    def aggressive() -> DeobfuscationPreset:
        """
        Aggressive preset: Run every countermeasure

        Use when:
        - The classifier misses a heavily customized obfuscator
        - Losing a VM interpreter in the output is acceptable
        """
        return DeobfuscationPreset(
            name="aggressive",
            description="Every stage runs, VM interpreters are stripped",
            aggressive=True,
            ast_optimize=True,
            aggressive_vm=True,          # Replaces the interpreter with a marker comment
        )

    @staticmethod
    def readable() -> DeobfuscationPreset:
        """
        Readable preset: Optimize for a human reader

        Use when:
        - Reviewing obfuscator.io output by hand
        - Mangled _0x names make the code hard to follow
        """
        return DeobfuscationPreset(
            name="readable",
            description="Technique-driven stages plus optimizer and variable renaming",
            ast_optimize=True,
            rename_variables=True,
        )
