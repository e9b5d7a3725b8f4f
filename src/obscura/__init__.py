"""
Obscura
Static deobfuscation and crypto usage analysis for adversarially obfuscated JavaScript
"""

__version__ = "1.0.0"
