"""
Report Generation Module
Creates human-readable Markdown reports from analysis results
"""

from datetime import datetime
from typing import List, Optional

from ..core.crypto import CryptoDetectionResult
from ..core.deobfuscator import DeobfuscationResult

MAX_CODE_LINES = 200
SEVERITY_ORDER = {'critical': 0, 'high': 1, 'medium': 2, 'low': 3}


class ReportGenerator:
    """
    Generates Markdown reports from Obscura analysis results

    Sections:
    - Summary (techniques, confidence, readability, crypto strength)
    - Transformation audit trail
    - Warnings and unresolved parts
    - Crypto algorithms, libraries and security issues
    - Recovered code
    """

    def __init__(self, include_code: bool = True):
        """
        Initialize report generator

        Args:
            include_code: Append the deobfuscated code to the report
        """
        self.include_code = include_code

    def generate_markdown(self, result, title: str = "Analysis") -> str:
        """
        Generate a report for a complete ObscuraResult

        Args:
            result: ObscuraResult from ObscuraEngine.analyze_text/analyze_file
            title: Report title

        Returns:
            Markdown formatted report as string
        """
        sections = [self._generate_header(title, result.input_file, result.file_size)]
        sections.append(self._generate_summary(result.deobfuscation, result.crypto))
        if result.deobfuscation is not None:
            sections.extend(self._deobfuscation_sections(result.deobfuscation))
        if result.crypto is not None:
            sections.extend(self._crypto_sections(result.crypto))
        if result.deobfuscation is not None and self.include_code:
            sections.append(self._generate_code_section(result.deobfuscation.code))
        sections.append(self._generate_footer())
        return '\n\n'.join(sections)

    def generate_deobfuscation_markdown(self, result: DeobfuscationResult, title: str = "Deobfuscation") -> str:
        sections = [self._generate_header(title)]
        sections.append(self._generate_summary(result, None))
        sections.extend(self._deobfuscation_sections(result))
        if self.include_code:
            sections.append(self._generate_code_section(result.code))
        sections.append(self._generate_footer())
        return '\n\n'.join(sections)

    def generate_crypto_markdown(self, result: CryptoDetectionResult, title: str = "Crypto Detection") -> str:
        sections = [self._generate_header(title)]
        sections.append(self._generate_summary(None, result))
        sections.extend(self._crypto_sections(result))
        sections.append(self._generate_footer())
        return '\n\n'.join(sections)

    def _generate_header(self, title: str, input_file: str = "", file_size: int = 0) -> str:
        lines = [
            f"# Obscura Analysis Report: {title}",
            "",
            f"**Generated**: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}",
        ]
        if input_file:
            lines.append(f"**Input File**: `{input_file}`")
            lines.append(f"**File Size**: {self._format_bytes(file_size)}")
        return '\n'.join(lines)

    def _generate_summary(self, deobfuscation: Optional[DeobfuscationResult],
                          crypto: Optional[CryptoDetectionResult]) -> str:
        lines = ["## Summary", ""]
        if deobfuscation is not None:
            techniques = ', '.join(f"`{tag}`" for tag in deobfuscation.obfuscation_types) or "none"
            lines.append(f"- **Obfuscation Techniques**: {techniques}")
            lines.append(f"- **Transformations Applied**: {len(deobfuscation.successful_transformations)}"
                         f" of {len(deobfuscation.transformations)}")
            lines.append(f"- **Confidence**: {deobfuscation.confidence:.0%}")
            lines.append(f"- **Readability**: {deobfuscation.readability_score}/100")
        if crypto is not None:
            lines.append(f"- **Crypto Algorithms**: {len(crypto.algorithms)}")
            lines.append(f"- **Security Issues**: {len(crypto.security_issues)}")
            lines.append(f"- **Crypto Strength**: {crypto.strength.overall.upper()} ({crypto.strength.score}/100)")
        return '\n'.join(lines)

    def _deobfuscation_sections(self, result: DeobfuscationResult) -> List[str]:
        sections = []

        lines = ["## Transformations", ""]
        if result.transformations:
            lines.append("| # | Type | Result | Description |")
            lines.append("|---|------|--------|-------------|")
            for index, record in enumerate(result.transformations, 1):
                status = "applied" if record.success else "failed"
                lines.append(f"| {index} | `{record.type}` | {status} | {self._cell(record.description)} |")
        else:
            lines.append("*No transformations were applied.*")
        sections.append('\n'.join(lines))

        if result.warnings:
            sections.append('\n'.join(["## Warnings", ""] + [f"- {warning}" for warning in result.warnings]))

        if result.unresolved_parts:
            lines = ["## Unresolved Parts", ""]
            for part in result.unresolved_parts:
                lines.append(f"- **{part.location}**: {part.reason}")
                if part.suggestion:
                    lines.append(f"  - Suggestion: {part.suggestion}")
            sections.append('\n'.join(lines))

        if result.analysis:
            sections.append(f"## Analysis\n\n{result.analysis}")
        return sections

    def _crypto_sections(self, result: CryptoDetectionResult) -> List[str]:
        sections = []

        lines = ["## Cryptographic Algorithms", ""]
        if result.algorithms:
            lines.append("| Algorithm | Type | Confidence | Line | Parameters |")
            lines.append("|-----------|------|------------|------|------------|")
            for algorithm in result.algorithms:
                params = algorithm.parameters.to_dict() if algorithm.parameters else {}
                rendered = ', '.join(f"{key}={value}" for key, value in params.items()) or "-"
                lines.append(f"| {algorithm.name} | {algorithm.type} | {algorithm.confidence:.0%} | "
                             f"{algorithm.location.line or '-'} | {self._cell(rendered)} |")
        else:
            lines.append("*No cryptographic primitives detected.*")
        sections.append('\n'.join(lines))

        if result.libraries:
            lines = ["## Crypto Libraries", ""]
            for library in result.libraries:
                version = f" {library.version}" if library.version else ""
                lines.append(f"- **{library.name}**{version}")
            sections.append('\n'.join(lines))

        lines = ["## Security Assessment", ""]
        strength = result.strength
        lines.append(f"**Overall**: {strength.overall.upper()} ({strength.score}/100)")
        lines.append("")
        for factor, score in strength.factors.items():
            lines.append(f"- {factor}: {score}/100")
        if result.security_issues:
            lines.append("")
            lines.append("### Issues")
            lines.append("")
            issues = sorted(result.security_issues, key=lambda issue: SEVERITY_ORDER.get(issue.severity, 99))
            for issue in issues:
                lines.append(f"- **[{issue.severity.upper()}]** {issue.issue}")
                if issue.recommendation:
                    lines.append(f"  - Recommendation: {issue.recommendation}")
        sections.append('\n'.join(lines))
        return sections

    def _generate_code_section(self, code: str) -> str:
        lines = code.splitlines()
        shown = '\n'.join(lines[:MAX_CODE_LINES])
        section = f"## Recovered Code\n\n```javascript\n{shown}\n```"
        if len(lines) > MAX_CODE_LINES:
            section += f"\n\n*{len(lines) - MAX_CODE_LINES} more lines omitted.*"
        return section

    def _generate_footer(self) -> str:
        return "---\n\n*Generated by Obscura. Deobfuscated output is best-effort and may not be " \
               "semantically equivalent to the input.*"

    @staticmethod
    def _cell(text: str) -> str:
        return text.replace('|', '\\|').replace('\n', ' ')

    @staticmethod
    def _format_bytes(size: int) -> str:
        """Format byte size to human-readable string"""
        for unit in ['B', 'KB', 'MB', 'GB']:
            if size < 1024.0:
                return f"{size:.1f} {unit}"
            size /= 1024.0
        return f"{size:.1f} TB"
