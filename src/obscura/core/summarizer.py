"""
AI Code Summarizer
Per-file and project-level summaries of collected JavaScript

Uses the optional CompletionProvider; when it is absent, fails, or replies
with something other than the expected JSON, a regex-based basic analysis
is returned instead.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .completion import CompletionProvider, Message, parse_json_reply

logger = logging.getLogger(__name__)

MAX_PROMPT_CHARS = 8000
MAX_KEY_FUNCTIONS = 10
PROJECT_SAMPLE_FILES = 20
ANALYSIS_FAILED = "Analysis failed"

FUNCTION_PATTERNS = [
    re.compile(r'function\s+([A-Za-z_$][\w$]*)\s*\('),
    re.compile(r'(?:const|let|var)\s+([A-Za-z_$][\w$]*)\s*=\s*(?:async\s*)?(?:function\b|\([^)]*\)\s*=>|[A-Za-z_$][\w$]*\s*=>)'),
]
DEPENDENCY_PATTERNS = [
    re.compile(r'require\(\s*["\']([^"\']+)["\']\s*\)'),
    re.compile(r'import\s+(?:[^"\']+\s+from\s+)?["\']([^"\']+)["\']'),
]
ENCRYPTION_PATTERN = re.compile(r'crypto|encrypt|decrypt|\bmd5\b|\bsha\d*\b|\baes\b|\brsa\b', re.IGNORECASE)
API_PATTERN = re.compile(r'\bfetch\s*\(|XMLHttpRequest|\baxios\b|\$\.ajax|WebSocket')
OBFUSCATION_PATTERN = re.compile(r'_0x[0-9a-fA-F]{3,}|\\x[0-9a-fA-F]{2}|\beval\s*\(')

# Format: (pattern, risk description)
RISK_PATTERNS = [
    (re.compile(r'\beval\s*\('), "Dynamic code execution via eval()"),
    (re.compile(r'\.innerHTML\s*='), "Direct innerHTML assignment (XSS risk)"),
    (re.compile(r'document\.write\s*\('), "document.write() usage"),
    (re.compile(r'(?:password|passwd|pwd|secret|token|api_?key)\s*[:=]\s*["\'][^"\']{4,}["\']', re.IGNORECASE),
     "Hard-coded credential or secret"),
]


@dataclass
class CodeFile:
    """A collected script"""
    url: str
    content: str
    type: str = "external"
    size: int = 0

    def __post_init__(self):
        if not self.size:
            self.size = len(self.content)


@dataclass
class FileSummary:
    """Summary of one script"""
    url: str
    summary: str
    purpose: str = ""
    key_functions: List[str] = field(default_factory=list)
    dependencies: List[str] = field(default_factory=list)
    has_encryption: bool = False
    has_api: bool = False
    has_obfuscation: bool = False
    security_risks: List[str] = field(default_factory=list)
    complexity: str = "low"

    def to_dict(self) -> Dict:
        return {
            'url': self.url,
            'summary': self.summary,
            'purpose': self.purpose,
            'keyFunctions': self.key_functions,
            'dependencies': self.dependencies,
            'hasEncryption': self.has_encryption,
            'hasAPI': self.has_api,
            'hasObfuscation': self.has_obfuscation,
            'securityRisks': self.security_risks,
            'complexity': self.complexity,
        }


@dataclass
class ProjectSummary:
    """Summary across all scripts of a project"""
    total_files: int
    total_size: int
    main_purpose: str
    architecture: str = "Unknown"
    technologies: List[str] = field(default_factory=list)
    security_concerns: List[str] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)
    file_summaries: List[FileSummary] = field(default_factory=list)

    def to_dict(self) -> Dict:
        return {
            'totalFiles': self.total_files,
            'totalSize': self.total_size,
            'mainPurpose': self.main_purpose,
            'architecture': self.architecture,
            'technologies': self.technologies,
            'securityConcerns': self.security_concerns,
            'recommendations': self.recommendations,
            'fileSummaries': [summary.to_dict() for summary in self.file_summaries],
        }


def _string_list(value) -> List[str]:
    if not isinstance(value, list):
        return []
    return [str(item) for item in value]


class AISummarizer:
    """Summarizes scripts with the completion provider, falling back to regex heuristics"""

    def __init__(self, provider: Optional[CompletionProvider] = None):
        self.provider = provider

    def summarize_file(self, file: CodeFile) -> FileSummary:
        """
        Summarize one script

        Args:
            file: CodeFile to summarize

        Returns:
            FileSummary from the provider, or a basic analysis
        """
        if self.provider is None:
            return self.basic_analysis(file)
        try:
            reply = self.provider.chat(self._file_prompt(file))
        except Exception as exc:
            logger.warning("AI summary of %s failed: %s", file.url, exc)
            return self.basic_analysis(file)

        document = parse_json_reply(reply.content)
        if not isinstance(document, dict) or not isinstance(document.get('summary'), str):
            logger.debug("AI summary of %s was not usable JSON", file.url)
            return self.basic_analysis(file)

        complexity = document.get('complexity')
        return FileSummary(
            url=file.url,
            summary=document['summary'],
            purpose=str(document.get('purpose', '')),
            key_functions=_string_list(document.get('keyFunctions')),
            dependencies=_string_list(document.get('dependencies')),
            has_encryption=bool(document.get('hasEncryption', False)),
            has_api=bool(document.get('hasAPI', False)),
            has_obfuscation=bool(document.get('hasObfuscation', False)),
            security_risks=_string_list(document.get('securityRisks')),
            complexity=complexity if complexity in ('low', 'medium', 'high') else self._complexity(file.content),
        )

    def summarize_batch(self, files: List[CodeFile]) -> List[FileSummary]:
        """Summarize files one after another, preserving order"""
        return [self.summarize_file(file) for file in files]

    def summarize_project(self, files: List[CodeFile]) -> ProjectSummary:
        """
        Summarize a whole project

        The project verdict comes from the provider; an absent provider, a
        failed call or an invalid reply yields main purpose "Analysis failed".
        """
        summaries = self.summarize_batch(files)
        project = ProjectSummary(
            total_files=len(files),
            total_size=sum(file.size for file in files),
            main_purpose=ANALYSIS_FAILED,
            file_summaries=summaries,
        )
        if self.provider is None:
            return project

        try:
            reply = self.provider.chat(self._project_prompt(summaries))
        except Exception as exc:
            logger.warning("AI project summary failed: %s", exc)
            return project

        document = parse_json_reply(reply.content)
        if not isinstance(document, dict):
            logger.debug("AI project summary was not usable JSON")
            return project

        project.main_purpose = str(document.get('mainPurpose') or ANALYSIS_FAILED)
        project.architecture = str(document.get('architecture') or 'Unknown')
        project.technologies = _string_list(document.get('technologies'))
        project.security_concerns = _string_list(document.get('securityConcerns'))
        project.recommendations = _string_list(document.get('recommendations'))
        return project

    def basic_analysis(self, file: CodeFile) -> FileSummary:
        """Regex-only summary used when AI analysis is unavailable"""
        content = file.content
        functions = []
        for pattern in FUNCTION_PATTERNS:
            for name in pattern.findall(content):
                if name not in functions:
                    functions.append(name)

        dependencies = []
        for pattern in DEPENDENCY_PATTERNS:
            for name in pattern.findall(content):
                if name not in dependencies:
                    dependencies.append(name)

        risks = [description for pattern, description in RISK_PATTERNS if pattern.search(content)]
        lines = content.count('\n') + 1
        return FileSummary(
            url=file.url,
            summary=f"Basic analysis: {lines} lines, {len(functions)} functions, {len(dependencies)} dependencies",
            purpose="Unknown (AI analysis unavailable)",
            key_functions=functions[:MAX_KEY_FUNCTIONS],
            dependencies=dependencies,
            has_encryption=bool(ENCRYPTION_PATTERN.search(content)),
            has_api=bool(API_PATTERN.search(content)),
            has_obfuscation=bool(OBFUSCATION_PATTERN.search(content)),
            security_risks=risks,
            complexity=self._complexity(content),
        )

    @staticmethod
    def _complexity(content: str) -> str:
        lines = content.count('\n') + 1
        if lines < 100:
            return "low"
        if lines < 500:
            return "medium"
        return "high"

    @staticmethod
    def _file_prompt(file: CodeFile) -> List[Message]:
        return [
            {
                "role": "system",
                "content": "You are a JavaScript code analyst. Return strict JSON only.",
            },
            {
                "role": "user",
                "content": "\n\n".join([
                    "Return JSON with: summary, purpose, keyFunctions[], dependencies[], hasEncryption, "
                    "hasAPI, hasObfuscation, securityRisks[], complexity (low|medium|high).",
                    f"File: {file.url}",
                    "Code:",
                    file.content[:MAX_PROMPT_CHARS],
                ]),
            },
        ]

    @staticmethod
    def _project_prompt(summaries: List[FileSummary]) -> List[Message]:
        listing = "\n".join(
            f"- {summary.url}: {summary.summary}" for summary in summaries[:PROJECT_SAMPLE_FILES]
        )
        return [
            {
                "role": "system",
                "content": "You are a web application architect. Return strict JSON only.",
            },
            {
                "role": "user",
                "content": "\n\n".join([
                    "Return JSON with: mainPurpose, architecture, technologies[], securityConcerns[], "
                    "recommendations[].",
                    "File summaries:",
                    listing,
                ]),
            },
        ]
