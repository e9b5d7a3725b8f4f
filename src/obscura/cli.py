"""
Command-Line Interface (CLI) for Obscura
Deobfuscation and crypto analysis of JavaScript from the terminal
"""

import argparse
import json
import sys
from pathlib import Path
from typing import List, Optional

from .core.deobfuscation_presets import PresetLibrary
from .core.deobfuscator import DeobfuscateOptions
from .core.engine import ObscuraEngine
from .core.errors import ObscuraError
from .utils.logging_config import setup_logging
from .utils.report_generator import ReportGenerator

VERSION = "1.0.0"
FORMATS = ('text', 'json', 'markdown')


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='obscura',
        description='Obscura - JavaScript deobfuscation and crypto usage analysis',
        epilog='Static analysis only: input code is never executed.'
    )
    parser.add_argument('--version', action='version', version=f'Obscura v{VERSION}')

    # Shared by every subcommand
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument('input', type=str, help="JavaScript file to analyze ('-' reads stdin)")
    common.add_argument('-o', '--output', type=str, help='Write the result to this file instead of stdout')
    common.add_argument('--format', choices=FORMATS, default='text', help='Output format (default: text)')
    common.add_argument('-v', '--verbose', action='store_true', help='Print progress and debug logging')
    common.add_argument('--debug', action='store_true', help='Print tracebacks on errors')

    subparsers = parser.add_subparsers(dest='command', metavar='COMMAND')
    subparsers.required = True

    deobfuscate = subparsers.add_parser('deobfuscate', parents=[common], help='Recover readable source')
    deobfuscate.add_argument('--preset', choices=PresetLibrary.list_presets(),
                             help='Start from a named option preset')
    deobfuscate.add_argument('--no-auto', dest='auto', action='store_false', default=None,
                             help='Do not select stages from detected techniques')
    deobfuscate.add_argument('--aggressive', action='store_true', default=None,
                             help='Force the JSVMP and advanced stages')
    deobfuscate.add_argument('--aggressive-vm', action='store_true', default=None,
                             help='Strip VM interpreters (lossy)')
    deobfuscate.add_argument('--rename-variables', action='store_true', default=None,
                             help='Rename mangled _0x identifiers')
    deobfuscate.add_argument('--llm', action='store_true', default=None,
                             help='Request LLM analysis (needs a configured provider)')
    deobfuscate.add_argument('--no-beautify', dest='beautify', action='store_false', default=None,
                             help='Skip final formatting')
    for stage in ('ast-optimize', 'unpack', 'jsvmp', 'advanced'):
        dest = stage.replace('-', '_')
        toggle = deobfuscate.add_mutually_exclusive_group()
        toggle.add_argument(f'--{stage}', dest=dest, action='store_true', default=None,
                            help=f'Always run the {stage} stage')
        toggle.add_argument(f'--no-{stage}', dest=dest, action='store_false',
                            help=f'Never run the {stage} stage')
    deobfuscate.add_argument('--crypto', action='store_true',
                             help='Also run crypto detection on the recovered code')

    crypto = subparsers.add_parser('crypto', parents=[common], help='Detect crypto primitives')
    crypto.add_argument('--rules', type=str, help='YAML file with crypto rule overrides')
    crypto.add_argument('--export-rules', action='store_true', help='Print the active rules as YAML and exit')

    subparsers.add_parser('classify', parents=[common], help='List detected obfuscation techniques')
    subparsers.add_parser('unpack', parents=[common], help='Peel packer/eval/AAEncode/URL encoding layers')
    return parser


def options_from_args(args: argparse.Namespace) -> DeobfuscateOptions:
    """Build pipeline options from a preset (if any) plus explicitly given flags"""
    overrides = {}
    for name in ('auto', 'aggressive', 'aggressive_vm', 'rename_variables', 'llm', 'beautify',
                 'ast_optimize', 'unpack', 'jsvmp', 'advanced'):
        value = getattr(args, name)
        if value is not None:
            overrides[name] = value
    if args.preset:
        return DeobfuscateOptions.from_preset(args.preset, **overrides)
    return DeobfuscateOptions(**overrides)


def read_input(source: str) -> str:
    if source == '-':
        return sys.stdin.read()
    return Path(source).read_text(encoding='utf-8', errors='replace')


def emit(text: str, output: Optional[str]) -> None:
    if output:
        Path(output).write_text(text, encoding='utf-8')
        print(f"[+] Output written to {output}", file=sys.stderr)
    else:
        print(text)


def run_deobfuscate(engine: ObscuraEngine, args: argparse.Namespace, code: str) -> str:
    options = options_from_args(args)
    if args.crypto:
        result = engine.analyze_text(code, options=options, input_name=args.input)
        if args.format == 'json':
            return json.dumps(result.to_dict(), indent=2)
        if args.format == 'markdown':
            return ReportGenerator().generate_markdown(result, Path(args.input).name)
        return _deobfuscation_text(result.deobfuscation) + '\n\n' + _crypto_text(result.crypto)

    result = engine.deobfuscate(code, options)
    if args.format == 'json':
        return json.dumps(result.to_dict(), indent=2)
    if args.format == 'markdown':
        return ReportGenerator().generate_deobfuscation_markdown(result, Path(args.input).name)
    return _deobfuscation_text(result)


def run_crypto(engine: ObscuraEngine, args: argparse.Namespace, code: str) -> str:
    result = engine.detect_crypto(code)
    if args.format == 'json':
        return json.dumps(result.to_dict(), indent=2)
    if args.format == 'markdown':
        return ReportGenerator().generate_crypto_markdown(result, Path(args.input).name)
    return _crypto_text(result)


def run_classify(engine: ObscuraEngine, args: argparse.Namespace, code: str) -> str:
    tags = engine.classify(code)
    if args.format == 'json':
        return json.dumps({'obfuscationType': tags}, indent=2)
    if args.format == 'markdown':
        return "## Obfuscation Techniques\n\n" + '\n'.join(f"- `{tag}`" for tag in tags)
    return '\n'.join(tags)


def run_unpack(engine: ObscuraEngine, args: argparse.Namespace, code: str) -> str:
    result = engine.unpack(code)
    if args.format == 'json':
        return json.dumps({
            'success': result.success,
            'type': result.type,
            'layers': result.layers,
            'code': result.code,
        }, indent=2)
    if not result.success:
        print(f"[!] No unpackable layer found (detected: {result.type})", file=sys.stderr)
    else:
        print(f"[+] Unpacked {len(result.layers)} layers: {' -> '.join(result.layers)}", file=sys.stderr)
    if args.format == 'markdown':
        return f"## Unpacked ({result.type})\n\n```javascript\n{result.code}\n```"
    return result.code


def _deobfuscation_text(result) -> str:
    lines = [
        f"// Obfuscation: {', '.join(result.obfuscation_types)}",
        f"// Confidence: {result.confidence:.0%}  Readability: {result.readability_score}/100",
    ]
    for record in result.transformations:
        marker = '+' if record.success else '!'
        lines.append(f"// [{marker}] {record.type}: {record.description}")
    for warning in result.warnings:
        lines.append(f"// [!] {warning}")
    for part in result.unresolved_parts:
        lines.append(f"// [?] {part.location}: {part.reason}")
    lines.append("")
    lines.append(result.code)
    return '\n'.join(lines)


def _crypto_text(result) -> str:
    lines = [f"Crypto strength: {result.strength.overall} ({result.strength.score}/100)"]
    for algorithm in result.algorithms:
        params = algorithm.parameters.to_dict() if algorithm.parameters else {}
        rendered = f" {params}" if params else ""
        lines.append(f"  [{algorithm.type}] {algorithm.name} ({algorithm.confidence:.0%}){rendered}")
    for library in result.libraries:
        lines.append(f"  [library] {library.name}{' ' + library.version if library.version else ''}")
    for issue in result.security_issues:
        lines.append(f"  [{issue.severity}] {issue.issue}")
    return '\n'.join(lines)


COMMANDS = {
    'deobfuscate': run_deobfuscate,
    'crypto': run_crypto,
    'classify': run_classify,
    'unpack': run_unpack,
}


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main CLI entry point

    Returns:
        Process exit code
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.verbose)

    try:
        engine = ObscuraEngine(verbose=args.verbose, rules_file=getattr(args, 'rules', None))
        if getattr(args, 'export_rules', False):
            emit(engine.crypto_detector.export_rules(), args.output)
            return 0

        code = read_input(args.input)
        emit(COMMANDS[args.command](engine, args, code), args.output)
        return 0

    except KeyboardInterrupt:
        print("\n[!] Analysis interrupted by user", file=sys.stderr)
        return 130

    except (OSError, ObscuraError, ValueError, TypeError) as e:
        print(f"[!] Error: {e}", file=sys.stderr)
        if args.debug:
            import traceback
            traceback.print_exc()
        return 1


if __name__ == '__main__':
    sys.exit(main())
