"""CLI entry point for the consensus auditor.

Audits one local Solidity file with every enabled analyzer, reconciles the
results and prints the consolidated report as text or JSON.
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from config_loader import ANALYZER_NAMES, build_unified_config, list_available_profiles, validate_config
from contract_auditor import ContractAuditor, FileSourceProvider
from schemas import AuditOptions, ConsolidatedReport, Severity

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="consensus-audit",
        description="Consensus Auditor - multi-source smart contract audit with validator reconciliation",
    )
    parser.add_argument("source_file", nargs="?", help="Solidity source file to audit")
    parser.add_argument("--address", default="", help="Deployed contract address (used for reporting and request keys)")
    parser.add_argument("--network", default="mainnet", help="Network the contract is deployed on (default: mainnet)")
    parser.add_argument("--profile", default=None, help="Configuration profile (see --list-profiles)")
    parser.add_argument("--list-profiles", action="store_true", help="List available profiles and exit")
    parser.add_argument(
        "--no-validator",
        dest="use_validator",
        action="store_false",
        default=None,
        help="Skip validator reconciliation; report the best single source",
    )
    parser.add_argument("--validator-source", default=None, help="Analyzer acting as validator (e.g. openai)")
    parser.add_argument("--single-source", action="store_true", help="Run only the first configured analyzer")
    parser.add_argument("--pattern-only", action="store_true", help="Disable every analyzer; pattern scanner only")
    parser.add_argument("--deadline-ms", type=int, default=None, help="Shared analyzer deadline in milliseconds")
    parser.add_argument("--analyzer-timeout", type=float, default=None, help="Per-call analyzer timeout in seconds")
    parser.add_argument("--similarity-threshold", type=float, default=None, help="Finding title similarity (0-1]")
    for name in ANALYZER_NAMES:
        parser.add_argument(
            f"--enable-{name}", dest=f"enable_{name}", action="store_true", default=None, help=f"Enable {name}"
        )
        parser.add_argument(
            f"--disable-{name}", dest=f"enable_{name}", action="store_false", default=None, help=f"Disable {name}"
        )
    parser.add_argument(
        "--output",
        dest="output_format",
        choices=["text", "json"],
        default=None,
        help="Report format (default: text)",
    )
    parser.add_argument("--output-file", default=None, help="Write the report to this file instead of stdout")
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level (default: INFO)",
    )
    return parser


def format_report_text(report: ConsolidatedReport) -> str:
    """Render a report for terminal output"""
    lines = [
        f"Contract: {report.contract_name}",
        f"Type: {report.contract_type or 'Unknown'}",
        f"Security score: {report.security_score}/100 ({report.risk_level.value})",
        f"Tier: {report.tier.value}{' (degraded)' if report.degraded else ''}",
        f"Sources: {', '.join(report.sources_used) or 'none'}",
    ]
    if report.error:
        lines.append(f"Error: {report.error}")
    for source, reason in report.failed_sources.items():
        lines.append(f"Failed: {source} ({reason})")

    if report.overview:
        lines.extend(["", report.overview])
    if report.key_features:
        lines.append("")
        lines.extend(f"  - {feature}" for feature in report.key_features)
    if report.analysis_discussion:
        lines.extend(["", report.analysis_discussion])

    lines.extend(["", f"Findings ({len(report.findings)}):"])
    for index, finding in enumerate(report.findings, start=1):
        lines.append(f"{index}. [{finding.severity.value}] {finding.title} (consensus {finding.consensus_count}: {finding.source_tag})")
        if finding.code_reference:
            lines.append(f"   Location: {finding.code_reference}")
        if finding.description:
            lines.append(f"   {finding.description}")
        lines.append(f"   Impact: {finding.impact}")
        lines.append(f"   Recommendation: {finding.recommendation}")
    return "\n".join(lines)


def has_blocking_findings(report: ConsolidatedReport) -> bool:
    return any(f.severity in (Severity.CRITICAL, Severity.HIGH) for f in report.findings)


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point; returns the process exit code"""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.list_profiles:
        for name in list_available_profiles():
            print(name)
        return 0
    if not args.source_file:
        parser.error("source_file is required")

    config = build_unified_config(cli_args=args)
    logging.basicConfig(
        level=getattr(logging, str(config["log_level"]).upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    issues = validate_config(config)
    for issue in issues:
        logger.warning(issue)
    if any(issue.startswith("ERROR") for issue in issues):
        return 2

    source_path = Path(args.source_file)
    if not source_path.is_file():
        logger.error(f"Source file not found: {source_path}")
        return 2

    options = AuditOptions(
        use_validator=bool(config["use_validator"]),
        deadline_ms=args.deadline_ms,
        multi_source=not args.single_source,
    )
    auditor = ContractAuditor(config=config, source_provider=FileSourceProvider(source_path))
    report = asyncio.run(auditor.audit_contract(args.address, args.network, options))

    if config["output_format"] == "json":
        rendered = json.dumps(report.model_dump(mode="json"), indent=2)
    else:
        rendered = format_report_text(report)

    if args.output_file:
        Path(args.output_file).write_text(rendered + "\n", encoding="utf-8")
        logger.info(f"Report written to {args.output_file}")
    else:
        print(rendered)

    if report.error:
        return 2
    return 1 if has_blocking_findings(report) else 0


if __name__ == "__main__":
    sys.exit(main())
