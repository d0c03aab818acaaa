#!/usr/bin/env python3
"""
Pattern Scanner Module

Deterministic, regex-based pre-scan of Solidity source. Runs before (and
independently of) every AI analyzer, so the pipeline always has at least
one result to fall back on.

Each rule in ``PATTERN_RULES`` contributes at most one finding. Structural
observations (ownership, access control, OpenZeppelin usage) are reported as
key features rather than findings so they do not move the score.
"""

import logging
import re
import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from schemas import PATTERN_SCANNER_SOURCE, AnalysisResult, Finding, Severity

__all__ = ["PatternRule", "PatternScanner", "PATTERN_RULES", "detect_contract_type", "strip_comments"]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PatternRule:
    """One static check.

    ``pattern`` is matched line by line. ``unless_line`` suppresses a match on
    the same line. ``applies`` is a whole-source precondition.
    """

    rule_id: str
    title: str
    pattern: str
    severity: Severity
    description: str
    recommendation: str
    impact: str = ""
    unless_line: Optional[str] = None
    applies: Optional[Callable[[str], bool]] = None


_PRAGMA_RE = re.compile(r"pragma\s+solidity\s*[\^>=<~\s]*(\d+)\.(\d+)")


def _pre_checked_arithmetic(source_code: str) -> bool:
    """True when the compiler does not check arithmetic and SafeMath is absent."""
    if re.search(r"\bSafeMath\b", source_code):
        return False
    match = _PRAGMA_RE.search(source_code)
    if not match:
        return False
    major, minor = int(match.group(1)), int(match.group(2))
    return (major, minor) < (0, 8)


PATTERN_RULES: Tuple[PatternRule, ...] = (
    PatternRule(
        rule_id="reentrancy",
        title="Potential Reentrancy",
        pattern=r"\.call\s*\{\s*value\s*:|\.call\.value\s*\(",
        severity=Severity.HIGH,
        description=(
            "Potential reentrancy vulnerability detected. The contract sends value "
            "through a low-level call, which hands control to the recipient before "
            "the function finishes."
        ),
        impact="An attacker contract can re-enter and drain funds before balances are updated.",
        recommendation="Apply checks-effects-interactions and a reentrancy guard around value transfers.",
    ),
    PatternRule(
        rule_id="tx-origin",
        title="Use of tx.origin",
        pattern=r"\btx\.origin\b",
        severity=Severity.MEDIUM,
        description=(
            "Usage of tx.origin for authorization. This is unsafe as it can lead to "
            "phishing attacks."
        ),
        impact="A malicious contract called by the owner can pass tx.origin checks.",
        recommendation="Use msg.sender for authorization checks.",
    ),
    PatternRule(
        rule_id="unchecked-call",
        title="Unchecked Low-Level Call",
        pattern=r"\.(call|send)\s*(\{[^}]*\})?\s*\(",
        unless_line=r"\b(require|assert|if)\s*\(|\bbool\b|\breturn\b|=",
        severity=Severity.MEDIUM,
        description=(
            "Unchecked return value from low-level call. Always check return values "
            "from external calls."
        ),
        impact="Failed transfers are silently ignored and state diverges from balances.",
        recommendation="Check the boolean result of call/send or use a safe transfer helper.",
    ),
    PatternRule(
        rule_id="unchecked-arithmetic",
        title="Unchecked Arithmetic",
        pattern=r"\b\w+\s*(\+|-|\*|/)=",
        applies=_pre_checked_arithmetic,
        severity=Severity.MEDIUM,
        description=(
            "Possible integer overflow/underflow. Consider using SafeMath or "
            "Solidity 0.8+ for checked arithmetic."
        ),
        impact="Balances or counters can wrap around.",
        recommendation="Upgrade to Solidity 0.8+ or use SafeMath for arithmetic.",
    ),
    PatternRule(
        rule_id="delegatecall",
        title="Delegatecall Usage",
        pattern=r"\.delegatecall\s*\(",
        severity=Severity.HIGH,
        description=(
            "Usage of delegatecall. This is a powerful feature that can be dangerous "
            "if misused."
        ),
        impact="The callee runs with this contract's storage and balance.",
        recommendation="Only delegatecall into trusted, immutable implementation addresses.",
    ),
    PatternRule(
        rule_id="selfdestruct",
        title="Self-Destruct Capability",
        pattern=r"\b(selfdestruct|suicide)\s*\(",
        severity=Severity.MEDIUM,
        description=(
            "Contract can self-destruct. Ensure proper access controls around this "
            "functionality."
        ),
        impact="The contract and its balance can be removed permanently.",
        recommendation="Restrict self-destruct to a trusted role or remove it.",
    ),
    PatternRule(
        rule_id="timestamp-dependence",
        title="Timestamp Dependence",
        pattern=r"\bblock\.timestamp\b|\bnow\b",
        severity=Severity.LOW,
        description="Timestamp dependence detected. Miners can manipulate timestamps slightly.",
        impact="Time-based conditions can be nudged by block producers.",
        recommendation="Avoid using block timestamps for randomness or tight deadlines.",
    ),
    PatternRule(
        rule_id="inline-assembly",
        title="Inline Assembly",
        pattern=r"\bassembly\s*\{",
        severity=Severity.INFO,
        description=(
            "Assembly code used. This requires careful auditing as it bypasses "
            "Solidity safety features."
        ),
        recommendation="Review assembly blocks manually.",
    ),
)


_COMMENT_RE = re.compile(r"//[^\n]*|/\*.*?\*/", re.DOTALL)


def strip_comments(source_code: str) -> str:
    """Blank out comments, keeping line numbers intact."""
    return _COMMENT_RE.sub(lambda m: "\n" * m.group(0).count("\n"), source_code)


def detect_contract_type(source_code: str) -> str:
    """Guess the contract category from interfaces and keywords"""
    if (
        "IERC20" in source_code
        or "ERC20" in source_code
        or re.search(r"function\s+transfer\s*\(\s*address\s+.*,\s*uint", source_code)
    ):
        return "ERC20 Token"
    if "IERC721" in source_code or "ERC721" in source_code or re.search(r"function\s+ownerOf\s*\(\s*uint", source_code):
        return "ERC721 NFT"
    if "IERC1155" in source_code or "ERC1155" in source_code:
        return "ERC1155 Multi-Token"
    if "swap" in source_code and ("pair" in source_code or "router" in source_code):
        return "DEX / AMM"
    if "borrow" in source_code and "collateral" in source_code:
        return "Lending Protocol"
    if "stake" in source_code or "reward" in source_code:
        return "Staking / Yield"
    if "governance" in source_code or "proposal" in source_code or "vote" in source_code:
        return "Governance"
    if "proxy" in source_code or "implementation" in source_code or "delegatecall" in source_code:
        return "Proxy / Upgradeable"
    return "Custom Contract"


class PatternScanner:
    """Run the fixed rule table over contract source.

    Never raises: the scanner is the last-resort result for every audit.
    """

    source = PATTERN_SCANNER_SOURCE

    def __init__(self, rules: Tuple[PatternRule, ...] = PATTERN_RULES, max_line_refs: int = 5):
        self.rules = rules
        self.max_line_refs = max_line_refs
        self._compiled = [
            (rule, re.compile(rule.pattern), re.compile(rule.unless_line) if rule.unless_line else None)
            for rule in rules
        ]

    def _match_lines(self, lines: List[str], pattern, unless) -> List[int]:
        hits = []
        for number, line in enumerate(lines, start=1):
            if pattern.search(line) and not (unless and unless.search(line)):
                hits.append(number)
        return hits

    def _key_features(self, source_code: str) -> List[str]:
        has_owner = "owner" in source_code or "Ownable" in source_code
        features = [f"Contract {'has' if has_owner else 'does not have'} owner functionality"]
        if "AccessControl" in source_code or "onlyOwner" in source_code or "onlyRole" in source_code:
            features.append("Contract implements access control mechanisms")
        if "@openzeppelin" in source_code:
            features.append("Contract uses OpenZeppelin libraries")
        return features

    def scan(self, source_code: str) -> AnalysisResult:
        """Run every rule over ``source_code``

        Args:
            source_code: Solidity source text

        Returns:
            AnalysisResult tagged ``pattern-scanner`` with no self-reported score
        """
        start = time.monotonic()
        source_code = source_code or ""
        code = strip_comments(source_code)
        lines = code.splitlines()

        findings = []
        for rule, pattern, unless in self._compiled:
            try:
                if rule.applies is not None and not rule.applies(code):
                    continue
                hits = self._match_lines(lines, pattern, unless)
            except (re.error, RecursionError) as e:
                logger.warning(f"Pattern rule {rule.rule_id} failed: {e}")
                continue
            if not hits:
                continue

            shown = ", ".join(str(n) for n in hits[: self.max_line_refs])
            if len(hits) > self.max_line_refs:
                shown += f" (+{len(hits) - self.max_line_refs} more)"
            findings.append(
                Finding(
                    title=rule.title,
                    description=rule.description,
                    severity=rule.severity,
                    code_reference=f"line {shown}" if len(hits) == 1 else f"lines {shown}",
                    impact=rule.impact,
                    recommendation=rule.recommendation,
                    source_tag=self.source,
                )
            )

        contract_type = detect_contract_type(code)
        logger.debug(f"Pattern scan: {len(findings)} findings, type={contract_type}")

        return AnalysisResult(
            source=self.source,
            overview=f"Static pattern analysis of a {contract_type} ({len(lines)} lines).",
            contract_type=contract_type,
            key_features=tuple(self._key_features(code)),
            findings=tuple(findings),
            explanation="Regex-based checks for common Solidity vulnerability patterns.",
            duration_seconds=time.monotonic() - start,
        )
