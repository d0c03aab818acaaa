"""
Static analysis tool adapters (Slither, Mythril).

Each tool runs as a subprocess over a temporary copy of the source. Its JSON
report is transformed into the same JSON shape the LLM analyzers are asked
for, so every backend goes through the same extractor.
"""

import asyncio
import json
import logging
import shutil
import tempfile
from abc import abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional

from exceptions import AnalyzerError, ToolNotInstalledError
from schemas import ContractMetadata, Severity

from .base import Analyzer, Candidates

logger = logging.getLogger(__name__)

# Tool issues weigh more than model findings when a tool scores itself
TOOL_ISSUE_WEIGHTS = {"CRITICAL": 25, "HIGH": 15, "MEDIUM": 5, "LOW": 1, "INFO": 0}

SLITHER_SEVERITY = {
    "High": Severity.CRITICAL,
    "Medium": Severity.HIGH,
    "Low": Severity.MEDIUM,
    "Informational": Severity.LOW,
}

MYTHRIL_SEVERITY = {
    "High": Severity.CRITICAL,
    "Medium": Severity.HIGH,
    "Low": Severity.MEDIUM,
    "Informational": Severity.INFO,
}


def tool_score(risks: List[Dict[str, Any]]) -> int:
    total = sum(TOOL_ISSUE_WEIGHTS.get(risk["severity"], 0) for risk in risks)
    return max(0, min(100, 100 - total))


def tool_risk_level(score: int) -> str:
    if score < 40:
        return "High Risk"
    if score < 70:
        return "Medium Risk"
    if score < 90:
        return "Low Risk"
    return "Safe"


def transform_slither_output(report: Dict[str, Any]) -> Dict[str, Any]:
    """Map a ``slither --json -`` report onto the analysis JSON shape"""
    detectors = report.get("detectors")
    if detectors is None:
        detectors = (report.get("results") or {}).get("detectors", [])

    risks = []
    for detector in detectors or []:
        severity = SLITHER_SEVERITY.get(detector.get("impact"), Severity.INFO).value
        # slither >= 0.8 reports one entry per result; older versions nest "results"
        results = detector.get("results") or [detector]
        for result in results:
            elements = result.get("elements") or []
            risks.append(
                {
                    "severity": severity,
                    "title": detector.get("check", "slither-detector"),
                    "description": result.get("description", ""),
                    "codeReference": ", ".join(el.get("name", "") for el in elements if el.get("name"))
                    or "Unknown",
                    "impact": detector.get("impact_description") or "Not specified",
                    "recommendation": result.get("recommendation")
                    or detector.get("confidence_description")
                    or "Review the identified issue",
                }
            )

    contracts = report.get("contracts") or []
    contract_name = contracts[0].get("name", "Unknown") if contracts else "Unknown"
    score = tool_score(risks)
    return {
        "overview": f"Slither static analysis of {contract_name} contract",
        "contractType": "Solidity Contract" if contracts else "Unknown",
        "findings": risks,
        "securityScore": score,
        "riskLevel": tool_risk_level(score),
        "explanation": f"Slither identified {len(risks)} issues with this contract.",
    }


def transform_mythril_output(report: Dict[str, Any]) -> Dict[str, Any]:
    """Map a ``myth analyze --json`` report onto the analysis JSON shape"""
    risks = []
    issues = report.get("issues")
    if isinstance(issues, list):
        for issue in issues:
            severity = MYTHRIL_SEVERITY.get(issue.get("severity"), Severity.INFO).value
            risks.append(
                {
                    "severity": severity,
                    "title": issue.get("title") or issue.get("swc_title") or "Unknown issue",
                    "description": issue.get("description", ""),
                    "codeReference": f"{issue.get('filename')}:{issue.get('lineno')}",
                    "impact": issue.get("extra_info") or "Not specified",
                    "recommendation": issue.get("description_head") or "Fix the identified issue",
                }
            )

    score = tool_score(risks)
    return {
        "overview": "Mythril symbolic execution analysis",
        "contractType": "Solidity Contract",
        "findings": risks,
        "securityScore": score,
        "riskLevel": tool_risk_level(score),
        "explanation": f"Mythril identified {len(risks)} potential issues through symbolic execution analysis.",
    }


class ToolAnalyzer(Analyzer):
    """Run a CLI tool over a temporary ``Contract.sol`` and parse its JSON"""

    binary = ""

    def __init__(self, source: str, binary: Optional[str] = None, **kwargs):
        super().__init__(source, **kwargs)
        if binary:
            self.binary = binary

    @abstractmethod
    def build_command(self, contract_path: Path) -> List[str]:
        ...

    @abstractmethod
    def transform(self, report: Dict[str, Any]) -> Dict[str, Any]:
        ...

    async def request(
        self,
        source_code: str,
        metadata: ContractMetadata,
        prior_findings: Optional[Candidates] = None,
    ) -> str:
        executable = shutil.which(self.binary)
        if executable is None:
            raise ToolNotInstalledError(f"{self.binary} is not installed", source=self.source)

        with tempfile.TemporaryDirectory(prefix=f"{self.source}-") as tmp:
            contract_path = Path(tmp) / "Contract.sol"
            contract_path.write_text(source_code, encoding="utf-8")
            command = self.build_command(contract_path)
            command[0] = executable
            logger.debug(f"Running {self.source}: {' '.join(command)}")

            process = await asyncio.create_subprocess_exec(
                *command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
            try:
                stdout, stderr = await process.communicate()
            except asyncio.CancelledError:
                process.kill()
                await process.wait()
                raise

        # Both tools exit non-zero when they find issues; trust the JSON
        try:
            report = json.loads(stdout.decode("utf-8", errors="replace"))
        except json.JSONDecodeError:
            message = stderr.decode("utf-8", errors="replace").strip()[:300]
            raise AnalyzerError(
                f"{self.binary} exited with {process.returncode}: {message or 'no JSON output'}",
                source=self.source,
                kind="parse" if process.returncode == 0 else "permanent",
            )

        if report.get("success") is False and report.get("error"):
            raise AnalyzerError(f"{self.binary} failed: {report['error']}", source=self.source, kind="permanent")

        return json.dumps(self.transform(report))


class SlitherAnalyzer(ToolAnalyzer):
    binary = "slither"

    def __init__(self, source: str = "slither", **kwargs):
        super().__init__(source, **kwargs)

    def build_command(self, contract_path: Path) -> List[str]:
        return [self.binary, str(contract_path), "--json", "-"]

    def transform(self, report: Dict[str, Any]) -> Dict[str, Any]:
        return transform_slither_output(report)


class MythrilAnalyzer(ToolAnalyzer):
    binary = "myth"

    def __init__(self, source: str = "mythril", execution_timeout: int = 60, **kwargs):
        super().__init__(source, **kwargs)
        self.execution_timeout = execution_timeout

    def build_command(self, contract_path: Path) -> List[str]:
        return [
            self.binary,
            "analyze",
            str(contract_path),
            "--execution-timeout",
            str(self.execution_timeout),
            "-o",
            "json",
        ]

    def transform(self, report: Dict[str, Any]) -> Dict[str, Any]:
        return transform_mythril_output(report)
