"""
Prompt templates for analyzer and validator calls.

Prompt construction is deterministic: the same source, metadata and
candidate findings always produce the same text.
"""

import json
from typing import Sequence, Tuple

from schemas import ContractMetadata, Finding

TRUNCATION_MARKER = "\n\n... [Code truncated due to size limits] ...\n\n"

ANALYSIS_SYSTEM_PROMPT = """You are an expert smart contract auditor with deep knowledge of Solidity and blockchain security.
Your task is to analyze smart contracts and identify potential security risks, vulnerabilities,
or suspicious patterns that might indicate malicious intent.

Focus on detecting:
- Owner privileges that could be abused (unlimited minting, freezing funds)
- Hidden backdoors or rug pull mechanisms
- Code that prevents users from selling tokens
- Unusual or excessive fees
- Functions that can drain user funds
- Common vulnerabilities (reentrancy, front-running, access control, integer overflow)

Respond with a single JSON object with this structure:
{
  "overview": "Brief explanation of what the contract does",
  "contractType": "Main type of contract (ERC20, ERC721, etc.)",
  "keyFeatures": ["List of main features"],
  "findings": [
    {
      "severity": "CRITICAL|HIGH|MEDIUM|LOW|INFO",
      "title": "Short title for the issue",
      "description": "Description of the risk",
      "codeReference": "The relevant code snippet or function name",
      "impact": "What could happen if exploited",
      "recommendation": "How to fix this issue"
    }
  ],
  "securityScore": 1-100 (higher is safer),
  "riskLevel": "Safe|Low Risk|Medium Risk|High Risk",
  "explanation": "Explanation of the overall assessment"
}"""

VALIDATION_SYSTEM_PROMPT = """You are a panel of expert smart contract auditors reviewing findings that several
independent analyses reported for the same contract. Review the code yourself and decide, for each
numbered finding, whether you:
- CONFIRM it (the finding is valid as stated)
- DISPUTE it (the finding is a false positive)
- MODIFY it (the finding is valid but its severity or details need correcting)

Also report any significant vulnerability that every analysis missed.

Respond with a single JSON object with this structure:
{
  "overview": "Brief explanation of what the contract does",
  "contractType": "Main type of contract",
  "keyFeatures": ["List of main features"],
  "analysisDiscussion": "How the sources agreed or disagreed about key issues",
  "validatedFindings": [
    {
      "findingId": "F1",
      "validationResult": "CONFIRM|DISPUTE|MODIFY",
      "reasoning": "Your reasoning",
      "modifiedFinding": {"severity": "...", "title": "...", "description": "...",
                          "codeReference": "...", "impact": "...", "recommendation": "..."}
    }
  ],
  "missedFindings": [
    {"severity": "...", "title": "...", "description": "...", "codeReference": "...",
     "impact": "...", "recommendation": "..."}
  ],
  "securityScore": 1-100 (higher is safer)
}
Only include modifiedFinding for MODIFY decisions."""


def truncate_source(source_code: str, max_size: int) -> Tuple[str, bool]:
    """Keep the first and last ``max_size // 2`` characters around a marker.

    Returns:
        (text, truncated)
    """
    if max_size <= 0 or len(source_code) <= max_size:
        return source_code, False
    half = max_size // 2
    return source_code[:half] + TRUNCATION_MARKER + source_code[len(source_code) - half :], True


def _metadata_block(metadata: ContractMetadata) -> str:
    lines = [f"Contract name: {metadata.name}"]
    if metadata.address:
        lines.append(f"Address: {metadata.address}")
    if metadata.network:
        lines.append(f"Network: {metadata.network}")
    lines.append(f"Compiler version: {metadata.compiler_version}")
    if metadata.contract_type:
        lines.append(f"Detected type: {metadata.contract_type}")
    return "\n".join(lines)


def build_analysis_prompt(source_code: str, metadata: ContractMetadata, max_code_size: int) -> str:
    code, truncated = truncate_source(source_code, max_code_size)
    note = "\n[Source code truncated due to length]" if truncated else ""
    return (
        f"Please analyze this smart contract.\n\n{_metadata_block(metadata)}\n\n"
        f"```solidity\n{code}\n```{note}"
    )


def _finding_payload(finding_id: str, finding: Finding) -> dict:
    return {
        "findingId": finding_id,
        "source": finding.source_tag,
        "severity": finding.severity.value,
        "title": finding.title,
        "description": finding.description,
        "codeReference": finding.code_reference,
        "impact": finding.impact,
        "recommendation": finding.recommendation,
    }


def build_validation_prompt(
    source_code: str,
    metadata: ContractMetadata,
    candidates: Sequence[Tuple[str, Finding]],
    max_code_size: int,
) -> str:
    code, truncated = truncate_source(source_code, max_code_size)
    note = "\n[Source code truncated due to length]" if truncated else ""
    findings_json = json.dumps([_finding_payload(fid, f) for fid, f in candidates], indent=2)
    return (
        f"Here are the findings reported by multiple analyses of a smart contract:\n\n"
        f"{findings_json}\n\n{_metadata_block(metadata)}\n\n"
        f"The source code being analyzed is:\n\n```solidity\n{code}\n```{note}\n\n"
        f"Validate every finding and provide a consolidated assessment."
    )
