#!/usr/bin/env python3
"""
Audit Run Metrics Module

Track observability metrics for one audit run including:
- Which analyzers were attempted, and how each one ended
- Per-analyzer durations and failure kinds
- Validator outcome and the fallback tier that produced the report
- Finding counts by severity

The finalized dict is logged by the auditor and handed to the report sink
as run metadata.
"""

import json
import logging
import time
from datetime import datetime, timezone

__all__ = ["AuditRunMetrics"]

logger = logging.getLogger(__name__)


class AuditRunMetrics:
    """Track observability metrics for a single audit run"""

    def __init__(self, address="", network="", mode="multi"):
        self.start_time = time.time()
        self.metrics = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "address": address,
            "network": network,
            "mode": mode,
            "source_lines": 0,
            "source_truncated": False,
            "analyzers_attempted": [],
            "analyzer_status": {},
            "analyzer_durations": {},
            "failure_kinds": {},
            "validator": {"attempted": False, "source": "", "status": "skipped"},
            "tier": "",
            "degraded": False,
            "security_score": None,
            "findings": {"critical": 0, "high": 0, "medium": 0, "low": 0, "info": 0},
            "duration_seconds": 0.0,
        }

    def record_source(self, source_code, max_code_size):
        self.metrics["source_lines"] = source_code.count("\n") + 1 if source_code else 0
        self.metrics["source_truncated"] = len(source_code or "") > max_code_size

    def record_analyzer(self, source, status, duration_seconds=None, kind=None):
        """Record the outcome of one analyzer call

        Args:
            source: Analyzer source label (e.g. 'openai')
            status: 'ok' or 'failed'
            duration_seconds: Wall time of the call, if known
            kind: Failure kind for failed calls
        """
        if source not in self.metrics["analyzers_attempted"]:
            self.metrics["analyzers_attempted"].append(source)
        self.metrics["analyzer_status"][source] = status
        if duration_seconds is not None:
            self.metrics["analyzer_durations"][source] = round(duration_seconds, 3)
        if kind:
            self.metrics["failure_kinds"][kind] = self.metrics["failure_kinds"].get(kind, 0) + 1

    def record_validator(self, source, status):
        """Record validator outcome

        Args:
            source: Source label of the analyzer acting as validator
            status: 'ok', 'failed' or 'skipped'
        """
        self.metrics["validator"] = {"attempted": status != "skipped", "source": source, "status": status}

    def record_report(self, report):
        self.metrics["tier"] = report.tier.value
        self.metrics["degraded"] = report.degraded
        self.metrics["security_score"] = report.security_score
        for severity, count in report.findings_by_severity().items():
            self.metrics["findings"][severity.lower()] = count

    def finalize(self):
        self.metrics["duration_seconds"] = round(time.time() - self.start_time, 3)
        return self.metrics

    def to_json(self):
        return json.dumps(self.metrics, indent=2, default=str)

    def log_summary(self):
        m = self.metrics
        logger.info(
            "Audit %s on %s: tier=%s degraded=%s score=%s analyzers=%s findings=%s in %.2fs",
            m["address"] or "<local source>",
            m["network"] or "-",
            m["tier"],
            m["degraded"],
            m["security_score"],
            m["analyzer_status"],
            m["findings"],
            m["duration_seconds"],
        )
