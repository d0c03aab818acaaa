#!/usr/bin/env python3
"""
Finding Matcher for the reconciliation engine

Decides when two findings from different sources describe the same issue,
and collapses near-duplicates into one consensus finding.

Two findings match when any of these hold:

  - **equal**     : normalized titles (or normalized descriptions) are equal
  - **substring** : one normalized title contains the other, and the shorter
                    one is at least ``min_substring_length`` characters
  - **similar**   : ``difflib`` ratio of the normalized titles is at least
                    ``similarity_threshold``

Matching is approximate by nature; both knobs are configuration, not
constants.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from difflib import SequenceMatcher
from typing import Iterable, List, Optional, Sequence

from schemas import Finding

logger = logging.getLogger(__name__)

_NON_WORD_RE = re.compile(r"[^a-z0-9]+")


def normalize_text(text: str) -> str:
    """Lowercase, drop punctuation, collapse whitespace."""
    return _NON_WORD_RE.sub(" ", (text or "").lower()).strip()


def merge_source_tags(tags: Iterable[str]) -> List[str]:
    """Distinct source labels across comma-joined tags, first-seen order."""
    seen: List[str] = []
    for tag in tags:
        for part in (tag or "").split(","):
            part = part.strip()
            if part and part not in seen:
                seen.append(part)
    return seen


@dataclass
class FindingCluster:
    """Findings judged to be the same issue.

    ``priorities`` runs parallel to ``members``; higher-priority members
    (for example findings a validator modified or confirmed) lead the merge.
    """

    members: List[Finding] = field(default_factory=list)
    priorities: List[int] = field(default_factory=list)

    def add(self, finding: Finding, priority: int = 0) -> None:
        self.members.append(finding)
        self.priorities.append(priority)

    @property
    def sources(self) -> List[str]:
        return merge_source_tags(member.source_tag for member in self.members)

    def merged(self) -> Finding:
        """One finding for the cluster.

        The first highest-priority member supplies the text; severity is the
        most severe among the highest-priority members. With equal priorities
        that is the first member's text and the cluster's most severe severity.
        """
        priorities = self.priorities or [0] * len(self.members)
        top = max(priorities)
        leading = [m for m, p in zip(self.members, priorities) if p == top]
        lead = leading[0]
        most_severe = min((m.severity for m in leading), key=lambda s: s.rank)
        sources = self.sources
        code_reference = lead.code_reference or next(
            (m.code_reference for m in self.members if m.code_reference), None
        )
        return lead.model_copy(
            update={
                "severity": most_severe,
                "code_reference": code_reference,
                "source_tag": ", ".join(sources),
                "consensus_count": max(1, len(sources)),
            }
        )


class FindingMatcher:
    """Match and deduplicate findings across sources.

    Parameters
    ----------
    similarity_threshold : float
        Minimum ``SequenceMatcher`` ratio for two titles to match.
    min_substring_length : int
        Minimum length of the shorter title for substring containment.
    """

    def __init__(self, similarity_threshold: float = 0.85, min_substring_length: int = 10) -> None:
        if not 0.0 < similarity_threshold <= 1.0:
            raise ValueError(f"similarity_threshold must be in (0, 1], got {similarity_threshold!r}")
        self.similarity_threshold = similarity_threshold
        self.min_substring_length = min_substring_length

    def _titles_match(self, a: str, b: str) -> bool:
        if not a or not b:
            return False
        if a == b:
            return True
        shorter, longer = sorted((a, b), key=len)
        if len(shorter) >= self.min_substring_length and shorter in longer:
            return True
        return SequenceMatcher(None, a, b).ratio() >= self.similarity_threshold

    def matches(self, a: Finding, b: Finding) -> bool:
        """Return True if ``a`` and ``b`` plausibly describe the same issue."""
        if self._titles_match(normalize_text(a.title), normalize_text(b.title)):
            return True
        desc_a, desc_b = normalize_text(a.description), normalize_text(b.description)
        return bool(desc_a) and len(desc_a) >= self.min_substring_length and desc_a == desc_b

    def cluster(
        self, findings: Sequence[Finding], priorities: Optional[Sequence[int]] = None
    ) -> List[FindingCluster]:
        """Greedy, order-preserving clustering.

        A finding joins the first cluster holding any member it matches.
        """
        priorities = list(priorities) if priorities is not None else [0] * len(findings)
        clusters: List[FindingCluster] = []
        for finding, priority in zip(findings, priorities):
            for cluster in clusters:
                if any(self.matches(finding, member) for member in cluster.members):
                    cluster.add(finding, priority)
                    break
            else:
                cluster = FindingCluster()
                cluster.add(finding, priority)
                clusters.append(cluster)
        return clusters

    def deduplicate(
        self, findings: Sequence[Finding], priorities: Optional[Sequence[int]] = None
    ) -> List[Finding]:
        """Collapse near-duplicates; ``consensus_count`` = distinct sources.

        ``priorities`` (parallel to ``findings``) picks which members lead
        each merge; see ``FindingCluster.merged``.
        """
        clusters = self.cluster(findings, priorities)
        merged = [cluster.merged() for cluster in clusters]
        if len(merged) < len(findings):
            logger.debug(f"Deduplicated {len(findings)} findings into {len(merged)}")
        return merged

    def supporting_sources(self, finding: Finding, candidates: Iterable[Finding]) -> List[str]:
        """Sources of ``finding`` plus every candidate source that matches it."""
        tags = [finding.source_tag]
        tags.extend(c.source_tag for c in candidates if self.matches(c, finding))
        return merge_source_tags(tags)
