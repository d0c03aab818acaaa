"""
Base Analyzer - Adapter contract shared by every analyzer backend.

Subclasses implement ``request`` (one raw backend call that may raise).
``analyze`` and ``validate`` wrap it with the per-call timeout, classified
retries, failure conversion and response extraction, so callers only ever
receive values:

    AnalysisResult | AnalyzerFailure       from analyze()
    ValidationVerdict | AnalyzerFailure    from validate()
"""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Optional, Sequence, Tuple, Union

from error_classifier import classify_analyzer_error, retrying_call
from exceptions import AnalyzerError
from response_extractor import ResponseExtractor
from schemas import (
    AnalysisResult,
    AnalyzerFailure,
    ContractMetadata,
    Finding,
    ValidationVerdict,
)

logger = logging.getLogger(__name__)

Candidates = Sequence[Tuple[str, Finding]]


class Analyzer(ABC):
    """Abstract analyzer adapter.

    Subclasses must implement:
    - ``request(source_code, metadata, prior_findings)`` -- the raw call

    Optional overrides:
    - ``supports_validation`` -- defaults to False
    """

    supports_validation = False

    def __init__(
        self,
        source: str,
        timeout: float = 45.0,
        retry_max_attempts: int = 2,
        extractor: Optional[ResponseExtractor] = None,
    ):
        self.source = source
        self.timeout = timeout
        self.retry_max_attempts = retry_max_attempts
        self.extractor = extractor or ResponseExtractor()

    def __repr__(self) -> str:
        return f"{type(self).__name__}(source={self.source!r})"

    @abstractmethod
    async def request(
        self,
        source_code: str,
        metadata: ContractMetadata,
        prior_findings: Optional[Candidates] = None,
    ) -> str:
        """Perform one backend call and return its raw text.

        ``prior_findings`` is set for validation calls: numbered candidate
        findings the backend should confirm, dispute or modify.

        Raises
        ------
        Exception
            Any exception; ``analyze``/``validate`` classify and convert it.
        """
        ...

    async def _call(
        self,
        source_code: str,
        metadata: ContractMetadata,
        prior_findings: Optional[Candidates],
    ) -> Union[str, AnalyzerFailure]:
        start = time.monotonic()
        try:
            return await asyncio.wait_for(
                retrying_call(
                    lambda: self.request(source_code, metadata, prior_findings),
                    source=self.source,
                    max_attempts=self.retry_max_attempts,
                ),
                timeout=self.timeout,
            )
        except Exception as e:
            classified = classify_analyzer_error(e, self.source)
            logger.warning(f"Analyzer {self.source} failed ({classified.kind}): {classified.reason}")
            return AnalyzerFailure(
                source=self.source,
                reason=classified.reason,
                kind=classified.kind,
                duration_seconds=time.monotonic() - start,
            )

    async def analyze(
        self, source_code: str, metadata: ContractMetadata
    ) -> Union[AnalysisResult, AnalyzerFailure]:
        """Analyze source code. Never raises (cancellation aside)."""
        start = time.monotonic()
        raw = await self._call(source_code, metadata, None)
        if isinstance(raw, AnalyzerFailure):
            return raw

        outcome = self.extractor.extract(raw, self.source)
        duration = time.monotonic() - start
        if isinstance(outcome, AnalyzerFailure):
            logger.warning(f"Analyzer {self.source} returned unusable output: {outcome.reason}")
        return outcome.model_copy(update={"duration_seconds": duration})

    async def validate(
        self,
        source_code: str,
        metadata: ContractMetadata,
        prior_findings: Candidates,
    ) -> Union[ValidationVerdict, AnalyzerFailure]:
        """Ask this backend to judge numbered candidate findings. Never raises."""
        if not self.supports_validation:
            return AnalyzerFailure(
                source=self.source, reason=f"{self.source} cannot act as validator", kind="config"
            )
        raw = await self._call(source_code, metadata, list(prior_findings))
        if isinstance(raw, AnalyzerFailure):
            return raw
        return self.extractor.extract_verdict(raw, self.source)


class StaticResponseAnalyzer(Analyzer):
    """Analyzer that replays a fixed response (or raises a fixed error).

    Useful for dry runs and for wiring checks without network access.
    """

    supports_validation = True

    def __init__(
        self,
        source: str,
        response: str = "",
        validation_response: str = "",
        error: Optional[BaseException] = None,
        delay: float = 0.0,
        **kwargs,
    ):
        super().__init__(source, **kwargs)
        self.response = response
        self.validation_response = validation_response
        self.error = error
        self.delay = delay
        self.calls = 0

    async def request(self, source_code, metadata, prior_findings=None) -> str:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        if prior_findings is not None:
            if not self.validation_response:
                raise AnalyzerError("no validation response configured", source=self.source, kind="config")
            return self.validation_response
        return self.response
