"""Abstract interface for the analysis capability."""

from typing import Protocol

from ..models.analysis import AnalysisRequest, AnalysisResult


class AnalysisProvider(Protocol):
    """Abstract interface for the external analysis capability.

    This protocol defines the contract the skill runner drives: a bounded,
    read-only conversation that ends in a status-tagged text result. The
    result text is free-form and is never assumed to be valid JSON.
    """

    async def analyze(self, request: AnalysisRequest) -> AnalysisResult:
        """
        Run one analysis call.

        Security: Prompt text MUST be redacted before it leaves the process.

        Args:
            request: Prompts, tool policy, turn budget and cancellation token

        Returns:
            Terminal result with status, text and usage

        Raises:
            AnalysisCallError: If the call fails outright
            RateLimitError: If rate limit exceeded after retries
        """
        ...

    async def extract_findings(self, text: str, request: AnalysisRequest) -> AnalysisResult:
        """
        Ask a cheaper call to reformat malformed output into findings JSON.

        Args:
            text: Output text starting at its first "{"
            request: The original request (model and token are reused)

        Returns:
            Result whose text should contain a {"findings": [...]} object

        Raises:
            AnalysisCallError: If the call fails outright
        """
        ...
