"""Analysis merger: heuristic matches + optional AI result -> one Analysis."""

from matcher import UNKNOWN_EXPLANATION, unknown_match
from protocol import (
    DEFAULT_AI_CONFIDENCE_THRESHOLD, Analysis, AnalysisMethod, ConfidenceLevel,
)


def _heuristic_baseline(matches):
    top = matches[0]
    return Analysis(
        root_cause=top.explanation or UNKNOWN_EXPLANATION,
        error_type=top.error_type,
        confidence=ConfidenceLevel.from_score(top.confidence),
        analysis_method=AnalysisMethod.HEURISTIC,
        raw_patterns=tuple(matches),
        reasoning=f"matched pattern '{top.pattern_id}' (confidence {top.confidence:.2f})",
    )


def merge(heuristic, ai=None, threshold=DEFAULT_AI_CONFIDENCE_THRESHOLD):
    """Combine heuristic matches with an AI result.

    The AI wins only when present and strictly above threshold; it then
    supplies root cause and error type (method AI, or Hybrid when the top
    heuristic match agrees). raw_patterns is always the full heuristic list:
    fixes come from pattern rules only.
    """
    matches = list(heuristic) or [unknown_match()]
    baseline = _heuristic_baseline(matches)

    if ai is None or not ai.confidence > threshold:
        return baseline

    agrees = ai.error_type is matches[0].error_type
    return Analysis(
        root_cause=ai.root_cause.strip() or baseline.root_cause,
        error_type=ai.error_type,
        confidence=ConfidenceLevel.from_score(ai.confidence),
        analysis_method=AnalysisMethod.HYBRID if agrees else AnalysisMethod.AI,
        raw_patterns=baseline.raw_patterns,
        reasoning=ai.reasoning.strip() or baseline.reasoning,
    )
