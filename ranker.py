"""Fix ranker: Analysis -> at most MAX_FIXES risk-labeled fixes, best first."""

from protocol import MAX_FIXES, RISK_PENALTY, Fix
from risk import classify, danger_signals


def risk_penalty(risk_level):
    return RISK_PENALTY[risk_level.value]


def _reasoning(pm, candidate, risk_level, signals):
    text = f"{pm.error_type.value} via pattern '{pm.pattern_id}' (confidence {pm.confidence:.2f})"
    if risk_level is not candidate.declared_risk:
        text += f"; raised to {risk_level.value} risk: {', '.join(signals)}"
    elif signals:
        text += f"; {risk_level.value} risk: {', '.join(signals)}"
    return text


def candidates(analysis):
    """One Fix per (match, template) pair, first occurrence of each command kept.

    Matches are walked in canonical order (confidence desc, then rule
    declaration order) so the result does not depend on how raw_patterns
    happens to be ordered.
    """
    ordered = sorted(analysis.raw_patterns, key=lambda pm: (-pm.confidence, pm.order))
    weight = analysis.confidence_weight
    seen = set()
    fixes = []
    for pm in ordered:
        for candidate in pm.candidate_fixes:
            command = candidate.command.strip()
            if not command or command in seen:
                continue
            seen.add(command)
            explanation = candidate.explanation.strip() or pm.explanation.strip() or "Suggested fix"
            risk_level = classify(command, candidate.declared_risk)
            signals = danger_signals(command)
            fixes.append(Fix(
                command=command,
                explanation=explanation,
                risk_level=risk_level,
                reasoning=_reasoning(pm, candidate, risk_level, signals),
                confidence=pm.confidence,
                score=pm.confidence * weight - risk_penalty(risk_level),
            ))
    return fixes


def rank(analysis, max_fixes=MAX_FIXES):
    """Score, order and truncate. Empty when no pattern offered a fix."""
    limit = max(0, min(max_fixes, MAX_FIXES))
    # Stable: equal scores keep encounter order
    ranked = sorted(candidates(analysis), key=lambda f: -f.score)
    return ranked[:limit]
