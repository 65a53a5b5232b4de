"""Heuristic matcher: failure context x pattern table -> ordered matches.

Pure: the same context and table always give the same matches in the
same order.
"""

import os
import shlex
import string

from protocol import (
    UNKNOWN_CONFIDENCE, CandidateFix, ErrorType, PatternMatch,
)

UNKNOWN_PATTERN_ID = "unknown"
UNKNOWN_EXPLANATION = "The cause could not be determined from the error output."

_FORMATTER = string.Formatter()


def match_text(context):
    """Text the rules are tested against: stderr, or a stand-in when it is empty."""
    if context.stderr.strip():
        return context.stderr
    return f"{context.command}: exit status {context.exit_code}"


def _split(command):
    try:
        return shlex.split(command)
    except ValueError:
        return command.split()


def command_name(command):
    parts = _split(command)
    return os.path.basename(parts[0]) if parts else ""


def first_path_argument(command):
    """First argument that looks like a path (contains / or starts with .)."""
    for p in _split(command)[1:]:
        if p.startswith("-"):
            continue
        if "/" in p or p.startswith("."):
            return p
    return None


def placeholder_values(context, m):
    """Values for template placeholders. Everything but the command is shell-quoted."""
    values = {}
    for name, value in m.groupdict().items():
        if value:
            values[name] = shlex.quote(value)

    if "target_file" not in values:
        path = first_path_argument(context.command)
        if path:
            values["target_file"] = shlex.quote(path)

    name = command_name(context.command)
    if name:
        values["command_name"] = shlex.quote(name)
    values["original_command"] = context.command
    return values


def template_fields(template):
    """Placeholder names used by a template. Raises ValueError on bad braces."""
    return [field for _, field, _, _ in _FORMATTER.parse(template) if field is not None]


def substitute(template, values):
    """Fill {placeholders} in template. Returns None if any is unresolved."""
    out = []
    for literal, field, _, _ in _FORMATTER.parse(template):
        out.append(literal)
        if field is None:
            continue
        value = values.get(field)
        if value is None:
            return None
        out.append(value)
    return "".join(out)


def _candidates(rule, values, fallback_explanation):
    fixes = []
    for tpl in rule.fix_templates:
        command = substitute(tpl.command_template, values)
        if command is None or not command.strip():
            continue
        fixes.append(CandidateFix(
            command=command.strip(),
            explanation=tpl.explanation or fallback_explanation,
            declared_risk=tpl.declared_risk,
        ))
    return tuple(fixes)


def unknown_match(order=0):
    return PatternMatch(
        pattern_id=UNKNOWN_PATTERN_ID,
        error_type=ErrorType.UNKNOWN,
        confidence=UNKNOWN_CONFIDENCE,
        explanation=UNKNOWN_EXPLANATION,
        candidate_fixes=(),
        order=order,
    )


def match(context, table):
    """Test every rule against the failure; return matches by descending confidence.

    Ties keep declaration order. Never returns an empty list: with no hit
    the result is a single Unknown match.
    """
    text = match_text(context)
    matches = []
    for order, rule in enumerate(table):
        m = rule.regex.search(text)
        if m is None:
            continue
        explanation = rule.explanation or f"Output matched the '{rule.id}' pattern."
        values = placeholder_values(context, m)
        matches.append(PatternMatch(
            pattern_id=rule.id,
            error_type=rule.error_type,
            confidence=rule.base_confidence,
            explanation=explanation,
            candidate_fixes=_candidates(rule, values, explanation),
            order=order,
        ))

    if not matches:
        return [unknown_match(order=len(table))]

    # sorted() is stable: equal confidences stay in declaration order
    return sorted(matches, key=lambda pm: -pm.confidence)
