"""Shared constants, types and errors for ai-run.

All modules import from here to avoid circular dependencies.
Every value type is a frozen dataclass: once a pipeline stage produces it,
nothing downstream can change it.
"""

import time
from dataclasses import dataclass, field
from enum import Enum

# --- Constants ---

MAX_FIXES = 3
HISTORY_LIMIT = 10
UNKNOWN_CONFIDENCE = 0.1
DEFAULT_AI_CONFIDENCE_THRESHOLD = 0.7

# Timeouts (seconds)
PROBE_TIMEOUT = 0.2
CONTEXT_TIMEOUT = 2.0
AI_TIMEOUT = 10.0

# LLM defaults
DEFAULT_API_URL = "https://api.anthropic.com/v1/messages"
DEFAULT_MODEL = "claude-haiku-4-5-20251001"

# Analysis.confidence -> multiplier applied to every candidate's match confidence
CONFIDENCE_WEIGHTS = {"high": 1.0, "medium": 0.75, "low": 0.5}

# Subtracted from a candidate's score per effective risk level
RISK_PENALTY = {"low": 0.0, "medium": 0.1}


# --- Enums ---

class ErrorType(Enum):
    PERMISSION_DENIED = "permission_denied"
    COMMAND_NOT_FOUND = "command_not_found"
    MISSING_DEPENDENCY = "missing_dependency"
    SYNTAX_ERROR = "syntax_error"
    NETWORK_ERROR = "network_error"
    FILE_NOT_FOUND = "file_not_found"
    CONFIGURATION_ERROR = "configuration_error"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value):
        """Accept "permission_denied", "PermissionDenied" or "PERMISSION_DENIED".

        Raises ValueError for anything else.
        """
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            raise ValueError(f"error_type must be a string, got {type(value).__name__}")
        key = value.strip().replace("-", "_").replace(" ", "_")
        if "_" in key or key.isupper() or key.islower():
            snake = key.lower()
        else:
            # CamelCase -> snake_case
            snake = "".join(f"_{c.lower()}" if c.isupper() else c for c in key).lstrip("_")
        for member in cls:
            if member.value == snake:
                return member
        raise ValueError(f"unknown error_type '{value}'")


class RiskLevel(Enum):
    LOW = "low"
    MEDIUM = "medium"

    @property
    def rank(self):
        return 0 if self is RiskLevel.LOW else 1

    @classmethod
    def parse(cls, value):
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                pass
        raise ValueError(f"risk must be 'low' or 'medium', got {value!r}")


class ConfidenceLevel(Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @classmethod
    def from_score(cls, score):
        if score >= 0.8:
            return cls.HIGH
        if score >= 0.5:
            return cls.MEDIUM
        return cls.LOW

    @property
    def weight(self):
        return CONFIDENCE_WEIGHTS[self.value]


class AnalysisMethod(Enum):
    HEURISTIC = "heuristic"
    AI = "ai"
    HYBRID = "hybrid"


# --- Errors ---

class AiRunError(Exception):
    """Base class for everything ai-run raises on purpose."""


class UserInputError(AiRunError):
    """Bad command-line arguments."""


class ContextCollectionError(AiRunError):
    """An environment probe failed or timed out."""


class AnalysisError(AiRunError):
    """The AI call failed, timed out, or returned something unusable."""


class ConfigError(AiRunError):
    """A config value or file is invalid."""


class PatternError(ConfigError):
    """A single pattern rule is invalid."""


class InternalError(AiRunError):
    """Unexpected fault inside the pipeline."""


# --- Data model ---

@dataclass(frozen=True)
class EnvironmentInfo:
    """Best-effort environment facts. Any field may be None."""
    os: str | None = None
    shell: str | None = None
    python: str | None = None
    node: str | None = None
    docker: str | None = None
    git: str | None = None

    def to_dict(self) -> dict:
        return {
            "os": self.os, "shell": self.shell, "python": self.python,
            "node": self.node, "docker": self.docker, "git": self.git,
        }


@dataclass(frozen=True)
class ExecutionResult:
    command: str
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    duration: float = 0.0

    @property
    def failed(self) -> bool:
        return self.exit_code != 0


@dataclass(frozen=True)
class FailureContext:
    command: str
    exit_code: int
    stderr: str
    cwd: str
    history: tuple[str, ...] = ()
    environment: EnvironmentInfo = field(default_factory=EnvironmentInfo)
    timestamp: float = field(default_factory=time.time)

    def __post_init__(self):
        # Accept any sequence, store the newest HISTORY_LIMIT entries as a tuple
        object.__setattr__(self, "history", tuple(self.history)[-HISTORY_LIMIT:])

    def to_dict(self) -> dict:
        return {
            "command": self.command,
            "exit_code": self.exit_code,
            "stderr": self.stderr,
            "cwd": self.cwd,
            "history": list(self.history),
            "environment": self.environment.to_dict(),
        }


@dataclass(frozen=True)
class FixTemplate:
    command_template: str
    explanation: str
    declared_risk: RiskLevel = RiskLevel.LOW


@dataclass(frozen=True)
class PatternRule:
    id: str
    error_type: ErrorType
    regex: object  # compiled re.Pattern
    base_confidence: float
    fix_templates: tuple[FixTemplate, ...] = ()
    explanation: str = ""


@dataclass(frozen=True)
class CandidateFix:
    """A fix template after placeholder substitution."""
    command: str
    explanation: str
    declared_risk: RiskLevel


@dataclass(frozen=True)
class PatternMatch:
    pattern_id: str
    error_type: ErrorType
    confidence: float
    explanation: str
    candidate_fixes: tuple[CandidateFix, ...] = ()
    # Declaration index of the originating rule; tie-break key for ranking
    order: int = 0


@dataclass(frozen=True)
class AIAnalysis:
    root_cause: str
    error_type: ErrorType
    confidence: float
    reasoning: str = ""


@dataclass(frozen=True)
class Analysis:
    root_cause: str
    error_type: ErrorType
    confidence: ConfidenceLevel
    analysis_method: AnalysisMethod
    raw_patterns: tuple[PatternMatch, ...]
    reasoning: str = ""

    @property
    def confidence_weight(self) -> float:
        return self.confidence.weight


@dataclass(frozen=True)
class Fix:
    command: str
    explanation: str
    risk_level: RiskLevel
    reasoning: str
    confidence: float
    score: float = 0.0

    def __post_init__(self):
        if not self.command.strip():
            raise ValueError("Fix.command must be non-empty")
        if not self.explanation.strip():
            raise ValueError("Fix.explanation must be non-empty")
