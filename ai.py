"""AI adapter: one time-boxed LLM call that may refine the diagnosis.

The core only ever sees an AIAnalysis or None. Disabled, no API key,
HTTP errors, malformed JSON, bad field values, timeouts: all become None.
The AI never contributes fix commands.
"""

import asyncio
import json

import httpx

from protocol import (
    AI_TIMEOUT, DEFAULT_API_URL, DEFAULT_MODEL,
    AIAnalysis, AnalysisError, ErrorType,
)
from scrubber import scrub

MAX_STDERR_CHARS = 2000


def build_request(context, redact=True):
    """JSON-able request mirroring the FailureContext, scrubbed when redact is on."""
    request = context.to_dict()
    request["stderr"] = request["stderr"][-MAX_STDERR_CHARS:]
    if redact:
        request["command"], _ = scrub(request["command"])
        request["stderr"], _ = scrub(request["stderr"])
        request["cwd"], _ = scrub(request["cwd"])
        request["history"] = [scrub(h)[0] for h in request["history"]]
    return request


def build_prompt(request):
    error_types = ", ".join(t.value for t in ErrorType)
    return f"""A shell command failed. Diagnose the root cause.

=== FAILURE ===
{json.dumps(request, indent=2)}

=== RESPONSE FORMAT ===

Respond with a single JSON object (no markdown fences, no commentary outside it):

{{"root_cause": "one sentence", "error_type": "<one of: {error_types}>", "confidence": 0.0-1.0, "reasoning": "short justification"}}

Do not propose commands. Use "unknown" and a low confidence if the output is not enough to tell."""


def parse_llm_response(raw):
    """Pull the JSON object out of an LLM reply (tolerates fences and chatter)."""
    text = raw.strip()
    if text.startswith("```"):
        text = "\n".join(text.split("\n")[1:])
        if text.endswith("```"):
            text = text[:-3]
        text = text.strip()
    if not text.startswith("{"):
        start = text.find("{")
        end = text.rfind("}") + 1
        if start >= 0 and end > start:
            text = text[start:end]
    return json.loads(text)


def parse_ai_analysis(data):
    """Validate a decoded response into AIAnalysis. Raises AnalysisError."""
    if not isinstance(data, dict):
        raise AnalysisError("response is not a JSON object")

    root_cause = data.get("root_cause")
    if not isinstance(root_cause, str) or not root_cause.strip():
        raise AnalysisError("response has no root_cause")

    try:
        error_type = ErrorType.parse(data.get("error_type", "unknown"))
    except ValueError:
        error_type = ErrorType.UNKNOWN

    confidence = data.get("confidence")
    if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
        raise AnalysisError(f"confidence is not a number: {confidence!r}")
    if not 0.0 <= confidence <= 1.0:
        raise AnalysisError(f"confidence out of range: {confidence}")

    reasoning = data.get("reasoning") or ""
    if not isinstance(reasoning, str):
        reasoning = str(reasoning)

    return AIAnalysis(
        root_cause=root_cause.strip(),
        error_type=error_type,
        confidence=float(confidence),
        reasoning=reasoning.strip(),
    )


class AIAdapter:
    """Anthropic Messages API client for failure diagnosis."""

    def __init__(self, api_key, model=DEFAULT_MODEL, api_url=DEFAULT_API_URL,
                 timeout=AI_TIMEOUT, redact=True, transport=None):
        self.api_key = api_key
        self.model = model
        self.api_url = api_url
        self.timeout = min(timeout, AI_TIMEOUT)
        self.redact = redact
        self.transport = transport

    async def complete(self, prompt: str) -> str:
        """Send one prompt, return the reply text. Raises AnalysisError."""
        try:
            async with httpx.AsyncClient(transport=self.transport) as client:
                resp = await client.post(
                    self.api_url,
                    headers={
                        "x-api-key": self.api_key,
                        "anthropic-version": "2023-06-01",
                        "content-type": "application/json",
                    },
                    json={
                        "model": self.model,
                        "max_tokens": 512,
                        "messages": [{"role": "user", "content": prompt}],
                    },
                    timeout=self.timeout,
                )
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise AnalysisError(f"request failed: {e}") from e

        if not 200 <= resp.status_code < 300:
            raise AnalysisError(f"API error {resp.status_code}: {resp.text[:200]}")
        try:
            text = resp.json()["content"][0]["text"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise AnalysisError(f"unexpected API response shape: {e}") from e
        if not isinstance(text, str):
            raise AnalysisError(f"reply text is not a string: {type(text).__name__}")
        return text

    async def request_analysis(self, context) -> AIAnalysis:
        prompt = build_prompt(build_request(context, redact=self.redact))
        raw = await self.complete(prompt)
        try:
            data = parse_llm_response(raw)
        except json.JSONDecodeError as e:
            raise AnalysisError(f"reply is not JSON: {e}") from e
        return parse_ai_analysis(data)

    async def analyze(self, context) -> AIAnalysis | None:
        """AIAnalysis, or None if the AI is unavailable for any reason.

        The whole exchange is bounded by self.timeout; on expiry the request
        is cancelled and nothing partial is kept.
        """
        try:
            return await asyncio.wait_for(self.request_analysis(context), self.timeout)
        except (AnalysisError, asyncio.TimeoutError):
            return None


def adapter_from_config(cfg, transport=None):
    """AIAdapter for this config, or None when AI is off or there is no key."""
    if not cfg.ai_enabled or not cfg.api_key:
        return None
    return AIAdapter(
        api_key=cfg.api_key,
        model=cfg.model,
        api_url=cfg.api_url,
        timeout=cfg.ai_timeout,
        redact=cfg.redact,
        transport=transport,
    )
