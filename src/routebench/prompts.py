"""Versioned routing prompts.

Each version asks the model to pick one endpoint from the catalogue and pull
the endpoint's parameters out of the user's sentence. Templates use
``str.format`` fields ``{sentence}``, ``{endpoints_list}`` and
``{parameter_names}``; literal braces are doubled.
"""

from __future__ import annotations

import json
from pathlib import Path

from routebench.errors import ConfigurationError
from routebench.logging import get_logger
from routebench.scenario import Scenario

log = get_logger("routebench.prompts")

# V1: Plain instruction with the endpoint catalogue
PROMPT_V1 = """You are an API router. Match the user's sentence to exactly one endpoint \
from the list below and extract the values of its parameters from the sentence.

ENDPOINTS:
{endpoints_list}

PARAMETERS TO EXTRACT: {parameter_names}

User sentence: {sentence}

Respond with ONLY a JSON object:
{{"endpoint_id": "ENDPOINT_ID or none", "parameters": {{"name": "value or null"}}}}"""

# V2: Rules plus negative guidance on value handling
PROMPT_V2 = """You are an API router. Select the single best endpoint for the user's \
sentence, then extract parameter values.

RULES:
1. Pick an endpoint id from the list, or "none" if nothing fits.
2. Copy parameter values EXACTLY as they appear in the sentence.
3. Never shorten, decode, or re-encode URLs. Keep every query-string character.
4. Use null for a parameter that is not present. Do not guess.
5. Person names are copied with the casing the user used.

ENDPOINTS:
{endpoints_list}

PARAMETERS: {parameter_names}

Sentence: {sentence}

Respond with ONLY a JSON object:
{{"endpoint_id": "ENDPOINT_ID", "parameters": [{{"name": "PARAM", "value": "VALUE or null"}}]}}"""

# V3: Step-by-step
PROMPT_V3 = """You are an API router. Work through these steps in order.

Step 1: Read the sentence and decide what the user wants done.
Step 2: Compare that goal with each endpoint description below.
Step 3: Choose exactly one endpoint id, or "none" if no endpoint fits.
Step 4: For each parameter name listed, find its value in the sentence.
  - Copy the value verbatim (URLs included, with their full query string).
  - If a value is absent, use null.

ENDPOINTS:
{endpoints_list}

PARAMETERS: {parameter_names}

Sentence: {sentence}

Respond with ONLY a JSON object:
{{"endpoint_id": "ENDPOINT_ID", "parameters": {{"name": "value or null"}}, \
"reasoning": "Step 3 matched: ..."}}"""

PROMPTS = {
    "v1": PROMPT_V1,
    "v2": PROMPT_V2,
    "v3": PROMPT_V3,
}


def format_endpoints_list(scenario: Scenario) -> str:
    if not scenario.endpoints:
        return "(no endpoints configured)"
    lines = []
    for endpoint in scenario.endpoints:
        params = ", ".join(endpoint.parameters) if endpoint.parameters else "none"
        lines.append(f"- {endpoint.id}: {endpoint.description} (parameters: {params})")
    return "\n".join(lines)


class PromptStore:
    """Lookup and rendering of prompt templates by version id.

    Version ids are matched case-insensitively, so ``"V1"`` and ``"v1"``
    name the same template.
    """

    def __init__(self, templates: dict[str, str] | None = None) -> None:
        source = PROMPTS if templates is None else templates
        self._templates = {version.lower(): text for version, text in source.items()}

    @classmethod
    def from_file(cls, path: str | Path, *, include_builtin: bool = True) -> PromptStore:
        """Load templates from a JSON object of ``{version: template}``."""
        try:
            data = json.loads(Path(path).read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"cannot read prompt file {path}: {e}") from e
        if not isinstance(data, dict) or not all(
            isinstance(k, str) and isinstance(v, str) for k, v in data.items()
        ):
            raise ConfigurationError(f"prompt file {path} must map version ids to strings")
        templates = dict(PROMPTS) if include_builtin else {}
        templates.update(data)
        log.info("prompts_loaded", path=str(path), versions=sorted(data))
        return cls(templates)

    @property
    def versions(self) -> list[str]:
        return sorted(self._templates)

    def has_version(self, version: str) -> bool:
        return version.lower() in self._templates

    def require(self, versions: list[str]) -> None:
        """Raise ``ConfigurationError`` for any version without a template."""
        missing = [v for v in versions if not self.has_version(v)]
        if missing:
            raise ConfigurationError(
                f"unknown prompt version(s) {missing}; available: {self.versions}"
            )

    def render(self, version: str, scenario: Scenario) -> str:
        template = self._templates.get(version.lower())
        if template is None:
            raise ConfigurationError(f"unknown prompt version {version!r}")
        try:
            return template.format(
                sentence=scenario.utterance,
                endpoints_list=format_endpoints_list(scenario),
                parameter_names=", ".join(scenario.expected_parameter_names) or "none",
            )
        except (KeyError, IndexError, ValueError) as e:
            raise ConfigurationError(f"prompt version {version!r} is malformed: {e}") from e
