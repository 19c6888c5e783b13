"""Test scenario definition: what to send, to whom, and how many times."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from routebench.constants import DEFAULT_ITERATIONS, DEFAULT_PROMPT_VERSIONS, DEFAULT_PROVIDERS
from routebench.errors import ConfigurationError

DEFAULT_UTTERANCE = (
    "here is an action : is jane a good fit for this job post url : "
    "https://www.linkedin.com/jobs/view/4237328365/?alternateChannel=search"
    "&refId=3BCyM4GbmRLDj8p8%2BtVfew%3D%3D&trackingId=Wl75W2H7UIcVefE%2BXh%2BNZw%3D%3D"
)


@dataclass
class EndpointDefinition:
    """An endpoint the router may select, with the parameters it accepts."""

    id: str
    description: str = ""
    parameters: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "description": self.description, "parameters": self.parameters}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EndpointDefinition:
        return cls(
            id=data["id"],
            description=data.get("description", ""),
            parameters=list(data.get("parameters", [])),
        )


DEFAULT_ENDPOINTS = [
    EndpointDefinition(
        id="analyze_candidate_fit",
        description="Assess whether a person is a good fit for a job posting",
        parameters=["job_url", "person_name"],
    ),
    EndpointDefinition(
        id="generate_cv",
        description="Generate a CV for a person in a given language",
        parameters=["person_name", "language"],
    ),
    EndpointDefinition(
        id="search_jobs",
        description="Search job postings matching keywords",
        parameters=["keywords", "location"],
    ),
]


@dataclass
class Scenario:
    """One benchmark sweep: a single utterance across prompts and providers."""

    utterance: str
    expected_parameter_names: list[str]
    iterations_per_config: int = DEFAULT_ITERATIONS
    prompt_versions: list[str] = field(default_factory=lambda: list(DEFAULT_PROMPT_VERSIONS))
    providers: list[str] = field(default_factory=lambda: list(DEFAULT_PROVIDERS))
    endpoints: list[EndpointDefinition] = field(default_factory=list)

    def validate(self) -> None:
        """Raise ``ConfigurationError`` if the scenario cannot be run."""
        if not self.utterance.strip():
            raise ConfigurationError("utterance must not be empty")
        if self.iterations_per_config <= 0:
            raise ConfigurationError(
                f"iterations_per_config must be positive, got {self.iterations_per_config}"
            )
        if not self.providers:
            raise ConfigurationError("at least one provider is required")
        if not self.prompt_versions:
            raise ConfigurationError("at least one prompt version is required")
        for label, values in (
            ("providers", self.providers),
            ("prompt_versions", self.prompt_versions),
            ("expected_parameter_names", self.expected_parameter_names),
        ):
            if len(set(values)) != len(values):
                raise ConfigurationError(f"{label} contains duplicates: {values}")
            if any(not v for v in values):
                raise ConfigurationError(f"{label} contains an empty name")

    @property
    def total_calls(self) -> int:
        return len(self.prompt_versions) * len(self.providers) * self.iterations_per_config

    def to_dict(self) -> dict[str, Any]:
        return {
            "utterance": self.utterance,
            "expected_parameter_names": self.expected_parameter_names,
            "iterations_per_config": self.iterations_per_config,
            "prompt_versions": self.prompt_versions,
            "providers": self.providers,
            "endpoints": [e.to_dict() for e in self.endpoints],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Scenario:
        try:
            return cls(
                utterance=data["utterance"],
                expected_parameter_names=list(data.get("expected_parameter_names", [])),
                iterations_per_config=int(
                    data.get("iterations_per_config", DEFAULT_ITERATIONS)
                ),
                prompt_versions=list(data.get("prompt_versions", DEFAULT_PROMPT_VERSIONS)),
                providers=list(data.get("providers", DEFAULT_PROVIDERS)),
                endpoints=[EndpointDefinition.from_dict(e) for e in data.get("endpoints", [])],
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ConfigurationError(f"invalid scenario: {e}") from e


def default_scenario() -> Scenario:
    """The job-fit routing scenario with a passed-through job URL."""
    return Scenario(
        utterance=DEFAULT_UTTERANCE,
        expected_parameter_names=["job_url", "person_name"],
        endpoints=[EndpointDefinition.from_dict(e.to_dict()) for e in DEFAULT_ENDPOINTS],
    )


def load_scenario(path: str | Path) -> Scenario:
    """Load a scenario from a JSON file."""
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"cannot read scenario file {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigurationError(f"scenario file {path} must contain a JSON object")
    return Scenario.from_dict(data)
