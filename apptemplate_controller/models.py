"""Data models for AppTemplate reconciliation."""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, FrozenSet, List, Mapping, Optional

import yaml

from apptemplate_controller.exceptions import InvalidAppTemplateError, MalformedVariablesError


def parse_configs_to_use(value: Any) -> FrozenSet[str]:
    """Parse ``configsToUse`` from a comma-separated string or a list of names."""
    if value is None:
        return frozenset()
    if isinstance(value, str):
        items = value.split(",")
    else:
        items = [str(item) for item in value]
    return frozenset(item.strip() for item in items if item.strip())


def _load_payload(text: str) -> Any:
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass

    # Not JSON; accept a YAML mapping as well.
    try:
        return yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise MalformedVariablesError(str(e)) from e


def parse_template_variables(value: Any) -> Dict[str, str]:
    """Parse ``templateVariables`` into a flat string mapping.

    The payload is normally a serialized JSON object and is decoded as JSON
    first. Anything that is not JSON is retried as YAML. Scalar values are
    coerced to strings; nested mappings and lists become compact JSON.

    Raises:
        MalformedVariablesError: If the payload is not a mapping
    """
    if value is None or value == "":
        return {}

    if isinstance(value, str):
        value = _load_payload(value)
        if value is None:
            return {}

    if not isinstance(value, Mapping):
        raise MalformedVariablesError(f"expected a mapping, got {type(value).__name__}")

    return {str(key): variable_to_str(item) for key, item in value.items()}


def variable_to_str(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (Mapping, list, tuple)):
        return json.dumps(value, separators=(",", ":"), default=str)
    return scalar_to_str(value)


def scalar_to_str(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


@dataclass
class AppTemplateSpec:
    """Parsed ``spec`` of an AppTemplate custom resource."""
    service_name: str
    configs_to_use: FrozenSet[str] = field(default_factory=frozenset)
    template_variables: Dict[str, str] = field(default_factory=dict)
    raw: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, spec: Optional[Mapping[str, Any]]) -> "AppTemplateSpec":
        """Build a spec from the custom resource's ``spec`` mapping.

        Raises:
            InvalidAppTemplateError: If the spec or ``serviceName`` is missing
            MalformedVariablesError: If ``templateVariables`` is not a mapping
        """
        if not spec:
            raise InvalidAppTemplateError("AppTemplate has no spec")

        service_name = spec.get("serviceName")
        if not service_name:
            raise InvalidAppTemplateError("AppTemplate spec.serviceName is required")

        return cls(
            service_name=str(service_name),
            configs_to_use=parse_configs_to_use(spec.get("configsToUse")),
            template_variables=parse_template_variables(spec.get("templateVariables")),
            raw=dict(spec),
        )


@dataclass(frozen=True)
class AppTemplateRef:
    """Identity of one AppTemplate object in the cluster."""
    namespace: str
    name: str
    uid: Optional[str] = None
    generation: Optional[int] = None

    @property
    def key(self) -> str:
        return f"{self.namespace}/{self.name}"

    @classmethod
    def from_object(cls, obj: Mapping[str, Any]) -> "AppTemplateRef":
        metadata = obj.get("metadata") or {}
        return cls(
            namespace=metadata.get("namespace") or "default",
            name=metadata.get("name") or "",
            uid=metadata.get("uid"),
            generation=metadata.get("generation"),
        )


@dataclass
class TemplateDocument:
    """One manifest file after placeholder substitution."""
    type: str
    path: Path
    raw_content: str
    rendered_content: str


@dataclass(frozen=True)
class ResourceRef:
    """Identifies a Kubernetes object by apiVersion, kind, namespace and name."""
    api_version: str
    kind: str
    name: str
    namespace: Optional[str] = None

    @classmethod
    def from_spec(cls, spec: Mapping[str, Any]) -> "ResourceRef":
        metadata = spec.get("metadata") or {}
        return cls(
            api_version=str(spec.get("apiVersion") or "v1"),
            kind=str(spec.get("kind")),
            name=str(metadata.get("name") or ""),
            namespace=metadata.get("namespace"),
        )

    def __str__(self) -> str:
        if self.namespace:
            return f"{self.kind} {self.namespace}/{self.name}"
        return f"{self.kind} {self.name}"


@dataclass
class ApplyFailure:
    """A resource that could not be read, created or patched."""
    resource: ResourceRef
    operation: str  # read, create, patch
    message: str

    def __str__(self) -> str:
        return f"{self.resource}: {self.operation} failed: {self.message}"


@dataclass
class ApplyOutcome:
    """Everything that happened while applying one or more documents."""
    applied: List[Dict[str, Any]] = field(default_factory=list)
    created: List[ResourceRef] = field(default_factory=list)
    patched: List[ResourceRef] = field(default_factory=list)
    failures: List[ApplyFailure] = field(default_factory=list)

    def merge(self, other: "ApplyOutcome") -> None:
        self.applied.extend(other.applied)
        self.created.extend(other.created)
        self.patched.extend(other.patched)
        self.failures.extend(other.failures)


@dataclass
class ReconciliationResult:
    """Summary of one render-then-apply pass for an AppTemplate."""
    template: Optional[AppTemplateRef] = None
    documents: int = 0
    render_errors: List[str] = field(default_factory=list)
    outcome: ApplyOutcome = field(default_factory=ApplyOutcome)
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None and not self.render_errors and not self.outcome.failures

    @property
    def phase(self) -> str:
        return "Ready" if self.succeeded else "Degraded"
