"""Create-or-patch of rendered manifests against the cluster."""

import copy
import json
import logging
import re
from typing import Any, Dict, List

import yaml

from apptemplate_controller.exceptions import (
    AppTemplateControllerError,
    ApplyError,
    ParseError,
    ResourceNotFoundError,
)
from apptemplate_controller.models import ApplyFailure, ApplyOutcome, ResourceRef

logger = logging.getLogger(__name__)

LAST_APPLIED_ANNOTATION = "kubectl.kubernetes.io/last-applied-configuration"

DOCUMENT_SEPARATOR = re.compile(r"^---(?=[ \t]|$)", re.MULTILINE)


def _load_document(text: str) -> Any:
    try:
        return yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ParseError(f"Malformed YAML document: {e}") from e


def is_valid_spec(spec: Any) -> bool:
    """A resource spec needs a non-empty ``kind`` and ``metadata``."""
    return isinstance(spec, dict) and bool(spec.get("kind")) and bool(spec.get("metadata"))


def _load_each(content: str) -> List[Any]:
    documents = []
    for index, text in enumerate(DOCUMENT_SEPARATOR.split(content)):
        try:
            documents.append(_load_document(text))
        except ParseError as e:
            logger.debug("Dropping document %d: %s", index, e.message)
    return documents


def parse_resource_specs(content: str) -> List[Dict[str, Any]]:
    """Parse every YAML document in ``content`` into resource specs.

    The stream is loaded with ``yaml.safe_load_all``. If any document in it
    is malformed, the stream is split on document markers and each part is
    loaded on its own, so the malformed document does not hide its siblings.
    Malformed, empty and incomplete documents are dropped.
    """
    try:
        documents = list(yaml.safe_load_all(content))
    except yaml.YAMLError as e:
        logger.debug("Malformed YAML stream, loading documents separately: %s", e)
        documents = _load_each(content)

    specs = []
    for index, spec in enumerate(documents):
        if is_valid_spec(spec):
            specs.append(spec)
        elif spec is not None:
            logger.debug("Dropping document %d without kind or metadata", index)
    return specs


def stamp_last_applied(spec: Dict[str, Any]) -> Dict[str, Any]:
    """Record the submitted spec in the last-applied-configuration annotation.

    Any previous value is removed first so the annotation never nests itself.
    The spec is modified in place and returned.
    """
    metadata = spec.setdefault("metadata", {})
    annotations = metadata.get("annotations")
    if not isinstance(annotations, dict):
        annotations = {}
        metadata["annotations"] = annotations
    annotations.pop(LAST_APPLIED_ANNOTATION, None)
    annotations[LAST_APPLIED_ANNOTATION] = json.dumps(spec, separators=(",", ":"), default=str)
    return spec


class ResourceApplier:
    """Applies rendered documents with idempotent create-or-patch semantics.

    ``cluster`` is a Cluster Access Provider exposing awaitable ``read``,
    ``create`` and ``patch`` methods that accept a resource spec. ``read``
    must raise :class:`ResourceNotFoundError` when the object does not exist.
    """

    def __init__(self, cluster):
        self.cluster = cluster

    async def apply(self, content: str) -> ApplyOutcome:
        """Apply every resource spec in one rendered document.

        Failures are recorded per resource and never stop the remaining specs.
        """
        outcome = ApplyOutcome()
        for spec in parse_resource_specs(content):
            await self.apply_spec(spec, outcome)
        return outcome

    async def apply_spec(self, spec: Dict[str, Any], outcome: ApplyOutcome) -> None:
        spec = stamp_last_applied(copy.deepcopy(spec))
        ref = ResourceRef.from_spec(spec)

        try:
            await self.cluster.read(spec)
        except ResourceNotFoundError:
            await self._create(spec, ref, outcome)
            return
        except AppTemplateControllerError as e:
            self._record_failure(outcome, ref, "read", e.message)
            return
        except Exception as e:
            self._record_failure(outcome, ref, "read", str(e))
            return

        await self._patch(spec, ref, outcome)

    async def _create(self, spec: Dict[str, Any], ref: ResourceRef, outcome: ApplyOutcome) -> None:
        try:
            response = await self.cluster.create(spec)
        except AppTemplateControllerError as e:
            self._record_failure(outcome, ref, "create", e.message)
            return
        except Exception as e:
            self._record_failure(outcome, ref, "create", str(e))
            return

        logger.info("Created %s", ref)
        outcome.created.append(ref)
        outcome.applied.append(response)

    async def _patch(self, spec: Dict[str, Any], ref: ResourceRef, outcome: ApplyOutcome) -> None:
        try:
            response = await self.cluster.patch(spec)
        except AppTemplateControllerError as e:
            self._record_failure(outcome, ref, "patch", e.message)
            return
        except Exception as e:
            self._record_failure(outcome, ref, "patch", str(e))
            return

        logger.info("Patched %s", ref)
        outcome.patched.append(ref)
        outcome.applied.append(response)

    @staticmethod
    def _record_failure(outcome: ApplyOutcome, ref: ResourceRef, operation: str, message: str) -> None:
        error = ApplyError(str(ref), operation, message)
        logger.error("%s", error.message)
        outcome.failures.append(ApplyFailure(resource=ref, operation=operation, message=message))
