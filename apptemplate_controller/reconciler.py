"""Render-then-apply pipeline for a single AppTemplate."""

import asyncio
import logging
from pathlib import Path
from typing import Any, List, Mapping, Optional, Sequence, Tuple, Union

from apptemplate_controller.applier import ResourceApplier
from apptemplate_controller.collector import collect
from apptemplate_controller.context import build_context
from apptemplate_controller.exceptions import AppTemplateControllerError, RenderError
from apptemplate_controller.models import (
    AppTemplateRef,
    AppTemplateSpec,
    ApplyFailure,
    ApplyOutcome,
    ReconciliationResult,
    ResourceRef,
    TemplateDocument,
)
from apptemplate_controller.ordering import order_documents
from apptemplate_controller.renderer import VariablePolicy, render_all

logger = logging.getLogger(__name__)


class Reconciler:
    """Renders the bundles selected by an AppTemplate and applies them.

    Holds no state between passes, so concurrent passes for different
    AppTemplates only share the cluster client.
    """

    def __init__(self, cluster, configs_dir: Union[str, Path],
                 policy: VariablePolicy = VariablePolicy.PERMISSIVE,
                 include_environment: bool = True,
                 environ: Optional[Mapping[str, str]] = None):
        """Initialize the reconciler.

        Args:
            cluster: Cluster Access Provider with awaitable read/create/patch
            configs_dir: Root directory of the bundle tree
            policy: Handling of placeholders missing from the variable context
            include_environment: Overlay environment variables into the context
            environ: Environment to use instead of ``os.environ``
        """
        self.applier = ResourceApplier(cluster)
        self.configs_dir = Path(configs_dir)
        self.policy = policy
        self.include_environment = include_environment
        self.environ = environ

    async def render(self, spec: AppTemplateSpec) -> Tuple[List[TemplateDocument], List[RenderError]]:
        """Build the variable context, collect the selected files and render them."""
        context = build_context(spec, self.environ, self.include_environment)
        paths = await asyncio.to_thread(collect, self.configs_dir, spec.configs_to_use, spec.service_name)
        logger.debug("Collected %d template files for service %s", len(paths), spec.service_name)
        return await render_all(paths, context, self.policy)

    async def reconcile(self, spec: AppTemplateSpec,
                        template: Optional[AppTemplateRef] = None) -> ReconciliationResult:
        """Render and apply everything selected by ``spec``.

        Namespace documents are applied first and joined before any other
        document is submitted. Documents inside a phase are applied
        concurrently. Failures are recorded in the result, never raised.
        """
        result = ReconciliationResult(template=template)
        label = template.key if template else spec.service_name

        try:
            documents, render_errors = await self.render(spec)
        except AppTemplateControllerError as e:
            logger.error("Cannot render templates for %s: %s", label, e.message)
            result.error = e.message
            return result

        result.documents = len(documents)
        result.render_errors = [error.message for error in render_errors]
        logger.info("Reconciling %s: %d documents", label, len(documents))

        for phase in order_documents(documents):
            result.outcome.merge(await self.apply_phase(phase))

        outcome = result.outcome
        logger.info(
            "Reconciled %s: %d created, %d patched, %d failed",
            label, len(outcome.created), len(outcome.patched), len(outcome.failures),
        )
        return result

    async def apply_phase(self, documents: Sequence[TemplateDocument]) -> ApplyOutcome:
        """Apply documents concurrently and wait until every one has finished."""
        results = await asyncio.gather(
            *(self.applier.apply(document.rendered_content) for document in documents),
            return_exceptions=True,
        )

        outcome = ApplyOutcome()
        for document, document_result in zip(documents, results):
            if isinstance(document_result, ApplyOutcome):
                outcome.merge(document_result)
                continue
            if isinstance(document_result, asyncio.CancelledError):
                raise document_result

            logger.error("Unexpected error applying %s: %s", document.path, document_result)
            ref = ResourceRef(api_version="", kind=document.type, name=document.path.name)
            outcome.failures.append(ApplyFailure(resource=ref, operation="apply", message=str(document_result)))
        return outcome

    async def reconcile_object(self, obj: Mapping[str, Any]) -> ReconciliationResult:
        """Reconcile an AppTemplate custom resource object as received from the API."""
        template = AppTemplateRef.from_object(obj)
        try:
            spec = AppTemplateSpec.from_dict(obj.get("spec"))
        except AppTemplateControllerError as e:
            logger.error("Skipping AppTemplate %s: %s", template.key, e.message)
            return ReconciliationResult(template=template, error=e.message)

        return await self.reconcile(spec, template)
