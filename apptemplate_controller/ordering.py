"""Apply ordering: namespaces before everything else."""

from typing import List, Sequence

from apptemplate_controller.models import TemplateDocument

NAMESPACE_TYPE = "namespace"


def is_namespace(document: TemplateDocument) -> bool:
    return document.type == NAMESPACE_TYPE


def order_documents(documents: Sequence[TemplateDocument]) -> List[List[TemplateDocument]]:
    """Split documents into apply phases.

    Returns exactly two phases: namespace documents, then all others. The
    first phase must finish before the second starts, since namespaced
    resources cannot be created in a namespace that does not exist yet.
    Order inside a phase carries no meaning.
    """
    namespaces = [document for document in documents if is_namespace(document)]
    others = [document for document in documents if not is_namespace(document)]
    return [namespaces, others]
