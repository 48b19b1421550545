"""AppTemplate controller - renders manifest bundles from AppTemplate resources and applies them."""

__version__ = "0.1.0"

from apptemplate_controller.models import (
    AppTemplateRef,
    AppTemplateSpec,
    ApplyFailure,
    ApplyOutcome,
    ReconciliationResult,
    ResourceRef,
    TemplateDocument,
)

__all__ = [
    "AppTemplateRef",
    "AppTemplateSpec",
    "ApplyFailure",
    "ApplyOutcome",
    "ReconciliationResult",
    "ResourceRef",
    "TemplateDocument",
]
