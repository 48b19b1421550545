"""Variable context used for placeholder substitution."""

import os
from typing import Dict, Mapping, Optional

from apptemplate_controller.models import AppTemplateSpec, scalar_to_str

SCALAR_TYPES = (str, int, float, bool)


def build_context(spec: AppTemplateSpec, environ: Optional[Mapping[str, str]] = None,
                  include_environment: bool = True) -> Dict[str, str]:
    """Merge environment, spec fields and template variables into one lookup table.

    Precedence, lowest first: ambient environment, top-level scalar fields of
    the AppTemplate spec, ``templateVariables``. Later sources win on key
    collisions.

    Args:
        spec: Parsed AppTemplate spec
        environ: Environment to overlay first. Defaults to ``os.environ``
        include_environment: Skip the environment overlay when False

    Returns:
        Flat mapping of placeholder name to replacement value
    """
    context: Dict[str, str] = {}

    if include_environment:
        context.update(os.environ if environ is None else environ)

    for key, value in spec.raw.items():
        if isinstance(value, SCALAR_TYPES):
            context[str(key)] = scalar_to_str(value)
    context["serviceName"] = spec.service_name

    context.update(spec.template_variables)
    return context
