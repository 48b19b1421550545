"""Placeholder substitution for manifest templates."""

import asyncio
import logging
import re
from enum import Enum
from pathlib import Path
from typing import List, Mapping, Sequence, Tuple, Union

from apptemplate_controller.exceptions import RenderError, UnresolvedVariableError
from apptemplate_controller.models import TemplateDocument

logger = logging.getLogger(__name__)

PLACEHOLDER_PATTERN = re.compile(r"\$\{([^{}]+)\}")


class VariablePolicy(str, Enum):
    """What to do with placeholders that have no value in the context."""
    PERMISSIVE = "permissive"  # leave ${name} verbatim
    STRICT = "strict"  # fail the render


def find_placeholders(text: str) -> List[str]:
    """Return the distinct placeholder names in ``text``, in order of appearance."""
    seen = []
    for match in PLACEHOLDER_PATTERN.finditer(text):
        if match.group(1) not in seen:
            seen.append(match.group(1))
    return seen


def substitute(text: str, context: Mapping[str, str], policy: VariablePolicy = VariablePolicy.PERMISSIVE,
               path: str = "<string>") -> str:
    """Replace every ``${key}`` whose key is in ``context`` with its value.

    Substitution is one left-to-right pass over ``text``: inserted values are
    not scanned again, so the result does not depend on key order.

    Raises:
        UnresolvedVariableError: Under the strict policy, if any placeholder has no value
    """
    if policy is VariablePolicy.STRICT:
        missing = [name for name in find_placeholders(text) if name not in context]
        if missing:
            raise UnresolvedVariableError(path, missing)

    def replace(match: "re.Match[str]") -> str:
        value = context.get(match.group(1))
        return match.group(0) if value is None else str(value)

    return PLACEHOLDER_PATTERN.sub(replace, text)


def document_type(path: Union[str, Path]) -> str:
    """Resource type of a manifest file: its name up to the first dot, lower-cased."""
    return Path(path).name.split(".")[0].lower()


def render(path: Union[str, Path], context: Mapping[str, str],
           policy: VariablePolicy = VariablePolicy.PERMISSIVE) -> TemplateDocument:
    """Read one manifest template and substitute its placeholders.

    Raises:
        RenderError: If the file cannot be read or, under the strict policy,
            has unresolved placeholders
    """
    path = Path(path)
    try:
        raw_content = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise RenderError(str(path), str(e)) from e

    return TemplateDocument(
        type=document_type(path),
        path=path,
        raw_content=raw_content,
        rendered_content=substitute(raw_content, context, policy, str(path)),
    )


async def render_all(paths: Sequence[Path], context: Mapping[str, str],
                     policy: VariablePolicy = VariablePolicy.PERMISSIVE) -> Tuple[List[TemplateDocument], List[RenderError]]:
    """Render every file concurrently, off the event loop.

    A failing file is logged and reported in the error list; it never stops
    its siblings from rendering.

    Returns:
        Tuple of (documents in input order, render errors)
    """
    results = await asyncio.gather(
        *(asyncio.to_thread(render, path, context, policy) for path in paths),
        return_exceptions=True,
    )

    documents: List[TemplateDocument] = []
    errors: List[RenderError] = []
    for path, result in zip(paths, results):
        if isinstance(result, RenderError):
            logger.error("%s", result.message)
            errors.append(result)
        elif isinstance(result, BaseException):
            logger.error("Unexpected error rendering %s: %s", path, result)
            errors.append(RenderError(str(path), str(result)))
        else:
            documents.append(result)

    return documents, errors
