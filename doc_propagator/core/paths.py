"""Document path templating.

Templates are `/`-separated document paths whose identifier segments may be
replaced by `{name}` placeholders, e.g. ``lang/{lang}/places/{placeID}``.
Collections always sit at even segment positions.
"""

from __future__ import annotations

import re
from functools import lru_cache

from doc_propagator.core.exceptions import PathTemplateError

# Matches {name} placeholders; a placeholder never spans a separator or nests
_PLACEHOLDER_PATTERN = re.compile(r"{[^/{}]*}")

# Capture used in place of each placeholder when matching concrete paths
_SEGMENT_CAPTURE = "([^/]+)"


def normalize_path(path: str) -> str:
    """Strip leading/trailing separators and collapse empty segments."""
    return "/".join(segment for segment in path.split("/") if segment)


def segments(path: str) -> list[str]:
    normalized = normalize_path(path)
    return normalized.split("/") if normalized else []


def join_path(*parts: str) -> str:
    """Join path fragments into a single normalized path."""
    return normalize_path("/".join(parts))


def is_document_path(path: str) -> bool:
    count = len(segments(path))
    return count > 0 and count % 2 == 0


def is_collection_path(path: str) -> bool:
    return len(segments(path)) % 2 == 1


def parent_collection(path: str) -> str:
    """Return the collection path containing the document at *path*."""
    parts = segments(path)
    if len(parts) < 2 or len(parts) % 2 != 0:
        raise PathTemplateError(path, "not a document path")
    return "/".join(parts[:-1])


def document_id(path: str) -> str:
    parts = segments(path)
    if not parts:
        raise PathTemplateError(path, "empty path")
    return parts[-1]


@lru_cache(maxsize=256)
def _placeholders(template: str) -> tuple[str, ...]:
    names: list[str] = []
    for token in _PLACEHOLDER_PATTERN.findall(template):
        name = token[1:-1]
        if name:
            names.append(name)
    return tuple(names)


def extract_placeholders(template: str) -> list[str]:
    """Return placeholder names in order of appearance. ``{}`` is ignored."""
    return list(_placeholders(template))


def has_placeholders(path: str) -> bool:
    return bool(_placeholders(path))


def resolve(template: str, binding: dict[str, str]) -> str:
    """Substitute every bound ``{name}`` in *template*.

    Names absent from *binding* are left as literal text; callers that need a
    concrete path must check with :func:`has_placeholders`.
    """
    result = normalize_path(template)
    for name in _placeholders(template):
        if name in binding:
            result = result.replace("{" + name + "}", str(binding[name]))
    return result


@lru_cache(maxsize=256)
def _compile_template(template: str) -> re.Pattern[str]:
    """Build an anchored regex with one capture group per placeholder."""
    normalized = normalize_path(template)
    parts: list[str] = []
    last_end = 0
    for token in _PLACEHOLDER_PATTERN.finditer(normalized):
        start, end = token.span()
        parts.append(re.escape(normalized[last_end:start]))
        # Empty braces are literal text, not a placeholder
        if token.group() == "{}":
            parts.append(re.escape(token.group()))
        else:
            parts.append(_SEGMENT_CAPTURE)
        last_end = end
    parts.append(re.escape(normalized[last_end:]))
    return re.compile("".join(parts))


def matches(path: str, template: str) -> bool:
    """Return True if *path* is an instance of *template*."""
    return _compile_template(template).fullmatch(normalize_path(path)) is not None


def match(path: str, template: str) -> dict[str, str]:
    """Extract the parameter binding of *path* against *template*.

    Returns an empty dict when the path does not match.
    """
    found = _compile_template(template).fullmatch(normalize_path(path))
    if found is None:
        return {}
    return dict(zip(_placeholders(template), found.groups(), strict=True))


def collection_segments(path: str) -> list[str]:
    """Return the collection names (even-indexed segments) of *path*."""
    return [segment for index, segment in enumerate(segments(path)) if index % 2 == 0]
