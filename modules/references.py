"""Interpolation and deferred reference module for infragraph.

Stack properties may embed ${...} expressions. Expressions whose head is
"var" or "secret" are substituted while the graph is built. Expressions whose
head is a resource id become deferred Reference values that are only resolved
by the apply engine, after the dependency has produced its outputs.

    "${var.project}"                -> value of variable 'project'
    "${gcp-infra-cluster.endpoint}" -> Reference('gcp-infra-cluster', ('endpoint',))
    "https://${cluster.endpoint}"   -> Template(['https://', Reference(...)])
    "$${literal}"                   -> "${literal}"
"""

import re
from typing import Any, Callable, List, Sequence, Tuple, Union

from modules.exceptions import TemplateError

PathPart = Union[str, int]

# Resource ids and keys may contain dashes, e.g. gcp-infra-network
HEAD_PATTERN = re.compile(r"^([A-Za-z_][\w\-/]*)")
SEGMENT_PATTERN = re.compile(r"\.([A-Za-z_][\w\-/]*)|\[(\d+)\]")

BUILD_TIME_HEADS = ("var", "secret")


class _Unavailable:
    """Marker for an output whose source resource never reached 'applied'."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "<unavailable>"

    def __str__(self) -> str:
        return "<unavailable>"

    def __bool__(self) -> bool:
        return False


UNAVAILABLE = _Unavailable()


class Reference:
    """Deferred pointer at an output of another resource."""

    __slots__ = ("resource_id", "path")

    def __init__(self, resource_id: str, path: Sequence[PathPart] = ()):
        self.resource_id = resource_id
        self.path = tuple(path)

    def expression(self) -> str:
        text = self.resource_id
        for part in self.path:
            text += f"[{part}]" if isinstance(part, int) else f".{part}"
        return "${" + text + "}"

    def __eq__(self, other: Any) -> bool:
        return (
            isinstance(other, Reference)
            and self.resource_id == other.resource_id
            and self.path == other.path
        )

    def __hash__(self) -> int:
        return hash((self.resource_id, self.path))

    def __repr__(self) -> str:
        return f"Reference({self.expression()})"


class Template:
    """String with one or more embedded references, rendered after apply."""

    __slots__ = ("parts",)

    def __init__(self, parts: List[Union[str, Reference]]):
        self.parts = list(parts)

    @property
    def references(self) -> List[Reference]:
        return [p for p in self.parts if isinstance(p, Reference)]

    def text(self) -> str:
        out = ""
        for part in self.parts:
            if isinstance(part, Reference):
                out += part.expression()
            else:
                out += part.replace("${", "$${")
        return out

    def __eq__(self, other: Any) -> bool:
        return isinstance(other, Template) and self.parts == other.parts

    def __hash__(self) -> int:
        return hash(tuple(self.parts))

    def __repr__(self) -> str:
        return f"Template({self.text()!r})"


def split_template(text: str) -> List[Tuple[str, str]]:
    """Split a string into ('literal', text) and ('expr', expression) chunks.

    Args:
        text: Raw string from the stack file

    Returns:
        Ordered list of chunks. Escaped "$${" comes back as a literal "${".

    Raises:
        TemplateError: On an unterminated or empty expression
    """
    chunks: List[Tuple[str, str]] = []
    literal = ""
    i = 0
    while i < len(text):
        if text.startswith("$${", i):
            literal += "${"
            i += 3
            continue
        if text.startswith("${", i):
            end = text.find("}", i + 2)
            if end == -1:
                raise TemplateError(
                    "Unterminated interpolation", context={"text": text}
                )
            expr = text[i + 2 : end].strip()
            if not expr:
                raise TemplateError("Empty interpolation", context={"text": text})
            if literal:
                chunks.append(("literal", literal))
                literal = ""
            chunks.append(("expr", expr))
            i = end + 1
            continue
        literal += text[i]
        i += 1
    if literal:
        chunks.append(("literal", literal))
    return chunks


def parse_expression(expr: str) -> Tuple[str, Tuple[PathPart, ...]]:
    """Parse 'head.key[0].other' into ('head', ('key', 0, 'other')).

    Raises:
        TemplateError: If the expression is not a dotted path
    """
    match = HEAD_PATTERN.match(expr)
    if not match:
        raise TemplateError("Malformed interpolation", context={"expression": expr})
    head = match.group(1)
    rest = expr[match.end() :]
    path: List[PathPart] = []
    pos = 0
    for segment in SEGMENT_PATTERN.finditer(rest):
        if segment.start() != pos:
            break
        key, index = segment.groups()
        path.append(key if key is not None else int(index))
        pos = segment.end()
    if pos != len(rest):
        raise TemplateError("Malformed interpolation", context={"expression": expr})
    return head, tuple(path)


def interpolate(value: Any, lookup: Callable[[str, Tuple[PathPart, ...]], Any]) -> Any:
    """Substitute build-time expressions and defer resource references.

    Walks dicts and lists recursively. For every expression, lookup(head, path)
    is called when head is 'var' or 'secret'; any other head becomes a
    Reference. A string made of exactly one expression keeps the native type
    of the substituted value.

    Args:
        value: Property value from the stack file
        lookup: Callable resolving build-time expressions

    Returns:
        Value with build-time expressions replaced, references deferred
    """
    if isinstance(value, dict):
        return {k: interpolate(v, lookup) for k, v in value.items()}
    if isinstance(value, list):
        return [interpolate(v, lookup) for v in value]
    if not isinstance(value, str) or "${" not in value:
        return value

    chunks = split_template(value)
    parts: List[Union[str, Reference]] = []
    for kind, chunk in chunks:
        if kind == "literal":
            parts.append(chunk)
            continue
        head, path = parse_expression(chunk)
        if head in BUILD_TIME_HEADS:
            substituted = lookup(head, path)
            if len(chunks) == 1:
                return substituted
            parts.append(str(substituted))
        else:
            parts.append(Reference(head, path))

    if len(parts) == 1 and isinstance(parts[0], Reference):
        return parts[0]
    merged: List[Union[str, Reference]] = []
    for part in parts:
        if isinstance(part, str) and merged and isinstance(merged[-1], str):
            merged[-1] += part
        else:
            merged.append(part)
    if all(isinstance(p, str) for p in merged):
        return "".join(merged)
    return Template(merged)


def collect_references(value: Any) -> List[Reference]:
    """Return every Reference inside a (possibly nested) property value."""
    found: List[Reference] = []
    if isinstance(value, Reference):
        found.append(value)
    elif isinstance(value, Template):
        found.extend(value.references)
    elif isinstance(value, dict):
        for v in value.values():
            found.extend(collect_references(v))
    elif isinstance(value, list):
        for v in value:
            found.extend(collect_references(v))
    return found


def get_path(data: Any, path: Sequence[PathPart]) -> Any:
    """Walk dict keys and list indexes.

    Raises:
        LookupError: If any step of the path is missing
    """
    current = data
    for part in path:
        if isinstance(part, int):
            if not isinstance(current, list) or part >= len(current):
                raise LookupError(part)
            current = current[part]
        else:
            if not isinstance(current, dict) or part not in current:
                raise LookupError(part)
            current = current[part]
    return current


def resolve(value: Any, lookup: Callable[[Reference], Any]) -> Any:
    """Replace deferred references with concrete values.

    Args:
        value: Property value possibly holding References and Templates
        lookup: Callable returning the concrete value of a Reference.
            It may raise LookupError, which propagates.

    Returns:
        Fully concrete value
    """
    if isinstance(value, Reference):
        return lookup(value)
    if isinstance(value, Template):
        rendered = ""
        for part in value.parts:
            rendered += str(lookup(part)) if isinstance(part, Reference) else part
        return rendered
    if isinstance(value, dict):
        return {k: resolve(v, lookup) for k, v in value.items()}
    if isinstance(value, list):
        return [resolve(v, lookup) for v in value]
    return value


def render(value: Any) -> Any:
    """Return a printable/serializable form with references shown as ${...}."""
    if isinstance(value, Reference):
        return value.expression()
    if isinstance(value, Template):
        return value.text()
    if isinstance(value, dict):
        return {k: render(v) for k, v in value.items()}
    if isinstance(value, list):
        return [render(v) for v in value]
    return value
