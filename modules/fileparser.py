"""File parser module for infragraph.

This module locates and parses stack definitions. A stack can be given as a
local directory, a single file, an https URL of a file or a git repository.
YAML (.yaml/.yml), JSON (.json) and HCL2 (.hcl) stack files are supported and
all map onto the same stack dictionary:

    {"name": ..., "variables": {...}, "secrets": {...},
     "resources": {id: {...}}, "outputs": {name: expr}}
"""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional

import click
import hcl2
import requests
import yaml

import modules.gitlibs as gitlibs
from modules.exceptions import ConfigError

logger = logging.getLogger(__name__)

# Searched in this order when the source is a directory
STACK_FILENAMES: List[str] = [
    "infragraph.yaml",
    "infragraph.yml",
    "infragraph.json",
    "infragraph.hcl",
]
STACK_SUFFIX = ".stack.yaml"
STACK_EXTENSIONS = (".yaml", ".yml", ".json", ".hcl")
STACK_SECTIONS = ["variables", "secrets", "resources", "outputs"]
DOWNLOAD_TIMEOUT = 30

temp_dir: tempfile.TemporaryDirectory = tempfile.TemporaryDirectory(
    dir=tempfile.gettempdir()
)


class _UniqueKeyLoader(yaml.SafeLoader):
    """SafeLoader that rejects duplicate mapping keys instead of keeping the last."""


def _construct_unique_mapping(loader, node, deep=False):
    seen = set()
    for key_node, _ in node.value:
        key = loader.construct_object(key_node, deep=deep)
        if key in seen:
            raise ConfigError(
                f"Duplicate key '{key}'",
                context={"line": key_node.start_mark.line + 1},
            )
        seen.add(key)
    return loader.construct_mapping(node, deep=deep)


_UniqueKeyLoader.add_constructor(
    yaml.resolver.BaseResolver.DEFAULT_MAPPING_TAG, _construct_unique_mapping
)


def find_stack_file(directory: str) -> str:
    """Find the stack file inside a directory.

    Args:
        directory: Directory to search

    Returns:
        Path of the first infragraph.* file, else the first *.stack.yaml

    Raises:
        ConfigError: If the directory holds no stack file
    """
    for name in STACK_FILENAMES:
        candidate = os.path.join(directory, name)
        if os.path.isfile(candidate):
            return candidate
    for name in sorted(os.listdir(directory)):
        if name.lower().endswith(STACK_SUFFIX):
            return os.path.join(directory, name)
    raise ConfigError(
        "No stack file found. Use --source to point at a directory holding "
        f"{' or '.join(STACK_FILENAMES)} (or *{STACK_SUFFIX}), a stack file, "
        "or a git/https URL",
        context={"directory": directory},
    )


def _unquote(value: Any) -> Any:
    """Strip the quotes some python-hcl2 releases keep around block labels."""
    if isinstance(value, str) and len(value) >= 2 and value[0] == value[-1] == '"':
        return value[1:-1]
    return value


def _clean_hcl(value: Any) -> Any:
    """Drop parser metadata keys and unquote strings in parsed HCL."""
    if isinstance(value, dict):
        return {
            _unquote(k): _clean_hcl(v)
            for k, v in value.items()
            if not str(k).startswith("__")
        }
    if isinstance(value, list):
        return [_clean_hcl(v) for v in value]
    return _unquote(value)


def _blocks(parsed: Dict[str, Any], kind: str) -> List[Dict[str, Any]]:
    blocks = parsed.get(kind) or []
    return blocks if isinstance(blocks, list) else [blocks]


def _set_unique(section: Dict[str, Any], key: str, value: Any, kind: str) -> None:
    if key in section:
        raise ConfigError(f"Duplicate {kind} '{key}'", context={kind: key})
    section[key] = value


def hcl_to_stack(parsed: Dict[str, Any]) -> Dict[str, Any]:
    """Map parsed HCL2 blocks onto the stack dictionary.

    HCL layout:
        name = "gcp-infra"
        variable "region" { default = "asia-southeast1" }
        secret "postgresPassword" { env = "POSTGRES_PASSWORD" }
        resource "gcp:compute:Network" "gcp-infra-network" {
          properties = { project = "${var.project}" }
        }
        output "clusterEndpoint" { value = "${gcp-infra-cluster.endpoint}" }

    Raises:
        ConfigError: On duplicate ids or malformed blocks
    """
    parsed = _clean_hcl(parsed)
    stack: Dict[str, Any] = {section: {} for section in STACK_SECTIONS}
    if parsed.get("name"):
        stack["name"] = parsed["name"]

    for kind, section in (("variable", "variables"), ("secret", "secrets")):
        for block in _blocks(parsed, kind):
            for key, body in block.items():
                _set_unique(stack[section], key, body or {}, kind)

    for block in _blocks(parsed, "resource"):
        for resource_type, labelled in block.items():
            if not isinstance(labelled, dict):
                raise ConfigError(
                    f"resource block '{resource_type}' needs a type and an id label"
                )
            for resource_id, body in labelled.items():
                decl = dict(body or {})
                decl["type"] = resource_type
                if "depends_on" in decl and "dependsOn" not in decl:
                    decl["dependsOn"] = decl.pop("depends_on")
                _set_unique(stack["resources"], resource_id, decl, "resource")

    for block in _blocks(parsed, "output"):
        for key, body in block.items():
            if not isinstance(body, dict) or "value" not in body:
                raise ConfigError(f"output '{key}' needs a value", context={"output": key})
            _set_unique(stack["outputs"], key, body["value"], "output")
    return stack


def _parse_hcl(text: str, filename: str) -> Dict[str, Any]:
    try:
        return hcl2.loads(text)
    except Exception as e:
        # python-hcl2 surfaces lark parse errors of several types
        raise ConfigError(
            f"Cannot parse HCL stack file: {type(e).__name__}: {e}",
            context={"file": filename},
        ) from e


def parse_stack_text(text: str, filename: str) -> Dict[str, Any]:
    """Parse stack file content according to the file extension.

    Args:
        text: File content
        filename: Name used to pick the format and in error messages

    Returns:
        Stack dictionary

    Raises:
        ConfigError: If the content is not a valid stack document
    """
    extension = Path(filename).suffix.lower()
    try:
        if extension == ".json":
            stack = json.loads(text, object_pairs_hook=_unique_pairs)
        elif extension == ".hcl":
            stack = hcl_to_stack(_parse_hcl(text, filename))
        else:
            stack = yaml.load(text, Loader=_UniqueKeyLoader)
    except ConfigError as e:
        e.context.setdefault("file", filename)
        raise
    except (yaml.YAMLError, json.JSONDecodeError) as e:
        raise ConfigError(f"Cannot parse stack file: {e}", context={"file": filename}) from e

    if not isinstance(stack, dict):
        raise ConfigError("Stack file must contain a mapping", context={"file": filename})
    for section in STACK_SECTIONS:
        if stack.get(section) is None:
            stack[section] = {}
        elif not isinstance(stack[section], dict):
            raise ConfigError(
                f"'{section}' must be a mapping", context={"file": filename}
            )
    stack.setdefault("name", Path(filename).name.split(".")[0])
    return stack


def _unique_pairs(pairs: List[tuple]) -> Dict[str, Any]:
    result: Dict[str, Any] = {}
    for key, value in pairs:
        if key in result:
            raise ConfigError(f"Duplicate key '{key}'")
        result[key] = value
    return result


def download_stack(url: str) -> Dict[str, Any]:
    """Fetch a stack file over https.

    Raises:
        ConfigError: On network errors or a non-2xx response
    """
    click.echo(f"  Downloading stack file {url}")
    try:
        response = requests.get(url, timeout=DOWNLOAD_TIMEOUT)
        response.raise_for_status()
    except requests.RequestException as e:
        raise ConfigError(f"Cannot download stack file: {e}", context={"url": url}) from e
    return parse_stack_text(response.text, url.split("?")[0])


def read_stack_file(path: str) -> Dict[str, Any]:
    with click.open_file(path, "r", encoding="utf8") as f:
        text = f.read()
    logger.debug(f"Read {len(text)} bytes from {path}")
    return parse_stack_text(text, path)


def load_stack(source: Optional[str] = None) -> Dict[str, Any]:
    """Load the stack definition from any supported source.

    Args:
        source: Directory, stack file, https URL or git URL
            (default: current directory)

    Returns:
        Stack dictionary ready for graphmaker.build()

    Raises:
        ConfigError: If nothing usable is found or the file does not parse
    """
    source = (source or os.getcwd()).strip()
    click.echo(click.style("\nLoading Stack..", fg="white", bold=True))

    if os.path.isdir(source):
        path = find_stack_file(source)
    elif os.path.isfile(source):
        path = source
    elif source.startswith(("https://", "http://")) and (
        source.split("?")[0].lower().endswith(STACK_EXTENSIONS)
        and "//" not in source.split("://", 1)[1]
    ):
        return download_stack(source)
    elif gitlibs.is_git_source(source):
        path = find_stack_file(gitlibs.clone_files(source, temp_dir.name))
    else:
        raise ConfigError("Stack source not found", context={"source": source})

    click.echo(f"  Using stack file: {path}")
    return read_stack_file(path)
