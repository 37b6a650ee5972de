"""
Data Services — OpenAPI Synthesizer & Request Validator
=========================================================

What:  Builds the single OpenAPI 3.0 document that drives routing, the docs
       endpoints and request validation.
How:   Service files are parsed with `ast` (never imported here). Every module,
       class or function docstring containing a line `@openapi` (or
       `@swagger`) contributes the YAML that follows that line. All blocks
       are deep-merged into a base document.
Who:   ApiServer builds the document once at construction; the Router
       Builder reads `paths`; RequestValidator checks every request against
       its operation.

Docstring block example:
    def fetch_insert_data(self, request_helper, response_helper):
        \"\"\"
        Return one page of sample rows.

        @openapi
        /data:
          get:
            serviceMethod: InsertData.fetch_insert_data
            serviceMiddlewares: [STANDARD.json]
            parameters:
              - {in: query, name: page, schema: {type: integer, minimum: 1}}
        \"\"\"

Merge rules (after top-level `/...` keys are moved under `paths`):
    mapping + mapping → merged key by key (recursively)
    list + list       → concatenated, skipping items already present
    anything else     → the later block wins
"""

import ast
import copy
import logging
import re
import textwrap
from typing import Any, Dict, Iterable, List, Tuple

import yaml
from jsonschema import Draft4Validator

from data_services.exceptions import OpenApiDefinitionError, ValidationError
from data_services.http.helpers import RequestHelper

logger = logging.getLogger(__name__)

OPENAPI_VERSION = "3.0.1"
HTTP_METHODS = ("get", "put", "post", "delete", "options", "head", "patch", "trace")

_MARKER = re.compile(r"^\s*@(openapi|swagger)\s*$")


# ══════════════════════════════════════════════════════════════════════════
# Document Synthesis
# ══════════════════════════════════════════════════════════════════════════

def base_document(title: str, version: str, description: str = "") -> Dict[str, Any]:
    """Document skeleton every @openapi block is merged into."""
    return {
        "openapi": OPENAPI_VERSION,
        "info": {"title": title, "version": version, "description": description},
        "components": {
            "securitySchemes": {
                "openIdConnect": {
                    "type": "openIdConnect",
                    "openIdConnectUrl": "/.well-known/openid-configuration",
                },
                "accessToken": {"type": "http", "scheme": "bearer"},
            }
        },
        "security": [{"openIdConnect": []}, {"accessToken": []}],
        "paths": {},
    }


def deep_merge(target: Dict[str, Any], source: Dict[str, Any]) -> Dict[str, Any]:
    """Merge `source` into `target` in place and return `target`."""
    for key, value in source.items():
        current = target.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            deep_merge(current, value)
        elif isinstance(current, list) and isinstance(value, list):
            current.extend(item for item in value if item not in current)
        else:
            target[key] = copy.deepcopy(value)
    return target


def _docstrings(tree: ast.Module) -> Iterable[str]:
    module_doc = ast.get_docstring(tree)
    if module_doc:
        yield module_doc
    for node in ast.walk(tree):
        if isinstance(node, (ast.ClassDef, ast.FunctionDef, ast.AsyncFunctionDef)):
            doc = ast.get_docstring(node)
            if doc:
                yield doc


def extract_blocks(source: str, path: str = "<string>") -> List[Dict[str, Any]]:
    """
    Return the parsed @openapi blocks found in the docstrings of `source`.

    Raises:
        OpenApiDefinitionError: a block is not valid YAML or not a mapping
    """
    tree = ast.parse(source, filename=path)
    blocks: List[Dict[str, Any]] = []
    for doc in _docstrings(tree):
        lines = doc.splitlines()
        start = next((i for i, line in enumerate(lines) if _MARKER.match(line)), None)
        if start is None:
            continue
        text = textwrap.dedent("\n".join(lines[start + 1:]))
        if not text.strip():
            continue
        try:
            block = yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise OpenApiDefinitionError(
                message=f"Invalid @openapi block in {path}: {e}",
                context={"path": path},
            )
        if not isinstance(block, dict):
            raise OpenApiDefinitionError(
                message=f"@openapi block in {path} must be a mapping",
                context={"path": path},
            )
        blocks.append(block)
    return blocks


def hoist_path_items(block: Dict[str, Any]) -> Dict[str, Any]:
    """
    Move top-level `/...` keys of a block under `paths`.

    Example:
        {"/data": {...}, "components": {...}}
        → {"paths": {"/data": {...}}, "components": {...}}
    """
    fragment = {
        key: value for key, value in block.items()
        if not (isinstance(key, str) and key.startswith("/"))
    }
    path_items = {
        key: value for key, value in block.items()
        if isinstance(key, str) and key.startswith("/")
    }
    if path_items:
        existing = fragment.get("paths")
        merged = copy.deepcopy(existing) if isinstance(existing, dict) else {}
        fragment["paths"] = deep_merge(merged, path_items)
    return fragment


def synthesize_document(
    paths: Iterable[str],
    title: str,
    version: str,
    description: str = "",
) -> Dict[str, Any]:
    """
    Build the OpenAPI document from the @openapi blocks of every file.

    A block may list path items at its top level (`/data:`) or under
    `paths:`; both end up in `document["paths"]`.

    Args:
        paths: Service source files, in load order.
    Returns:
        The merged document (a plain dict, ready to serialize as JSON).
    """
    document = base_document(title, version, description)
    for path in paths:
        with open(path, encoding="utf-8") as f:
            source = f.read()
        for block in extract_blocks(source, path):
            deep_merge(document, hoist_path_items(block))
    logger.debug(
        "Synthesized OpenAPI document with %d path(s)", len(document.get("paths") or {})
    )
    return document


def iter_operations(document: Dict[str, Any]) -> Iterable[Tuple[str, str, Dict[str, Any]]]:
    """Yield (method, path, operation) for every operation in the document."""
    for path, path_item in (document.get("paths") or {}).items():
        if not isinstance(path_item, dict):
            continue
        for method in HTTP_METHODS:
            operation = path_item.get(method)
            if isinstance(operation, dict):
                yield method, path, operation


# ══════════════════════════════════════════════════════════════════════════
# Request Validation
# ══════════════════════════════════════════════════════════════════════════

def _coerce(value: Any, schema: Dict[str, Any]) -> Any:
    """Convert a raw string parameter to the primitive type its schema names."""
    if not isinstance(value, str):
        return value
    kind = schema.get("type")
    try:
        if kind == "integer" and re.fullmatch(r"[+-]?\d+", value.strip()):
            return int(value)
        if kind == "number":
            return float(value)
    except ValueError:
        return value
    if kind == "boolean" and value.lower() in ("true", "false"):
        return value.lower() == "true"
    return value


def _is_json(media_type: str) -> bool:
    return media_type == "application/json" or media_type.endswith("+json")


class RequestValidator:
    """
    Validates requests against the operations of one OpenAPI document.

    Checks, for the operation matching (method, path):
        - path / query / header / cookie parameters: required + schema
        - JSON request body: required + schema
    `$ref`s into the document (e.g. #/components/schemas/X) are resolved.

    Raises:
        OpenApiDefinitionError: at construction, when a local `$ref`
                                anywhere in the document points nowhere
    """

    def __init__(self, document: Dict[str, Any]):
        self.document = document
        self.check_references()

    def _lookup(self, ref: str) -> Any:
        target: Any = self.document
        for part in ref[2:].split("/"):
            part = part.replace("~1", "/").replace("~0", "~")
            if isinstance(target, list) and part.isdigit() and int(part) < len(target):
                target = target[int(part)]
            elif isinstance(target, dict) and part in target:
                target = target[part]
            else:
                raise OpenApiDefinitionError(
                    message=f"Unresolvable reference {ref} in Open API Definition",
                    context={"ref": ref},
                )
        return target

    def check_references(self) -> None:
        """Resolve every local `$ref` in the document once."""
        pending: List[Any] = [self.document]
        while pending:
            node = pending.pop()
            if isinstance(node, dict):
                ref = node.get("$ref")
                if isinstance(ref, str) and ref.startswith("#/"):
                    self._lookup(ref)
                pending.extend(node.values())
            elif isinstance(node, list):
                pending.extend(node)

    def resolve(self, node: Any) -> Any:
        """Follow local `$ref` pointers until a concrete node is reached."""
        seen = set()
        while isinstance(node, dict) and isinstance(node.get("$ref"), str):
            ref = node["$ref"]
            if ref in seen or not ref.startswith("#/"):
                break
            seen.add(ref)
            node = self._lookup(ref)
        return node

    def _parameters(self, path: str, method: str) -> List[Dict[str, Any]]:
        path_item = (self.document.get("paths") or {}).get(path) or {}
        operation = path_item.get(method) or {}
        merged: Dict[Tuple[str, str], Dict[str, Any]] = {}
        # Operation-level parameters override path-level ones with the same name/location
        for raw in list(path_item.get("parameters") or []) + list(operation.get("parameters") or []):
            param = self.resolve(raw)
            if isinstance(param, dict) and "name" in param and "in" in param:
                merged[(param["in"], param["name"])] = param
        return list(merged.values())

    def _schema_errors(
        self, value: Any, schema: Dict[str, Any], location: str, name: str
    ) -> List[Dict[str, Any]]:
        schema = self.resolve(schema)
        if not schema:
            return []
        # Attach components so nested #/components refs resolve against this root
        root = dict(schema)
        if "components" in self.document and "components" not in root:
            root["components"] = self.document["components"]
        validator = Draft4Validator(root)
        return [
            {
                "location": location,
                "name": name if not error.path else f"{name}.{'.'.join(str(p) for p in error.path)}",
                "message": error.message,
            }
            for error in sorted(validator.iter_errors(value), key=lambda e: list(e.path))
        ]

    async def _body_errors(
        self, request_body: Dict[str, Any], request_helper: RequestHelper
    ) -> List[Dict[str, Any]]:
        content = request_body.get("content") or {}
        media_type = request_helper.content_type

        if request_helper.has_payload:
            # Already parsed by a middleware (STANDARD.json / STANDARD.url)
            payload = request_helper.get_payload()
        elif not (await request_helper.body()).strip():
            payload = None
        else:
            if content and media_type not in content and "*/*" not in content:
                return [
                    {
                        "location": "body",
                        "name": "Content-Type",
                        "message": f"unsupported media type '{media_type or 'none'}', "
                                   f"expected one of: {', '.join(content)}",
                    }
                ]
            if not _is_json(media_type):
                # Only JSON bodies are parsed here; schemas apply to parsed payloads
                return []
            payload = await request_helper.load_payload()

        if payload is None:
            if request_body.get("required"):
                return [{"location": "body", "name": "body", "message": "request body is required"}]
            return []

        media = (
            content.get(media_type)
            or content.get("application/json")
            or next(iter(content.values()), {})
            or {}
        )
        if not isinstance(media, dict) or not media.get("schema"):
            return []
        return self._schema_errors(payload, media["schema"], "body", "body")

    async def validate(self, method: str, path: str, request_helper: RequestHelper) -> None:
        """
        Validate one request.

        Args:
            method: HTTP method (any case)
            path:   The OpenAPI path template the route was built from
        Raises:
            ValidationError: with `errors` = [{location, name, message}, ...]
        """
        method = method.lower()
        operation = ((self.document.get("paths") or {}).get(path) or {}).get(method) or {}
        errors: List[Dict[str, Any]] = []

        sources = {
            "path": request_helper.get_path_params(),
            "query": request_helper.get_query_params(),
            "header": {k.lower(): v for k, v in request_helper.headers.items()},
            "cookie": request_helper.cookies,
        }

        for param in self._parameters(path, method):
            location, name = param["in"], param["name"]
            source = sources.get(location)
            if source is None:
                continue
            key = name.lower() if location == "header" else name
            if key not in source:
                if param.get("required") or location == "path":
                    errors.append(
                        {"location": location, "name": name, "message": f"{name} is required"}
                    )
                continue
            schema = self.resolve(param.get("schema") or {})
            value = _coerce(source[key], schema)
            errors.extend(self._schema_errors(value, schema, location, name))

        request_body = self.resolve(operation.get("requestBody"))
        if isinstance(request_body, dict):
            errors.extend(await self._body_errors(request_body, request_helper))

        if errors:
            raise ValidationError(message="Error while validating request", errors=errors)
