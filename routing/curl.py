"""Compiles a user-pasted ``curl`` invocation into a reusable request template.

Users describe their own backend by pasting a shell command such as::

    curl https://api.example.com/v1/chat/completions \\
      -H "Authorization: Bearer sk-..." \\
      -d '{"messages": [{"role": "user", "content": "{{TEXT}}"}]}'

The command is parsed once, when the endpoint is saved. At generation time
the ``{{NAME}}`` placeholders are substituted through the URL, every header
value and every string inside the JSON body, and the answer is pulled out of
the JSON reply with a dot-path such as ``choices[0].message.content``.
"""
import base64
import json
import re
import shlex
from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, Field

from core.errors import TemplateCompileError

# Placeholder vocabulary. These names are part of the user-facing contract.
PLACEHOLDER_TEXT = "TEXT"
PLACEHOLDER_PROMPT = "PROMPT"
PLACEHOLDER_SYSTEM_PROMPT = "SYSTEM_PROMPT"
PLACEHOLDER_USER_MESSAGE = "USER_MESSAGE"
PLACEHOLDER_CONTEXT = "CONTEXT"
PLACEHOLDER_IMAGE_BASE64 = "IMAGE_BASE64"

PLACEHOLDERS = (
    PLACEHOLDER_TEXT,
    PLACEHOLDER_PROMPT,
    PLACEHOLDER_SYSTEM_PROMPT,
    PLACEHOLDER_USER_MESSAGE,
    PLACEHOLDER_CONTEXT,
    PLACEHOLDER_IMAGE_BASE64,
)

DEFAULT_RESPONSE_PATH = "choices[0].message.content"

PLACEHOLDER_PATTERN = re.compile(r"\{\{\s*([A-Z_][A-Z0-9_]*)\s*\}\}")

_METHOD_FLAGS = {"-X", "--request"}
_HEADER_FLAGS = {"-H", "--header"}
_DATA_FLAGS = {"-d", "--data", "--data-raw", "--data-binary", "--data-ascii", "--json"}
_URL_FLAGS = {"--url"}
_USER_FLAGS = {"-u", "--user"}
# Flags that take a value we do not need.
_IGNORED_VALUE_FLAGS = {
    "-m", "--max-time", "--connect-timeout", "-o", "--output", "-A", "--user-agent",
    "-e", "--referer", "--retry", "-w", "--write-out",
}
_PATH_TOKEN = re.compile(r"([^.\[\]]+)|\[(\d+)\]")


class CompiledRequest(BaseModel):
    """The structured request a template compiles to."""
    method: str = "POST"
    url: str
    headers: Dict[str, str] = Field(default_factory=dict)
    body: Any = None


class CustomEndpointTemplate(BaseModel):
    """A saved user-defined endpoint."""
    id: str
    display_name: str
    raw_invocation: str
    compiled: CompiledRequest
    response_path: Optional[str] = None


def compile_invocation(raw: str) -> CompiledRequest:
    """Parse a curl command line into a :class:`CompiledRequest`.

    Raises:
        TemplateCompileError: if the command is not a usable curl invocation.
    """
    if not raw or not raw.strip():
        raise TemplateCompileError("Invocation is empty")

    # Shell line continuations
    text = raw.replace("\\\r\n", " ").replace("\\\n", " ")
    try:
        tokens = shlex.split(text)
    except ValueError as e:
        raise TemplateCompileError(f"Could not tokenize invocation: {e}") from e

    if not tokens or tokens[0] != "curl":
        raise TemplateCompileError("Invocation must start with 'curl'")

    method: Optional[str] = None
    url: Optional[str] = None
    headers: Dict[str, str] = {}
    data_parts: List[str] = []
    json_flag = False

    it = iter(tokens[1:])
    for token in it:
        flag, inline_value = _split_inline(token)
        if flag in _METHOD_FLAGS:
            method = _next_value(it, flag, inline_value).upper()
        elif flag in _HEADER_FLAGS:
            name, value = _parse_header(_next_value(it, flag, inline_value))
            headers[name] = value
        elif flag in _DATA_FLAGS:
            data_parts.append(_next_value(it, flag, inline_value))
            json_flag = json_flag or flag == "--json"
        elif flag in _URL_FLAGS:
            url = _next_value(it, flag, inline_value)
        elif flag in _USER_FLAGS:
            credentials = _next_value(it, flag, inline_value).encode("utf-8")
            headers["Authorization"] = "Basic " + base64.b64encode(credentials).decode("ascii")
        elif flag in _IGNORED_VALUE_FLAGS:
            _next_value(it, flag, inline_value)
        elif token.startswith("-"):
            # Boolean switches such as -s, -L, -N, --compressed
            continue
        elif url is None:
            url = token
        else:
            raise TemplateCompileError(f"Unexpected argument {token!r}")

    if not url:
        raise TemplateCompileError("Invocation has no URL")
    if not re.match(r"^(https?://|\{\{)", url):
        raise TemplateCompileError(f"URL must be http(s): {url!r}")

    body = None
    if data_parts:
        raw_body = "&".join(data_parts)
        try:
            body = json.loads(raw_body)
        except json.JSONDecodeError as e:
            raise TemplateCompileError(f"Request body is not valid JSON: {e.msg}") from e
        if json_flag:
            headers.setdefault("Content-Type", "application/json")
            headers.setdefault("Accept", "application/json")

    if body is not None and not _has_header(headers, "content-type"):
        headers["Content-Type"] = "application/json"

    return CompiledRequest(method=method or "POST", url=url, headers=headers, body=body)


def compile_template(
    endpoint_id: str,
    display_name: str,
    raw_invocation: str,
    response_path: Optional[str] = None,
) -> CustomEndpointTemplate:
    if not endpoint_id or not endpoint_id.strip():
        raise TemplateCompileError("Endpoint id cannot be empty")
    return CustomEndpointTemplate(
        id=endpoint_id.strip(),
        display_name=(display_name or endpoint_id).strip(),
        raw_invocation=raw_invocation,
        compiled=compile_invocation(raw_invocation),
        response_path=(response_path or "").strip() or None,
    )


def substitute(value: Any, variables: Mapping[str, str]) -> Any:
    """Deep-replace ``{{NAME}}`` markers in strings, dicts and lists.

    Substitution runs on the parsed body, which is serialized with
    ``json.dumps`` afterwards, so quotes and newlines in a prompt stay valid
    JSON. Unknown names are left as is.
    """
    if isinstance(value, str):
        return PLACEHOLDER_PATTERN.sub(lambda m: variables.get(m.group(1), m.group(0)), value)
    if isinstance(value, dict):
        return {k: substitute(v, variables) for k, v in value.items()}
    if isinstance(value, list):
        return [substitute(v, variables) for v in value]
    return value


def render(compiled: CompiledRequest, variables: Mapping[str, str]) -> CompiledRequest:
    return CompiledRequest(
        method=compiled.method,
        url=substitute(compiled.url, variables),
        headers=substitute(compiled.headers, variables),
        body=substitute(compiled.body, variables),
    )


def find_placeholders(value: Any) -> List[str]:
    """Every ``{{NAME}}`` marker still present anywhere in ``value``."""
    if isinstance(value, str):
        return PLACEHOLDER_PATTERN.findall(value)
    if isinstance(value, dict):
        return [name for v in value.values() for name in find_placeholders(v)]
    if isinstance(value, list):
        return [name for v in value for name in find_placeholders(v)]
    if isinstance(value, BaseModel):
        return find_placeholders(value.model_dump())
    return []


def extract_path(payload: Any, path: Optional[str] = None) -> str:
    """Walk ``payload`` along a dot-path; stringify the payload if it does not resolve."""
    value = _walk(payload, path or DEFAULT_RESPONSE_PATH)
    if value is None:
        return json.dumps(payload)
    if isinstance(value, str):
        return value
    return json.dumps(value)


def _walk(payload: Any, path: str) -> Any:
    current = payload
    for segment in path.split("."):
        segment = segment.strip()
        if not segment:
            continue
        for name, index in _PATH_TOKEN.findall(segment):
            if name:
                if isinstance(current, dict):
                    current = current.get(name)
                elif isinstance(current, list) and name.isdigit():
                    current = _index(current, int(name))
                else:
                    return None
            else:
                current = _index(current, int(index))
            if current is None:
                return None
    return current


def _index(value: Any, i: int) -> Any:
    if isinstance(value, list) and -len(value) <= i < len(value):
        return value[i]
    return None


def _split_inline(token: str):
    if token.startswith("--") and "=" in token:
        flag, value = token.split("=", 1)
        return flag, value
    return token, None


def _next_value(it, flag: str, inline_value: Optional[str]) -> str:
    if inline_value is not None:
        return inline_value
    try:
        return next(it)
    except StopIteration:
        raise TemplateCompileError(f"Flag {flag} expects a value") from None


def _parse_header(raw: str):
    if ":" not in raw:
        raise TemplateCompileError(f"Header must look like 'Name: value', got {raw!r}")
    name, value = raw.split(":", 1)
    name = name.strip()
    if not name:
        raise TemplateCompileError(f"Header has no name: {raw!r}")
    return name, value.strip()


def _has_header(headers: Mapping[str, str], name: str) -> bool:
    return any(k.lower() == name for k in headers)
