# ============================================================================
# PAYLOAD CODEC
# ============================================================================
# EPOCH: 1 - FUNCTION POLLING
# STATUS: Core - Wire encoding for job arguments and results
# PURPOSE: Pack/unpack values and split binary leaves into blobs
# CREATED: 19 OCT 2026
# ============================================================================
"""
Payload Codec

Wire format for job arguments and results:

    pack(value)   -> '{"value": <value as JSON>}'
    unpack(text)  -> value

Binary leaves (bytes, bytearray, memoryview, Blob) can not travel inline,
so results pass through extract_blobs() first. Each binary leaf is
replaced by a placeholder {"$blob": "<name>"} and returned as a Blob that
is persisted separately against the job id. Placeholders keep sibling
keys and list positions intact; insert_blobs() reverses the extraction.

Handlers return named, typed binary values with blob():

    return {"report": blob(pdf_bytes, name="report.pdf", type="application/pdf")}
"""

import base64
import copy
import json
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Set, Tuple, Union

from pydantic import BaseModel, TypeAdapter

from core.errors import InvalidDataType, MalformedPayload

BLOB_REF_KEY = "$blob"
DEFAULT_BLOB_TYPE = "application/octet-stream"

PathPart = Union[str, int]

_JSON_LEAVES = TypeAdapter(Any)


# ============================================================================
# PACK / UNPACK
# ============================================================================

def _default(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def pack(value: Any) -> str:
    """
    Serialize a value into the wire envelope.

    Raises:
        InvalidDataType if the value is not JSON-representable
    """
    try:
        return json.dumps({"value": value}, allow_nan=False, default=_default)
    except (TypeError, ValueError) as e:
        raise InvalidDataType(str(e))


def unpack(text: Union[str, bytes]) -> Any:
    """
    Inverse of pack().

    Raises:
        MalformedPayload if text is not a packed envelope
    """
    if not isinstance(text, (str, bytes, bytearray)):
        raise MalformedPayload(
            f"Packed payload must be a string, got {type(text).__name__}"
        )

    try:
        data = json.loads(text)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise MalformedPayload(f"Packed payload is not valid JSON: {e}")

    if not isinstance(data, dict) or "value" not in data:
        raise MalformedPayload("Packed payload must be an object with a 'value' key")

    return data["value"]


# ============================================================================
# BLOBS
# ============================================================================

@dataclass
class Blob:
    """A binary value transmitted out of band, keyed by job id."""
    data: bytes
    name: Optional[str] = None
    type: str = DEFAULT_BLOB_TYPE
    path: Tuple[PathPart, ...] = field(default=())

    @property
    def size(self) -> int:
        return len(self.data)

    def to_wire(self) -> Dict[str, Any]:
        """Body for the create-blob call."""
        return {
            "name": self.name,
            "type": self.type,
            "encoding": "base64",
            "size": self.size,
            "data": base64.b64encode(self.data).decode("ascii"),
        }


def blob(
    data: Union[bytes, bytearray, memoryview, str],
    name: Optional[str] = None,
    type: str = DEFAULT_BLOB_TYPE,
) -> Blob:
    """Wrap binary data returned by a handler as a named blob."""
    if isinstance(data, str):
        data = data.encode("utf-8")
    return Blob(data=bytes(data), name=name, type=type)


@dataclass
class ExtractedContent:
    """Inline-safe content plus the blobs removed from it."""
    content: Any
    blobs: List[Blob] = field(default_factory=list)


def _path_name(path: Tuple[PathPart, ...]) -> str:
    return ".".join(str(p) for p in path) if path else "root"


def extract_blobs(content: Any) -> ExtractedContent:
    """
    Split binary leaves out of a content tree.

    Walks dicts, lists and tuples depth-first in key order. Content with no
    binary leaves is returned as-is (same object) with no blobs.
    """
    blobs: List[Blob] = []
    used_names: Set[str] = set()

    def take(found: Blob, path: Tuple[PathPart, ...]) -> Dict[str, str]:
        base = found.name or _path_name(path)
        name = base
        suffix = 2
        while name in used_names:
            name = f"{base}-{suffix}"
            suffix += 1
        used_names.add(name)
        blobs.append(replace(found, name=name, path=path))
        return {BLOB_REF_KEY: name}

    def walk(node: Any, path: Tuple[PathPart, ...], in_model: bool = False) -> Any:
        if isinstance(node, Blob):
            return take(node, path)
        if isinstance(node, (bytes, bytearray, memoryview)):
            return take(Blob(data=bytes(node)), path)
        if isinstance(node, BaseModel):
            # Python-mode dump keeps bytes fields extractable; the other
            # leaves get JSON-mode encoding below
            node, in_model = node.model_dump(), True
        if isinstance(node, dict):
            return {key: walk(value, path + (key,), in_model) for key, value in node.items()}
        if isinstance(node, (list, tuple)):
            return [walk(value, path + (index,), in_model) for index, value in enumerate(node)]
        if in_model:
            return _JSON_LEAVES.dump_python(node, mode="json")
        return node

    walked = walk(content, ())
    if not blobs:
        return ExtractedContent(content=content, blobs=[])
    return ExtractedContent(content=walked, blobs=blobs)


def insert_blobs(content: Any, blobs: List[Blob]) -> Any:
    """Put blob data back at the paths it was extracted from."""
    result = copy.deepcopy(content)
    for item in blobs:
        if not item.path:
            result = item.data
            continue
        node = result
        for part in item.path[:-1]:
            node = node[part]
        node[item.path[-1]] = item.data
    return result


def is_blob_ref(value: Any) -> bool:
    return isinstance(value, dict) and len(value) == 1 and BLOB_REF_KEY in value


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "BLOB_REF_KEY",
    "DEFAULT_BLOB_TYPE",
    "pack",
    "unpack",
    "Blob",
    "blob",
    "ExtractedContent",
    "extract_blobs",
    "insert_blobs",
    "is_blob_ref",
]
