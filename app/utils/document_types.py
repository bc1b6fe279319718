"""Document type registry and payload validation.

Each document type stores its content as ``{"format": ..., "data": "<str>"}``
where the format is fixed per type. ``YDMS_DOCUMENT_TYPES`` (a JSON object of
type id to format) replaces the built-in registry.
"""

from typing import Any, Dict, List, Optional

from app.core.config import settings
from app.core.exceptions import ValidationError

CONTENT_FORMATS = ("html", "yaml", "markdown", "json")

# Built-in types, in display order
DOCUMENT_TYPES: List[Dict[str, str]] = [
    {"id": "knowledge_overview_v1", "label": "Knowledge overview", "content_format": "html"},
    {"id": "dictation_v1", "label": "Dictation", "content_format": "yaml"},
    {"id": "markdown_v1", "label": "Markdown", "content_format": "markdown"},
    {"id": "xiaohongshu_cards_v1", "label": "Xiaohongshu cards", "content_format": "html"},
    {"id": "xiaohongshu_card_images_v1", "label": "Xiaohongshu card images", "content_format": "json"},
]


def document_type_formats() -> Dict[str, str]:
    """Type id -> expected content format."""
    if settings.documents.types:
        return dict(settings.documents.types)
    return {item["id"]: item["content_format"] for item in DOCUMENT_TYPES}


def valid_document_types() -> List[str]:
    return list(document_type_formats())


def validate_document_type(doc_type: str) -> None:
    if doc_type not in document_type_formats():
        raise ValidationError(
            f"invalid document type: {doc_type}. Valid types: {valid_document_types()}"
        )


def validate_document_content(content: Optional[Dict[str, Any]], doc_type: str) -> None:
    """Check ``content`` against the format registered for ``doc_type``.

    Empty content is allowed.

    Raises:
        ValidationError: On an unknown type or a malformed content object
    """
    validate_document_type(doc_type)
    if content is None:
        return

    if "format" not in content:
        raise ValidationError("invalid content: content must have 'format' field")
    content_format = content["format"]
    if not isinstance(content_format, str):
        raise ValidationError("invalid content: content.format must be a string")

    expected = document_type_formats()[doc_type]
    if content_format != expected:
        raise ValidationError(
            f"invalid content: content format '{content_format}' does not match "
            f"expected format '{expected}' for type '{doc_type}'"
        )

    if "data" not in content:
        raise ValidationError("invalid content: content must have 'data' field")
    if not isinstance(content["data"], str):
        raise ValidationError("invalid content: content.data must be a string")


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def validate_document_metadata(metadata: Optional[Dict[str, Any]]) -> None:
    """Validate the well-known metadata keys.

    ``difficulty`` must be 1-5, ``tags`` a list, and every ``references``
    entry needs a positive ``document_id`` plus string ``title`` and
    ``added_at``. A null ``references`` is a merge-patch delete and passes.

    Raises:
        ValidationError: On the first offending key
    """
    if not metadata:
        return

    if "difficulty" in metadata:
        difficulty = metadata["difficulty"]
        if not _is_number(difficulty):
            raise ValidationError("invalid metadata: difficulty must be a number")
        if difficulty < 1 or difficulty > 5:
            raise ValidationError("invalid metadata: difficulty must be between 1 and 5")

    if "tags" in metadata and not isinstance(metadata["tags"], list):
        raise ValidationError("invalid metadata: tags must be an array")

    references = metadata.get("references")
    if references is None:
        return
    if not isinstance(references, list):
        raise ValidationError("invalid metadata: references must be an array")

    for i, entry in enumerate(references):
        if not isinstance(entry, dict):
            raise ValidationError(f"invalid metadata: references[{i}] must be an object")
        if "document_id" not in entry:
            raise ValidationError(f"invalid metadata: references[{i}] must have document_id field")
        if not _is_number(entry["document_id"]):
            raise ValidationError(f"invalid metadata: references[{i}].document_id must be a number")
        if entry["document_id"] <= 0:
            raise ValidationError(f"invalid metadata: references[{i}].document_id must be positive")
        for key in ("title", "added_at"):
            if key not in entry:
                raise ValidationError(f"invalid metadata: references[{i}] must have {key} field")
            if not isinstance(entry[key], str):
                raise ValidationError(f"invalid metadata: references[{i}].{key} must be a string")
