"""
Plain-text projection of rich-text chapter documents.

``doc_to_text`` flattens an editor document for prompting; it drops marks and
formatting, so it is not meant to round-trip. ``text_to_doc`` materializes
LLM-written prose into paragraphs and horizontal rules. The patch helpers
apply accepted editor suggestions to a copy of a document.
"""
import copy
import re
from typing import Any, Dict, List

from .errors import PatchApplicationFailure
from .models import FULL_CHAPTER_REFORMAT, Suggestion

SCENE_BREAK = "---"
_WHITESPACE = re.compile(r"\s+")
_NUMERIC_CHUNKS = re.compile(r"(\d+)")


def doc_to_text(doc: Dict[str, Any]) -> str:
    """
    Depth-first projection of a document tree to flat text.

    Nodes that are not objects, and ``content`` that is not a list, are skipped.
    """
    if not doc or not isinstance(doc, dict) or not isinstance(doc.get("content"), list):
        return ""
    parts: List[str] = []

    def ends_with_newline() -> bool:
        return bool(parts) and parts[-1].endswith("\n")

    def walk(node: Any) -> None:
        if not isinstance(node, dict):
            return
        node_type = node.get("type")
        if node_type == "text":
            text = node.get("text")
            parts.append(text if isinstance(text, str) else "")
        elif node_type == "hardBreak":
            parts.append("\n")
        elif node_type == "horizontalRule":
            # The rule always sits on a line of its own
            if parts and not ends_with_newline():
                parts.append("\n")
            parts.append(SCENE_BREAK + "\n")
        children = node.get("content")
        if isinstance(children, list):
            for child in children:
                walk(child)
        if node_type == "paragraph":
            parts.append("\n\n")

    for node in doc["content"]:
        walk(node)
    return "".join(parts).strip()


def text_to_doc(text: str) -> Dict[str, Any]:
    """Build a document from flat text: blank lines split paragraphs, '---' is a rule."""
    nodes: List[Dict[str, Any]] = []
    if not text:
        return {"type": "doc", "content": nodes}

    paragraph: List[str] = []

    def flush() -> None:
        if paragraph:
            nodes.append({
                "type": "paragraph",
                "content": [{"type": "text", "text": " ".join(paragraph)}],
            })
            paragraph.clear()

    for line in text.split("\n"):
        stripped = line.strip()
        if stripped == SCENE_BREAK:
            flush()
            nodes.append({"type": "horizontalRule"})
        elif not stripped:
            flush()
        else:
            paragraph.append(stripped)
    flush()
    return {"type": "doc", "content": nodes}


def normalize_whitespace(text: str) -> str:
    return _WHITESPACE.sub(" ", text)


def _text_nodes(node: Any):
    if not isinstance(node, dict):
        return
    if isinstance(node.get("text"), str):
        yield node
    children = node.get("content")
    if isinstance(children, list):
        for child in children:
            yield from _text_nodes(child)


def apply_patch(doc: Dict[str, Any], original: str, suggested: str) -> Dict[str, Any]:
    """
    Replace the first occurrence of ``original`` in the document's text nodes.

    Exact matching is tried across the whole document before falling back to a
    whitespace-normalized match. Returns a patched copy; ``doc`` is untouched.

    Raises:
        PatchApplicationFailure: if ``original`` cannot be found either way.
    """
    if not original:
        raise PatchApplicationFailure("Nothing to replace: the original text is empty.")
    patched = copy.deepcopy(doc) if doc else {"type": "doc", "content": []}

    for node in _text_nodes(patched):
        if original in node["text"]:
            node["text"] = node["text"].replace(original, suggested, 1)
            return patched

    normalized_original = normalize_whitespace(original)
    for node in _text_nodes(patched):
        normalized_text = normalize_whitespace(node["text"])
        if normalized_original in normalized_text:
            node["text"] = normalized_text.replace(normalized_original, suggested, 1)
            return patched

    raise PatchApplicationFailure(
        "Archie's patch failed! The target text seems to have shifted or vanished."
    )


def append_text(doc: Dict[str, Any], suggested: str) -> Dict[str, Any]:
    """Return a copy of ``doc`` with ``suggested`` appended as new paragraphs."""
    new_nodes = text_to_doc(suggested)["content"]
    if not new_nodes:
        raise PatchApplicationFailure("Archie's suggestion is empty! Nothing to append.")
    appended = copy.deepcopy(doc) if doc else {"type": "doc", "content": []}
    appended.setdefault("type", "doc")
    appended.setdefault("content", [])
    appended["content"].extend(new_nodes)
    return appended


def reformat(suggested: str) -> Dict[str, Any]:
    if not suggested or not suggested.strip():
        raise PatchApplicationFailure("Archie's reformat suggestion is empty! Keeping original text.")
    return text_to_doc(suggested)


def apply_suggestion(doc: Dict[str, Any], suggestion: Suggestion) -> Dict[str, Any]:
    """Dispatch an accepted suggestion: full reformat, append, or patch."""
    if suggestion.original == FULL_CHAPTER_REFORMAT:
        return reformat(suggestion.suggested)
    if not suggestion.original:
        return append_text(doc, suggestion.suggested)
    return apply_patch(doc, suggestion.original, suggestion.suggested)


def natural_sort_key(value: str):
    """Sort key that orders '2' before '10' and 'ch2' before 'ch10'."""
    key = []
    # re.split with a capture group puts the digit runs at odd positions
    for position, chunk in enumerate(_NUMERIC_CHUNKS.split(value or "")):
        if not chunk:
            continue
        if position % 2:
            key.append((0, int(chunk), chunk))
        else:
            key.append((1, 0, chunk.lower()))
    return key
