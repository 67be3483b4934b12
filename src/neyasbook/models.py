"""
Document model: manifests, entity profiles, chat transcripts and request bodies.

Everything that is persisted as JSON or received from the LLM goes through one of
these pydantic models. Field names are snake_case in Python and camelCase on the
wire (the frontend and the stored documents use camelCase).
"""
import logging
import re
from typing import Any, Dict, Iterator, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

logger = logging.getLogger(__name__)

EDITOR_PERSONA_ID = "archie"
FULL_CHAPTER_REFORMAT = "FULL_CHAPTER_REFORMAT"
ENTITY_TYPES = ("character", "place", "institution", "object")

# Names the extraction model tends to use instead of our four entity types
ENTITY_TYPE_SYNONYMS = {
    "person": "character",
    "creature": "character",
    "animal": "character",
    "people": "character",
    "location": "place",
    "setting": "place",
    "city": "place",
    "building": "place",
    "organization": "institution",
    "organisation": "institution",
    "faction": "institution",
    "group": "institution",
    "item": "object",
    "artifact": "object",
    "artefact": "object",
}


def entity_id_from_name(name: str) -> str:
    """'Dr. Elias Voss' -> 'dr-elias-voss'."""
    return re.sub(r"[^a-z0-9]+", "-", name.lower())


class CamelModel(BaseModel):
    """Accepts both snake_case and camelCase keys, keeps unknown keys."""
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    def to_json_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


# --- Manifest ---

class ManifestNode(CamelModel):
    id: str
    type: Optional[str] = None
    title: str = ""
    children: Optional[List["ManifestNode"]] = None

    def walk(self) -> Iterator["ManifestNode"]:
        """Depth-first iteration over descendants (not including self)."""
        for child in self.children or []:
            yield child
            yield from child.walk()

    @property
    def is_chapter(self) -> bool:
        # Manifests written before node types existed only hold chapters
        if self.type is None:
            return not self.children
        return self.type == "chapter"


class Manifest(CamelModel):
    title: str = ""
    description: str = ""
    hierarchy: List[ManifestNode] = Field(default_factory=list)

    def nodes(self) -> List[ManifestNode]:
        """Every node below the top-level parts, in presentation order."""
        ordered = []
        for part in self.hierarchy:
            ordered.extend(part.walk())
        return ordered

    def chapters(self) -> List[ManifestNode]:
        return [node for node in self.nodes() if node.is_chapter]

    def node_sequence(self) -> List[str]:
        """Node ids in reading order, used to scope what a persona may know."""
        return [node.id for node in self.nodes()]

    @classmethod
    def default(cls, title: str, description: str = "") -> "Manifest":
        return cls(
            title=title,
            description=description,
            hierarchy=[ManifestNode(
                id="p1",
                type="part",
                title="Volume I",
                children=[ManifestNode(id="1", type="chapter", title="Chapter 1")],
            )],
        )


class Project(CamelModel):
    id: str
    title: str = ""
    description: str = ""


# --- Entities ---

class CanonicalFact(CamelModel):
    fact: str
    chapter_id: Optional[str] = Field(default=None, alias="chapterId")


class TimelineEntry(CamelModel):
    chapter_id: str = Field(alias="chapterId")
    chapter_title: str = Field(default="", alias="chapterTitle")
    status: str = ""
    motivation: str = ""


class EntityProfile(CamelModel):
    id: str
    name: str
    type: str = "character"
    canonical_facts: List[CanonicalFact] = Field(default_factory=list, alias="canonicalFacts")
    timeline: List[TimelineEntry] = Field(default_factory=list)

    @field_validator("canonical_facts", mode="before")
    @classmethod
    def _accept_bare_facts(cls, value):
        # Older profiles stored facts as plain strings
        if isinstance(value, list):
            return [{"fact": item} if isinstance(item, str) else item for item in value]
        return value

    def has_fact(self, fact: str) -> bool:
        return any(existing.fact == fact for existing in self.canonical_facts)

    def timeline_entry(self, chapter_id: str) -> Optional[TimelineEntry]:
        for entry in self.timeline:
            if entry.chapter_id == chapter_id:
                return entry
        return None


class EntitySummary(CamelModel):
    id: str
    name: str
    type: str = "character"


# --- Sweep extraction payload ---

class ExtractedEntity(CamelModel):
    name: str
    type: Literal["character", "place", "institution", "object"]
    status: str = ""
    motivation: str = ""
    new_facts: List[str] = Field(default_factory=list, alias="newFacts")

    @field_validator("name")
    @classmethod
    def _name_has_identity(cls, value: str) -> str:
        value = value.strip()
        if not entity_id_from_name(value).strip("-"):
            raise ValueError("entity name must contain at least one letter or digit")
        return value

    @field_validator("type", mode="before")
    @classmethod
    def _normalize_type(cls, value):
        if isinstance(value, str):
            value = value.strip().lower()
            return ENTITY_TYPE_SYNONYMS.get(value, value)
        return value

    @field_validator("status", "motivation", mode="before")
    @classmethod
    def _none_as_empty(cls, value):
        return "" if value is None else value

    @field_validator("new_facts", mode="before")
    @classmethod
    def _facts_list(cls, value):
        if value is None:
            return []
        return value

    @property
    def entity_id(self) -> str:
        return entity_id_from_name(self.name)


class ExtractionPayload(CamelModel):
    entities: List[ExtractedEntity]

    @field_validator("entities", mode="before")
    @classmethod
    def _drop_invalid_entities(cls, value):
        # One unusable entity must not cost the chapter its other entities
        if not isinstance(value, list):
            return value
        kept = []
        for index, item in enumerate(value):
            try:
                kept.append(ExtractedEntity.model_validate(item))
            except ValidationError as e:
                name = item.get("name") if isinstance(item, dict) else None
                logger.warning(f"[Sweep] Dropping extracted entity #{index} ({name!r}): "
                               f"{e.error_count()} validation error(s)")
        return kept


# --- Chat ---

class Suggestion(CamelModel):
    original: str = ""
    suggested: str = ""


class ChatMessage(CamelModel):
    role: Literal["user", "assistant", "system"]
    content: str = ""
    persona_id: Optional[str] = Field(default=None, alias="personaId")
    suggestion: Optional[Suggestion] = None

    @field_validator("content", mode="before")
    @classmethod
    def _none_as_empty(cls, value):
        return "" if value is None else value

    def to_llm(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}


class ChatTranscript(CamelModel):
    messages: List[ChatMessage] = Field(default_factory=list)
    context_start_index: int = Field(default=0, alias="contextStartIndex")

    @model_validator(mode="after")
    def _clamp_start(self):
        self.context_start_index = max(0, min(self.context_start_index or 0, len(self.messages)))
        return self

    def active_messages(self) -> List[ChatMessage]:
        return self.messages[self.context_start_index:]


class ChatRequest(CamelModel):
    messages: List[ChatMessage] = Field(default_factory=list)
    chapter_content: str = Field(default="", alias="chapterContent")
    chapter_title: str = Field(default="Untitled", alias="chapterTitle")
    selected_text: Optional[str] = Field(default=None, alias="selectedText")
    persona: str = EDITOR_PERSONA_ID
    current_chapter_id: Optional[str] = Field(default=None, alias="currentChapterId")
    referenced_entity_ids: List[str] = Field(default_factory=list, alias="referencedEntityIds")

    @field_validator("chapter_content", "chapter_title", mode="before")
    @classmethod
    def _none_as_default(cls, value, info):
        if value is None:
            return "Untitled" if info.field_name == "chapter_title" else ""
        return value

    @field_validator("referenced_entity_ids", mode="before")
    @classmethod
    def _none_as_list(cls, value):
        return [] if value is None else value
