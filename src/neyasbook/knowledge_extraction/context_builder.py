"""
Context Builder - assembles the system prompt and tool list for one chat turn.

Two personas exist: Archie, the editor demon, who sees the whole chapter and
may propose edits through tools, and roleplay personas, who speak as an entity
and only know what the story has revealed up to the chapter being viewed.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from ..errors import InvalidRequestError, NotFoundError
from ..models import EDITOR_PERSONA_ID, EntityProfile, Manifest
from ..storage.project_store import ProjectStore
from ..text_projection import doc_to_text

logger = logging.getLogger(__name__)

CHAPTER_SNIPPET_CHARS = 1000

EDITOR_TOOLS: List[Dict[str, Any]] = [
    {
        "type": "function",
        "function": {
            "name": "patch_text",
            "description": "Replace a specific segment of the story with new prose.",
            "parameters": {
                "type": "object",
                "properties": {
                    "original": {"type": "string", "description": "The exact text to be replaced."},
                    "suggested": {"type": "string", "description": "The new text to insert."},
                },
                "required": ["original", "suggested"],
            },
        },
    },
    {
        "type": "function",
        "function": {
            "name": "append_text",
            "description": "Add a new paragraph or segment to the end of the current chapter.",
            "parameters": {
                "type": "object",
                "properties": {
                    "suggested": {"type": "string", "description": "The new text to append."},
                },
                "required": ["suggested"],
            },
        },
    },
    {
        "type": "function",
        "function": {
            "name": "reformat_chapter",
            "description": "Complete overhaul of the chapter structure (dialogue breaks, pacing, layout).",
            "parameters": {
                "type": "object",
                "properties": {
                    "updated_content": {"type": "string", "description": "The entire new content for the chapter."},
                },
                "required": ["updated_content"],
            },
        },
    },
]


@dataclass(frozen=True)
class EditorPersona:
    persona_id: str = EDITOR_PERSONA_ID


@dataclass(frozen=True)
class RoleplayPersona:
    entity_id: str

    @property
    def persona_id(self) -> str:
        return self.entity_id


Persona = Union[EditorPersona, RoleplayPersona]


def parse_persona(persona_id: Optional[str]) -> Persona:
    if not persona_id or persona_id == EDITOR_PERSONA_ID:
        return EditorPersona()
    return RoleplayPersona(entity_id=persona_id)


@dataclass
class PromptContext:
    system_prompt: str
    tools: List[Dict[str, Any]] = field(default_factory=list)


def scope_profile(profile: EntityProfile, chapter_sequence: List[str],
                  current_chapter_id: Optional[str]) -> EntityProfile:
    """
    Return a copy of ``profile`` without anything revealed after the current chapter.

    Facts without a chapter are always kept. When the current chapter is not
    part of the sequence nothing is filtered.
    """
    if current_chapter_id not in chapter_sequence:
        return profile.model_copy(deep=True)

    position = {chapter_id: index for index, chapter_id in enumerate(chapter_sequence)}
    current_index = position[current_chapter_id]

    def visible(chapter_id: Optional[str]) -> bool:
        return chapter_id in position and position[chapter_id] <= current_index

    scoped = profile.model_copy(deep=True)
    scoped.canonical_facts = [
        fact for fact in scoped.canonical_facts
        if not fact.chapter_id or visible(fact.chapter_id)
    ]
    scoped.timeline = [entry for entry in scoped.timeline if visible(entry.chapter_id)]
    return scoped


class PersonaContextBuilder:
    """Builds PromptContext objects from a project's stored documents."""

    def __init__(self, store: ProjectStore):
        self.store = store

    def build(self, project_id: str, persona: Persona, chapter_content: str = "",
              chapter_title: str = "Untitled", selected_text: Optional[str] = None,
              current_chapter_id: Optional[str] = None,
              referenced_entity_ids: Optional[List[str]] = None) -> PromptContext:
        if isinstance(persona, EditorPersona):
            lore_context = self.build_lore_context(project_id, referenced_entity_ids or [])
            return PromptContext(
                system_prompt=self._editor_prompt(chapter_content, chapter_title, selected_text, lore_context),
                tools=EDITOR_TOOLS,
            )

        # Roleplay lore goes through the same spoiler filter as the persona itself
        sequence = self._load_chapter_sequence(project_id)
        lore_context = self.build_lore_context(project_id, referenced_entity_ids or [],
                                               chapter_sequence=sequence,
                                               current_chapter_id=current_chapter_id)
        return PromptContext(
            system_prompt=self._roleplay_prompt(project_id, persona, chapter_title, selected_text,
                                                sequence, current_chapter_id, lore_context),
            tools=[],
        )

    # --- Lore context ---

    def build_lore_context(self, project_id: str, referenced_ids: List[str],
                           chapter_sequence: Optional[List[str]] = None,
                           current_chapter_id: Optional[str] = None) -> str:
        """
        Entity profiles win over chapters when an id could name either.

        With a ``chapter_sequence``, entity profiles are scoped to
        ``current_chapter_id``; explicitly referenced chapters are passed as is.
        """
        sections = []
        for ref_id in referenced_ids:
            try:
                profile = self.store.find_profile(project_id, ref_id)
            except InvalidRequestError:
                logger.debug(f"[Chat] Ignoring malformed reference {ref_id!r}")
                continue
            if profile is not None:
                if chapter_sequence is not None:
                    profile = scope_profile(profile, chapter_sequence, current_chapter_id)
                sections.append(self._entity_snippet(profile))
                continue
            try:
                chapter_doc = self.store.load_chapter(project_id, ref_id)
            except NotFoundError:
                logger.debug(f"[Chat] Reference {ref_id!r} matches no entity or chapter")
                continue
            text = doc_to_text(chapter_doc)
            sections.append(
                f"\n[Reference: Chapter Content ({ref_id})]\n"
                f"Summary/Snippet: {text[:CHAPTER_SNIPPET_CHARS]}...\n"
            )
        return "".join(sections)

    @staticmethod
    def _entity_snippet(profile: EntityProfile) -> str:
        facts = ". ".join(fact.fact for fact in profile.canonical_facts)
        snippet = f"\n[Reference: {profile.name} ({profile.type})]\nCanon Facts: {facts}\n"
        if profile.timeline:
            history = "\n".join(f"- Chapter {entry.chapter_id}: {entry.status}" for entry in profile.timeline)
            snippet += f"Timeline History:\n{history}\n"
        return snippet

    # --- Personas ---

    @staticmethod
    def _editor_prompt(chapter_content: str, chapter_title: str, selected_text: Optional[str],
                       lore_context: str) -> str:
        selection = ""
        if selected_text:
            selection = f'The author has SELECTED this specific text for your attention:\n"{selected_text}"\n\n'
        lore = ""
        if lore_context:
            lore = f"=== RELEVANT WORLD LORE (from @mentions) ===\n{lore_context}\n"

        return f"""You are Archie, the Demon of Literature. You are a demanding, eccentric, and enthusiastic editor.

You are currently reviewing Chapter "{chapter_title}" with the author.

=== CURRENT CHAPTER CONTENT ===
{chapter_content or '(Empty chapter - no content yet)'}
=== END OF CHAPTER ===

{selection}{lore}
GUIDELINES:
- You have the FULL chapter content above. Analyze it, critique it, and provide specific feedback.
- When the author asks for your opinion, give concrete observations about what you see in the chapter.
- Be theatrical, demanding, and dramatic in your personality.
  * For structural overhaul (no breaks, poor pacing, or user requested rewrite), use reformat_chapter
  * For "finish this" or continuing the story, use append_text
  * For "rewrite this specific part", use patch_text
- SCENE BREAKS: Use '---' on its own line to indicate a scene break or section divider.
- If the chapter is empty or very short, acknowledge that and ask what the author wants to write about."""

    def _load_chapter_sequence(self, project_id: str) -> List[str]:
        try:
            manifest: Manifest = self.store.load_manifest(project_id)
        except NotFoundError:
            return []
        return manifest.node_sequence()

    def _roleplay_prompt(self, project_id: str, persona: RoleplayPersona, chapter_title: str,
                         selected_text: Optional[str], sequence: List[str], current_chapter_id: Optional[str],
                         lore_context: str) -> str:
        profile = self.store.find_profile(project_id, persona.entity_id)
        if profile is None:
            profile = EntityProfile(id=persona.entity_id, name=persona.entity_id, type="entity")

        if current_chapter_id not in sequence:
            logger.info(f"[Chat] Chapter {current_chapter_id!r} not in manifest, "
                        f"{profile.name} sees the full timeline")
        scoped = scope_profile(profile, sequence, current_chapter_id)

        facts = "\n".join(f"- {fact.fact}" for fact in scoped.canonical_facts)
        timeline = "\n".join(
            f"- Chapter {entry.chapter_id}: {entry.status} (Motivation: {entry.motivation})"
            for entry in scoped.timeline
        )
        selection = ""
        if selected_text:
            selection = f'User (The Author) has SELECTED this text to discuss with you: "{selected_text}"\n'
        lore = ""
        if lore_context:
            lore = f"\nADDITIONAL CONTEXT (User explicitly mentioned these for this message):\n{lore_context}\n"

        return f"""You are roleplaying as {scoped.name}, a {scoped.type} in the story.
Current Chapter Being Viewed: "{chapter_title}" (ID: {current_chapter_id})
{selection}
CHARACTER BRAIN (Canonical Facts):
{facts}

TIMELINE HISTORY (Scoped to current chapter):
{timeline}
{lore}
IMPORTANT:
- Stay strictly in character.
- You DO NOT know anything that happens in chapters after Chapter {current_chapter_id}. This is critical to avoid spoilers.
- Use the Author's prose style but speak as yourself.
- If the Author asks for advice, answer from your character's perspective and desires."""
