"""
Knowledge Extraction - Package initialization
"""
from .entity_extractor import EntityExtractor
from .sweep import SweepEngine, SweepResult, merge_extracted_entity
from .context_builder import (
    EDITOR_TOOLS,
    EditorPersona,
    PersonaContextBuilder,
    PromptContext,
    RoleplayPersona,
    parse_persona,
    scope_profile,
)

__all__ = [
    'EntityExtractor',
    'SweepEngine',
    'SweepResult',
    'merge_extracted_entity',
    'EDITOR_TOOLS',
    'EditorPersona',
    'PersonaContextBuilder',
    'PromptContext',
    'RoleplayPersona',
    'parse_persona',
    'scope_profile',
]
