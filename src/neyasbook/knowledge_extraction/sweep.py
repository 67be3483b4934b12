"""Sweep Engine - incremental chapter -> entity profile extraction."""
import logging
from dataclasses import dataclass, field
from typing import List

from ..errors import ExtractionFailure, InvalidRequestError, UpstreamFailure
from ..models import EntityProfile, ExtractedEntity, ManifestNode, TimelineEntry, CanonicalFact
from ..storage.project_store import ProjectStore
from ..text_projection import doc_to_text, natural_sort_key
from .entity_extractor import EntityExtractor

logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    scanned: int = 0
    skipped: int = 0
    failed: int = 0
    failed_chapters: List[str] = field(default_factory=list)

    @property
    def message(self) -> str:
        message = f"Archie has finished weaving. Scanned: {self.scanned}, Skipped: {self.skipped}."
        if self.failed:
            message += f" Failed: {self.failed}."
        return message


def merge_extracted_entity(profile: EntityProfile, extracted: ExtractedEntity,
                           chapter: ManifestNode) -> EntityProfile:
    """
    Fold one chapter's extraction into a profile, in place.

    Facts are deduplicated on their exact text, whichever chapter first
    recorded them. The chapter's timeline entry is overwritten, never
    duplicated, and the timeline stays in numeric-aware chapter order.
    """
    profile.name = extracted.name
    profile.type = extracted.type

    for fact in extracted.new_facts:
        if not profile.has_fact(fact):
            profile.canonical_facts.append(CanonicalFact(fact=fact, chapter_id=chapter.id))

    entry = profile.timeline_entry(chapter.id)
    if entry:
        entry.status = extracted.status
        entry.motivation = extracted.motivation
        entry.chapter_title = chapter.title
    else:
        profile.timeline.append(TimelineEntry(
            chapter_id=chapter.id,
            chapter_title=chapter.title,
            status=extracted.status,
            motivation=extracted.motivation,
        ))
    profile.timeline.sort(key=lambda item: natural_sort_key(item.chapter_id))
    return profile


class SweepEngine:
    """Walks a project's chapters in manifest order and updates entity profiles."""

    def __init__(self, store: ProjectStore, extractor: EntityExtractor):
        self.store = store
        self.extractor = extractor

    def sweep(self, project_id: str) -> SweepResult:
        """
        Sweep every changed chapter of a project.

        A missing manifest raises NotFoundError and aborts the sweep; a failing
        chapter is logged and left unmarked so the next sweep retries it.
        """
        manifest = self.store.load_manifest(project_id)
        sweep_meta = self.store.load_sweep_metadata(project_id)
        chapters = manifest.chapters()
        result = SweepResult()

        logger.info(f"[Sweep] Starting sweep for {len(chapters)} chapters in project: {project_id}")

        for chapter in chapters:
            try:
                self._sweep_chapter(project_id, chapter, sweep_meta, result)
            except (ExtractionFailure, UpstreamFailure, InvalidRequestError) as e:
                result.failed += 1
                result.failed_chapters.append(chapter.id)
                logger.error(f"[Sweep] Failed to process chapter {chapter.title!r} ({chapter.id}): {e}")

        self.store.save_sweep_metadata(project_id, sweep_meta)
        logger.info(f"[Sweep] Done for {project_id}: scanned={result.scanned} "
                    f"skipped={result.skipped} failed={result.failed}")
        return result

    def _sweep_chapter(self, project_id: str, chapter: ManifestNode, sweep_meta: dict,
                       result: SweepResult) -> None:
        if not self.store.chapter_exists(project_id, chapter.id):
            return

        marker = self.store.chapter_marker(project_id, chapter.id)
        if sweep_meta.get(chapter.id) == marker:
            result.skipped += 1
            return

        text = self._project_chapter(project_id, chapter)
        if not text:
            # Empty chapters count as processed
            sweep_meta[chapter.id] = marker
            return

        logger.info(f"[Sweep] Scanning Chapter: {chapter.title}")
        result.scanned += 1
        payload = self.extractor.extract(chapter.id, chapter.title, text)

        for extracted in payload.entities:
            self._merge_entity(project_id, extracted, chapter)

        sweep_meta[chapter.id] = marker

    def _project_chapter(self, project_id: str, chapter: ManifestNode) -> str:
        doc = self.store.load_chapter(project_id, chapter.id)
        if not isinstance(doc, dict):
            raise ExtractionFailure("Chapter document is not a JSON object", chapter_id=chapter.id)
        try:
            return doc_to_text(doc)
        except (AttributeError, TypeError, ValueError) as e:
            raise ExtractionFailure(f"Chapter document could not be projected: {e}", chapter_id=chapter.id)

    def _merge_entity(self, project_id: str, extracted: ExtractedEntity, chapter: ManifestNode) -> None:
        entity_id = extracted.entity_id
        profile = self.store.find_profile(project_id, entity_id)
        if profile is None:
            profile = EntityProfile(id=entity_id, name=extracted.name, type=extracted.type)

        merge_extracted_entity(profile, extracted, chapter)
        self.store.save_profile(project_id, profile)
        if self.store.upsert_index_entry(project_id, profile):
            logger.debug(f"[Sweep] Index updated for {entity_id}")
