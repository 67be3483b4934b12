"""
Entity Extractor - asks the sweep model which characters, places and
institutions a chapter mentions, and what it reveals about them.
"""
import logging

from pydantic import ValidationError

from ..errors import ExtractionFailure, UpstreamFailure
from ..models import ExtractionPayload

logger = logging.getLogger(__name__)

EXTRACTION_SYSTEM_PROMPT = """You are the World Weaver. Extract all characters, places, and institutions from the following chapter.
For each entity, provide:
- Name (Clear and consistent)
- Type (character, place, institution, or object)
- Status (A brief summary of their actions or status in this chapter)
- Motivation (Their primary goal in this specific chapter)
- NewFacts (A list of short canonical facts revealed about them)

Return strictly valid JSON in this format:
{
  "entities": [
    { "name": "...", "type": "...", "status": "...", "motivation": "...", "newFacts": ["...", "..."] }
  ]
}"""


def _strip_markdown_code_blocks(content: str) -> str:
    content = content.strip()
    if content.startswith("```json"):
        content = content[7:]
    if content.startswith("```"):
        content = content[3:]
    if content.endswith("```"):
        content = content[:-3]
    return content.strip()


class EntityExtractor:
    """Runs one extraction call per chapter and validates the reply."""

    def __init__(self, llm_client):
        """
        Args:
            llm_client: an ``OpenAIChatClient`` (or anything with the same
                ``complete(messages, json_mode=...)`` method) for the sweep model.
        """
        self.llm = llm_client

    def build_messages(self, chapter_title: str, text: str):
        return [
            {"role": "system", "content": EXTRACTION_SYSTEM_PROMPT},
            {"role": "user", "content": f'Chapter Title: "{chapter_title}"\n\nContent:\n{text}'},
        ]

    def extract(self, chapter_id: str, chapter_title: str, text: str) -> ExtractionPayload:
        """
        Extract entity deltas from one chapter.

        Raises:
            ExtractionFailure: the call failed, or the reply is not a valid payload.
        """
        try:
            result = self.llm.complete(self.build_messages(chapter_title, text), json_mode=True)
        except UpstreamFailure as e:
            raise ExtractionFailure(f"Extraction call failed: {e}", chapter_id=chapter_id)
        except Exception as e:  # noqa: BLE001 - downstream clients can raise varied errors
            raise ExtractionFailure(f"Extraction call failed unexpectedly: {e!r}", chapter_id=chapter_id)

        raw = _strip_markdown_code_blocks(result.get("content") or "")
        if not raw:
            raise ExtractionFailure("Extraction call returned an empty reply", chapter_id=chapter_id)
        try:
            payload = ExtractionPayload.model_validate_json(raw)
        except ValidationError as e:
            logger.debug(f"[Sweep] Raw extraction reply was: {raw[:200]}")
            raise ExtractionFailure(f"Malformed extraction payload: {e}", chapter_id=chapter_id)

        logger.info(f"[Sweep] Chapter {chapter_id}: {len(payload.entities)} entities extracted")
        return payload
