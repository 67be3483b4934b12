"""Per-project document access on top of a BlobStore."""
import hashlib
import json
import logging
import re
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from ..errors import InvalidRequestError, NotFoundError, UpstreamFailure
from ..models import (
    ChatTranscript,
    EntityProfile,
    EntitySummary,
    Manifest,
    Project,
)
from .blob_store import BlobStore

logger = logging.getLogger(__name__)

PROJECTS_PREFIX = "projects/"
SWEEP_METADATA_NAME = "last_processed"
_SAFE_ID = re.compile(r"^[A-Za-z0-9_\-][A-Za-z0-9_.\-]*$")


def validate_id(value: str, kind: str = "id") -> str:
    """Project, chapter and entity ids become key segments, so keep them plain."""
    if not isinstance(value, str) or not _SAFE_ID.match(value) or ".." in value:
        raise InvalidRequestError(f"Invalid {kind}: {value!r}")
    return value


class ProjectStore:
    """
    Reads and writes the JSON documents of one storage namespace.

    Layout per project (under ``projects/{project_id}/``):
        manifest.json
        chapters/{chapter_id}.json
        entities/index.json
        entities/profiles/{entity_id}.json
        chat.json
        sweeps/last_processed.json

    Nothing is cached: every call goes back to the blob store.
    """

    def __init__(self, blob_store: BlobStore):
        self.blobs = blob_store

    # --- Keys ---

    def project_prefix(self, project_id: str) -> str:
        return f"{PROJECTS_PREFIX}{validate_id(project_id, 'project id')}/"

    def manifest_key(self, project_id: str) -> str:
        return self.project_prefix(project_id) + "manifest.json"

    def chapter_key(self, project_id: str, chapter_id: str) -> str:
        return self.project_prefix(project_id) + f"chapters/{validate_id(chapter_id, 'chapter id')}.json"

    def index_key(self, project_id: str) -> str:
        return self.project_prefix(project_id) + "entities/index.json"

    def profile_key(self, project_id: str, entity_id: str) -> str:
        return self.project_prefix(project_id) + f"entities/profiles/{validate_id(entity_id, 'entity id')}.json"

    def chat_key(self, project_id: str) -> str:
        return self.project_prefix(project_id) + "chat.json"

    def sweep_key(self, project_id: str) -> str:
        return self.project_prefix(project_id) + f"sweeps/{SWEEP_METADATA_NAME}.json"

    # --- Raw JSON helpers ---

    def read_json(self, key: str) -> Any:
        raw = self.blobs.read(key)
        try:
            return json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise UpstreamFailure(f"Stored document {key} is not valid JSON: {e}")

    def read_json_or_default(self, key: str, default: Any) -> Any:
        try:
            return self.read_json(key)
        except NotFoundError:
            return default

    def write_json(self, key: str, data: Any) -> None:
        self.blobs.write(key, json.dumps(data, indent=2, ensure_ascii=False).encode("utf-8"))

    def _parse(self, model, data: Any, key: str):
        try:
            return model.model_validate(data)
        except ValidationError as e:
            raise UpstreamFailure(f"Stored document {key} does not match {model.__name__}: {e}")

    # --- Projects ---

    def list_projects(self) -> List[Project]:
        project_ids = []
        for key in self.blobs.list(PROJECTS_PREFIX):
            match = re.match(r"^projects/([^/]+)/", key)
            if match and match.group(1) not in project_ids:
                project_ids.append(match.group(1))

        projects = []
        for project_id in project_ids:
            try:
                manifest = self.load_manifest(project_id)
                projects.append(Project(
                    id=project_id,
                    title=manifest.title or project_id,
                    description=manifest.description or "",
                ))
            except NotFoundError:
                projects.append(Project(id=project_id, title=project_id))
            except (UpstreamFailure, InvalidRequestError) as e:
                logger.warning(f"Could not load project info for {project_id}: {e}")
        return projects

    def create_project(self, project_id: str, title: str = "", description: str = "") -> Project:
        manifest = Manifest.default(title or project_id, description or "")
        self.save_manifest(project_id, manifest)
        logger.info(f"Project '{project_id}' created")
        return Project(id=project_id, title=manifest.title, description=manifest.description)

    def delete_project(self, project_id: str) -> int:
        keys = self.blobs.list(self.project_prefix(project_id))
        if not keys:
            raise NotFoundError(f"Project not found: {project_id}")
        for key in keys:
            self.blobs.delete(key)
        logger.info(f"Project '{project_id}' deleted ({len(keys)} documents)")
        return len(keys)

    # --- Manifest ---

    def load_manifest(self, project_id: str) -> Manifest:
        key = self.manifest_key(project_id)
        return self._parse(Manifest, self.read_json(key), key)

    def save_manifest(self, project_id: str, manifest: Manifest) -> None:
        self.write_json(self.manifest_key(project_id), manifest.to_json_dict())

    # --- Chapters ---

    def chapter_exists(self, project_id: str, chapter_id: str) -> bool:
        return self.blobs.exists(self.chapter_key(project_id, chapter_id))

    def read_chapter_bytes(self, project_id: str, chapter_id: str) -> bytes:
        return self.blobs.read(self.chapter_key(project_id, chapter_id))

    def load_chapter(self, project_id: str, chapter_id: str) -> Dict[str, Any]:
        return self.read_json(self.chapter_key(project_id, chapter_id))

    def save_chapter(self, project_id: str, chapter_id: str, doc: Dict[str, Any]) -> None:
        self.write_json(self.chapter_key(project_id, chapter_id), doc)

    def delete_chapter(self, project_id: str, chapter_id: str) -> None:
        self.blobs.delete(self.chapter_key(project_id, chapter_id))

    def chapter_marker(self, project_id: str, chapter_id: str) -> str:
        """Content hash of the stored chapter; changes whenever the chapter does."""
        return hashlib.sha256(self.read_chapter_bytes(project_id, chapter_id)).hexdigest()

    # --- Entities ---

    def load_index(self, project_id: str) -> List[EntitySummary]:
        key = self.index_key(project_id)
        data = self.read_json_or_default(key, [])
        if not isinstance(data, list):
            raise UpstreamFailure(f"Stored document {key} is not a list")
        return [self._parse(EntitySummary, item, key) for item in data]

    def save_index(self, project_id: str, index: List[EntitySummary]) -> None:
        self.write_json(self.index_key(project_id), [entry.to_json_dict() for entry in index])

    def load_profile(self, project_id: str, entity_id: str) -> EntityProfile:
        key = self.profile_key(project_id, entity_id)
        return self._parse(EntityProfile, self.read_json(key), key)

    def find_profile(self, project_id: str, entity_id: str) -> Optional[EntityProfile]:
        try:
            return self.load_profile(project_id, entity_id)
        except NotFoundError:
            return None

    def save_profile(self, project_id: str, profile: EntityProfile) -> None:
        self.write_json(self.profile_key(project_id, profile.id), profile.to_json_dict())

    def upsert_index_entry(self, project_id: str, profile: EntityProfile) -> bool:
        """
        Make sure the index lists ``profile`` with its current name and type.

        Returns True when the index had to be written.
        """
        index = self.load_index(project_id)
        for entry in index:
            if entry.id == profile.id:
                if entry.name == profile.name and entry.type == profile.type:
                    return False
                entry.name = profile.name
                entry.type = profile.type
                break
        else:
            index.append(EntitySummary(id=profile.id, name=profile.name, type=profile.type))
        self.save_index(project_id, index)
        return True

    # --- Chat transcript ---

    def load_transcript(self, project_id: str) -> ChatTranscript:
        key = self.chat_key(project_id)
        return self._parse(ChatTranscript, self.read_json_or_default(key, {"messages": []}), key)

    def save_transcript(self, project_id: str, transcript: ChatTranscript) -> None:
        self.write_json(self.chat_key(project_id), transcript.to_json_dict())

    # --- Sweep metadata ---

    def load_sweep_metadata(self, project_id: str) -> Dict[str, str]:
        data = self.read_json_or_default(self.sweep_key(project_id), {})
        return data if isinstance(data, dict) else {}

    def save_sweep_metadata(self, project_id: str, metadata: Dict[str, str]) -> None:
        self.write_json(self.sweep_key(project_id), metadata)
