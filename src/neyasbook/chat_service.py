"""Chat turns: prompt assembly, the LLM call, and transcript bookkeeping."""
import json
import logging
from typing import Any, Dict, Iterator, List, Optional

from .errors import NeyasbookError, UpstreamFailure
from .knowledge_extraction.context_builder import PersonaContextBuilder, PromptContext, parse_persona
from .models import (
    FULL_CHAPTER_REFORMAT,
    ChatMessage,
    ChatRequest,
    ChatTranscript,
    Suggestion,
)
from .storage.project_store import ProjectStore

logger = logging.getLogger(__name__)


def format_sse(event: str, data: Any) -> str:
    return f"event: {event}\ndata: {json.dumps(data, ensure_ascii=False)}\n\n"


def suggestion_from_tool_calls(tool_calls: List[Dict[str, Any]]) -> Optional[Suggestion]:
    """Turn the first usable editor tool call into a suggestion card."""
    for call in tool_calls or []:
        function = call.get("function") or {}
        try:
            args = json.loads(function.get("arguments") or "{}")
        except json.JSONDecodeError:
            logger.warning(f"[Chat] Ignoring tool call with malformed arguments: {function.get('name')}")
            continue
        if not isinstance(args, dict):
            continue
        name = function.get("name")
        if name == "patch_text" and args.get("original"):
            return Suggestion(original=args["original"], suggested=args.get("suggested") or "")
        if name == "append_text":
            return Suggestion(original="", suggested=args.get("suggested") or "")
        if name == "reformat_chapter":
            return Suggestion(original=FULL_CHAPTER_REFORMAT, suggested=args.get("updated_content") or "")
    return None


class ChatService:
    """Handles one author message against the editor or a roleplay persona."""

    def __init__(self, store: ProjectStore, llm_client, context_builder: PersonaContextBuilder = None):
        self.store = store
        self.llm = llm_client
        self.context_builder = context_builder or PersonaContextBuilder(store)

    def _require_llm(self):
        if self.llm is None:
            raise UpstreamFailure("The chat model is not configured. Set OPENAI_API_KEY.")
        return self.llm

    def build_context(self, project_id: str, request: ChatRequest) -> PromptContext:
        return self.context_builder.build(
            project_id,
            parse_persona(request.persona),
            chapter_content=request.chapter_content,
            chapter_title=request.chapter_title,
            selected_text=request.selected_text,
            current_chapter_id=request.current_chapter_id,
            referenced_entity_ids=request.referenced_entity_ids,
        )

    @staticmethod
    def build_messages(context: PromptContext, request: ChatRequest) -> List[Dict[str, str]]:
        # The client already trimmed the window to contextStartIndex
        return [{"role": "system", "content": context.system_prompt}] + [
            message.to_llm() for message in request.messages if message.role != "system"
        ]

    def chat_turn(self, project_id: str, request: ChatRequest) -> Dict[str, Any]:
        """Run one non-streaming turn and return ``{content, toolCalls}``."""
        context = self.build_context(project_id, request)
        logger.info(f"[Chat] Turn for project {project_id} as {request.persona} "
                    f"({len(request.messages)} messages, {len(context.tools)} tools)")
        result = self._require_llm().complete(self.build_messages(context, request), tools=context.tools or None)

        response = {"content": result.get("content") or "", "toolCalls": result.get("tool_calls") or []}
        self.record_turn(project_id, request, response["content"], response["toolCalls"])
        return response

    def stream_turn(self, project_id: str, request: ChatRequest) -> Iterator[str]:
        """
        Build the context now and return a generator of SSE frames.

        Context errors surface before the first frame; LLM errors become an
        ``error`` frame since the response has already started.
        """
        llm = self._require_llm()
        context = self.build_context(project_id, request)
        messages = self.build_messages(context, request)

        def frames() -> Iterator[str]:
            try:
                for event in llm.stream(messages, tools=context.tools or None):
                    if event["type"] == "token":
                        yield format_sse("token", {"content": event["content"]})
                    elif event["type"] == "done":
                        self.record_turn(project_id, request, event["content"], event["tool_calls"])
                        yield format_sse("done", {"content": event["content"], "toolCalls": event["tool_calls"]})
            except NeyasbookError as e:
                logger.error(f"[Chat] Stream failed for project {project_id}: {e}")
                yield format_sse("error", {"message": str(e)})

        return frames()

    # --- Transcript ---

    def record_turn(self, project_id: str, request: ChatRequest, content: str,
                    tool_calls: List[Dict[str, Any]]) -> ChatTranscript:
        transcript = self.store.load_transcript(project_id)
        if request.messages and request.messages[-1].role == "user":
            last = request.messages[-1]
            transcript.messages.append(ChatMessage(
                role="user", content=last.content, persona_id=last.persona_id or request.persona,
            ))
        transcript.messages.append(ChatMessage(
            role="assistant",
            content=content,
            persona_id=request.persona,
            suggestion=suggestion_from_tool_calls(tool_calls),
        ))
        self.store.save_transcript(project_id, transcript)
        return transcript

    def get_transcript(self, project_id: str) -> ChatTranscript:
        return self.store.load_transcript(project_id)

    def save_transcript(self, project_id: str, transcript: ChatTranscript) -> ChatTranscript:
        self.store.save_transcript(project_id, transcript)
        return transcript

    def reset_context(self, project_id: str) -> ChatTranscript:
        """Keep the history for display but start the next prompt window empty."""
        transcript = self.store.load_transcript(project_id)
        transcript.context_start_index = len(transcript.messages)
        self.store.save_transcript(project_id, transcript)
        logger.info(f"[Chat] Context reset for project {project_id} at message {transcript.context_start_index}")
        return transcript
