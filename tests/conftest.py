"""
Shared fixtures: a filesystem blob store under tmp_path and a scripted LLM client.
"""
import json
import sys
from pathlib import Path

import pytest

# Add the src directory to Python path
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from neyasbook.api import create_app
from neyasbook.models import Manifest, ManifestNode
from neyasbook.storage import LocalBlobStore, ProjectStore

PROJECT_ID = "test-project"


class FakeLLMClient:
    """
    Stands in for OpenAIChatClient.

    ``replies`` are consumed in order by ``complete`` and ``stream``; a reply
    is either a string (assistant content), a dict with ``content`` and
    ``tool_calls``, or an exception instance to raise.
    """

    def __init__(self, replies=None):
        self.replies = list(replies or [])
        self.calls = []

    def _next(self):
        reply = self.replies.pop(0) if self.replies else ""
        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, str):
            return {"content": reply, "tool_calls": []}
        return {"content": reply.get("content", ""), "tool_calls": reply.get("tool_calls", [])}

    def complete(self, messages, tools=None, json_mode=False, temperature=None):
        self.calls.append({"messages": messages, "tools": tools, "json_mode": json_mode})
        return dict(self._next(), model="fake", input_tokens=0, output_tokens=0, cost=0.0)

    def stream(self, messages, tools=None, temperature=None):
        self.calls.append({"messages": messages, "tools": tools, "stream": True})
        reply = self._next()
        for word in reply["content"].split(" "):
            if word:
                yield {"type": "token", "content": word + " "}
        yield {"type": "done", "content": reply["content"], "tool_calls": reply["tool_calls"]}


def extraction_reply(*entities):
    return json.dumps({"entities": list(entities)})


def paragraph_doc(*paragraphs):
    return {
        "type": "doc",
        "content": [
            {"type": "paragraph", "content": [{"type": "text", "text": text}]}
            for text in paragraphs
        ],
    }


def three_chapter_manifest():
    return Manifest(
        title="The Voss Affair",
        hierarchy=[ManifestNode(
            id="p1",
            type="part",
            title="Volume I",
            children=[
                ManifestNode(id="1", type="chapter", title="Arrival"),
                ManifestNode(id="2", type="chapter", title="The Clinic"),
                ManifestNode(id="3", type="chapter", title="Fever"),
            ],
        )],
    )


@pytest.fixture
def blob_store(tmp_path):
    return LocalBlobStore(str(tmp_path / "storage"))


@pytest.fixture
def store(blob_store):
    return ProjectStore(blob_store)


@pytest.fixture
def chat_llm():
    return FakeLLMClient()


@pytest.fixture
def sweep_llm():
    return FakeLLMClient()


@pytest.fixture
def app(blob_store, chat_llm, sweep_llm):
    app = create_app(
        config={"TESTING": True, "OPENAI_API_KEY": "test-key"},
        llm_client=chat_llm,
        sweep_llm_client=sweep_llm,
        blob_store=blob_store,
    )
    return app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def headers():
    return {"x-project-id": PROJECT_ID}
