import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

from sitesmith.config import Settings
from sitesmith.generator import SYSTEM_PROMPT, OpenAIEditGenerator


def fake_client(content):
    client = MagicMock()
    choices = [SimpleNamespace(message=SimpleNamespace(content=content))] if content is not None else []
    client.chat.completions.create = AsyncMock(return_value=SimpleNamespace(choices=choices))
    return client


async def test_generate_edits_sends_files_as_json():
    client = fake_client('{"edits": []}')
    generator = OpenAIEditGenerator(Settings(ai_model="openai/gpt-5-mini"), client=client)
    files = [{"path": "app/page.tsx", "content": "<div/>"}]

    assert await generator.generate_edits("add a footer", files) == '{"edits": []}'

    kwargs = client.chat.completions.create.await_args.kwargs
    assert kwargs["model"] == "openai/gpt-5-mini"
    assert kwargs["temperature"] == 0.2
    system, user = kwargs["messages"]
    assert system == {"role": "system", "content": SYSTEM_PROMPT}
    assert json.loads(user["content"]) == {"instruction": "add a footer", "files": files}


async def test_generate_edits_without_choices():
    generator = OpenAIEditGenerator(Settings(), client=fake_client(None))
    assert await generator.generate_edits("x", []) == ""
