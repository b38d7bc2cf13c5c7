import json
import logging
from typing import Protocol

from openai import AsyncOpenAI

from sitesmith.config import Settings


logger = logging.getLogger("sitesmith.generator")


class EditGenerator(Protocol):
    async def generate_edits(self, instruction: str, files: list[dict[str, str]]) -> str:
        """Return the raw model reply for an edit instruction over the given files."""
        ...


SYSTEM_PROMPT = (
    "You are an expert Next.js 14 + TypeScript refactoring assistant.\n"
    "You receive project files and an edit instruction.\n"
    "Return STRICT JSON only, no markdown fences:\n"
    '{"summary":"short summary","edits":[{"path":"relative/path.ext","content":"full file content"}],"notes":["optional note"]}\n'
    "Rules:\n"
    "- Update existing files when possible.\n"
    "- Keep framework/tooling compatibility with Next.js 14 App Router and Tailwind.\n"
    '- For file deletions, emit {"path":"relative/path.ext","delete":true}.\n'
    "- Output complete content for each non-deleted edited file.\n"
    "- Do not include explanations outside JSON.\n"
)


class OpenAIEditGenerator:
    """Chat-completions client pointed at the AI Gateway (or OpenAI)."""

    def __init__(self, settings: Settings, client: AsyncOpenAI | None = None) -> None:
        self.model = settings.ai_model
        self._client = client or AsyncOpenAI(
            api_key=settings.ai_api_key,
            base_url=settings.ai_base_url,
        )

    def build_messages(self, instruction: str, files: list[dict[str, str]]) -> list[dict[str, str]]:
        return [
            {"role": "system", "content": SYSTEM_PROMPT},
            {
                "role": "user",
                "content": json.dumps({"instruction": instruction, "files": files}, indent=2),
            },
        ]

    async def generate_edits(self, instruction: str, files: list[dict[str, str]]) -> str:
        logger.info(
            "generate_edits model=%s files=%d instruction_len=%d",
            self.model,
            len(files),
            len(instruction),
        )
        completion = await self._client.chat.completions.create(
            model=self.model,
            temperature=0.2,
            max_tokens=4096,
            messages=self.build_messages(instruction, files),
        )
        if not completion.choices:
            return ""
        return completion.choices[0].message.content or ""
