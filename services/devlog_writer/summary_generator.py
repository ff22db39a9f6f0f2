"""
Devlog summary generation.

The generator asks the model for a JSON object with ``title``, ``content``,
``summary`` and ``tags``. Output that is not valid JSON, or JSON with missing
or mistyped fields, degrades to defaults field by field instead of failing
the request. Transport and API failures raise ``SummaryError``.
"""

import json
import logging
import re
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional, Tuple

from openai import AsyncOpenAI, OpenAIError

from config.settings import OpenAISettings
from shared.errors import SetupError, SummaryError
from shared.models import Commit, Repository, SummaryResult, TimeRange

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "Development Update"

SYSTEM_PROMPT = """You are a technical writer creating development updates for an open-source community.

Write for readers who are not necessarily developers: explain what changed and why it matters, credit the contributors by name, and keep the tone friendly and concise.

Style rules:
- Divide the post into sections by repository, naming each repository
- Use markdown headings and bullet points
- Do not invent features that the commits do not mention

Always respond with a valid JSON object with these fields:
- title: string
- content: string (the full markdown blog post)
- summary: string (two or three sentences)
- tags: array of lowercase keywords
"""

ENHANCE_SYSTEM_PROMPT = (
    "You are a technical writer helping to improve blog post content based on user feedback."
)

CommitsByRepository = Dict[str, List[Commit]]


class SummaryGenerator(ABC):
    """Produces devlog drafts from commits."""

    @abstractmethod
    async def generate(self, commits_by_repository: CommitsByRepository, time_range: TimeRange) -> SummaryResult:
        """Draft a post covering ``commits_by_repository`` within ``time_range``."""

    @abstractmethod
    async def enhance(self, content: str, instructions: str) -> str:
        """Rewrite ``content`` following ``instructions``."""


def group_commits_by_repository(pairs: Iterable[Tuple[Commit, Repository]]) -> CommitsByRepository:
    """Group commits under ``owner/name``, keeping first-seen order."""
    grouped: CommitsByRepository = {}
    for commit, repository in pairs:
        grouped.setdefault(repository.full_name, []).append(commit)
    return grouped


def build_prompt(commits_by_repository: CommitsByRepository, time_range: TimeRange) -> str:
    from_date = time_range.start.strftime("%Y-%m-%d")
    to_date = time_range.end.strftime("%Y-%m-%d")

    lines = [
        f"Generate a development blog post covering activity from {from_date} to {to_date}.",
        "",
        "Repository activity:",
        "",
    ]
    for repository, commits in commits_by_repository.items():
        lines.append(f"**{repository}** ({len(commits)} commits):")
        for commit in commits:
            first_line = commit.message.strip().splitlines()[0] if commit.message.strip() else "(no message)"
            lines.append(f"- {first_line} by {commit.author}")
            if commit.additions or commit.deletions:
                lines.append(f"  (+{commit.additions}/-{commit.deletions} lines)")
        lines.append("")

    lines.append(
        "Respond with JSON: title, content (800-1200 words of markdown), "
        "summary and tags."
    )
    return "\n".join(lines)


def _extract_json(text: str) -> Optional[Dict[str, Any]]:
    """Parse a JSON object from raw text or a fenced code block."""
    candidates = [text.strip()]
    fenced = re.search(r"```(?:json)?\s*\n(.*?)\n```", text, re.DOTALL)
    if fenced:
        candidates.insert(0, fenced.group(1).strip())
    braces = re.search(r"\{.*\}", text, re.DOTALL)
    if braces:
        candidates.append(braces.group(0))

    for candidate in candidates:
        try:
            parsed = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(parsed, dict):
            return parsed
    return None


def parse_summary_payload(raw: Optional[str], tokens_used: int, default_tags: List[str]) -> SummaryResult:
    """Build a ``SummaryResult`` from model output, defaulting bad fields."""
    payload = _extract_json(raw or "") or {}
    if not payload:
        logger.warning("Model returned no usable JSON; using default summary fields")

    def text_field(key: str, default: str) -> str:
        value = payload.get(key)
        return value.strip() if isinstance(value, str) and value.strip() else default

    tags = payload.get("tags")
    tags = [
        t.strip().lstrip("#").lower()
        for t in (tags if isinstance(tags, list) else [])
        if isinstance(t, str) and t.strip()
    ]
    if not tags:
        tags = list(default_tags)

    return SummaryResult(
        title=text_field("title", DEFAULT_TITLE),
        content=text_field("content", ""),
        summary=text_field("summary", ""),
        tags=tags,
        tokens_used=max(int(tokens_used or 0), 0),
    )


class OpenAISummaryGenerator(SummaryGenerator):
    """Summary generator backed by OpenAI chat completions."""

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o",
        temperature: float = 0.7,
        max_tokens: int = 2000,
        timeout: float = 60.0,
        default_tags: Optional[List[str]] = None,
        client: Optional[AsyncOpenAI] = None,
    ):
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.default_tags = default_tags or ["devlog", "development"]
        self.client = client or AsyncOpenAI(api_key=api_key, timeout=timeout)

    @classmethod
    def from_settings(cls, settings: OpenAISettings, **kwargs) -> "OpenAISummaryGenerator":
        if settings.api_key is None or not settings.api_key.get_secret_value().strip():
            raise SetupError("OpenAI API key not configured (set OPENAI_API_KEY)")
        return cls(
            api_key=settings.api_key.get_secret_value(),
            model=settings.model,
            temperature=settings.temperature,
            max_tokens=settings.max_tokens,
            timeout=settings.timeout,
            default_tags=settings.default_tags,
            **kwargs,
        )

    async def generate(self, commits_by_repository: CommitsByRepository, time_range: TimeRange) -> SummaryResult:
        prompt = build_prompt(commits_by_repository, time_range)
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
                response_format={"type": "json_object"},
                temperature=self.temperature,
                max_tokens=self.max_tokens,
            )
        except OpenAIError as e:
            logger.error(f"Error generating AI summary: {e}")
            raise SummaryError(f"Failed to generate AI summary: {e}") from e

        content = response.choices[0].message.content if response.choices else None
        tokens_used = response.usage.total_tokens if response.usage else 0
        result = parse_summary_payload(content, tokens_used, self.default_tags)
        total = sum(len(commits) for commits in commits_by_repository.values())
        logger.info(f"Generated summary for {total} commits ({result.tokens_used} tokens)")
        return result

    async def enhance(self, content: str, instructions: str) -> str:
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": ENHANCE_SYSTEM_PROMPT},
                    {
                        "role": "user",
                        "content": (
                            "Please enhance this blog post content according to these "
                            f'instructions: "{instructions}"\n\nOriginal content:\n{content}'
                        ),
                    },
                ],
                temperature=self.temperature,
                max_tokens=self.max_tokens,
            )
        except OpenAIError as e:
            logger.error(f"Error enhancing content: {e}")
            raise SummaryError(f"Failed to enhance content: {e}") from e

        enhanced = response.choices[0].message.content if response.choices else None
        return enhanced or content


def build_summary_generator(settings: OpenAISettings) -> OpenAISummaryGenerator:
    """Factory used by the app; raises ``SetupError`` without an API key."""
    return OpenAISummaryGenerator.from_settings(settings)


__all__ = [
    "SummaryGenerator",
    "OpenAISummaryGenerator",
    "group_commits_by_repository",
    "build_prompt",
    "parse_summary_payload",
    "build_summary_generator",
]
