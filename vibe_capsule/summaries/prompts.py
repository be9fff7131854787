"""Prompt template helpers for the summaries feature."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from .types import SummaryRequest

LANGUAGE_PLACEHOLDER = "{{LANGUAGE}}"
CONTENT_SEPARATOR = "\n\n---\n\n"

DEFAULT_TEMPLATE = """
You are a professional content distiller. Your goal is to summarize the following text into 3 sections:
1. One-sentence TL;DR.
2. Key Takeaways (bullet points).
3. Action Items or Conclusion.

IMPORTANT: The article may be in any language, but you MUST provide the summary in {{LANGUAGE}}.
"""

TITLED_SUMMARY_TEMPLATE = (
    "Analyze the following {{LANGUAGE}} text. Generate a clear, translated title in {{LANGUAGE}} "
    "starting with '# ', followed by a concise summary in {{LANGUAGE}}."
)


class PromptValidationError(ValueError):
    """Raised when a prompt template fails validation checks."""


@dataclass(frozen=True)
class PromptDocument:
    """Represents a loaded prompt template and its source path."""

    content: str
    path: Path


class PromptLoader:
    """Load custom prompt templates from disk."""

    def load(self, prompt_path: Path) -> PromptDocument:
        path = Path(prompt_path).expanduser()
        if not path.is_file():
            raise FileNotFoundError(f"Prompt file '{path}' was not found.")
        content = path.read_text(encoding="utf-8")
        if not content.strip():
            raise PromptValidationError(f"Prompt '{path}' is empty.")
        return PromptDocument(content=content, path=path)


class PromptBuilder:
    """Compose the final instruction text sent to a provider."""

    def __init__(self, default_template: str = DEFAULT_TEMPLATE) -> None:
        self._default_template = default_template

    def instruction(self, request: SummaryRequest) -> str:
        """Return the instruction with the language placeholder substituted."""
        template = request.custom_prompt or self._default_template
        return template.replace(LANGUAGE_PLACEHOLDER, request.language)

    def build(self, request: SummaryRequest) -> str:
        return f"{self.instruction(request)}{CONTENT_SEPARATOR}{request.content}"
