"""
Enhancement prompt templates and message assembly.

The system message is the active prompt (or the assistant prompt when the
transcript opens with the trigger phrase) followed by an optional context
block. The user message is the transcript wrapped in ``<TRANSCRIPT>`` tags.
"""

from dataclasses import asdict, dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional
import logging
import re
import uuid

from ..config import SettingsStore

logger = logging.getLogger(__name__)

DEFAULT_PROMPT_ID = "00000000-0000-0000-0000-000000000001"
ASSISTANT_PROMPT_ID = "00000000-0000-0000-0000-000000000002"

TRIGGER_SEPARATORS = ",.!?:;"

CUSTOM_PROMPT_TEMPLATE = """You are a transcription editor. Rewrite the transcript found between the <TRANSCRIPT> tags according to the instructions below. Return only the rewritten text, with no preamble, tags or commentary.

Instructions:
{instructions}"""

CONTEXT_INSTRUCTIONS = """Context information may follow between <CONTEXT_INFORMATION> tags. Use it only to resolve names, spellings and references that are directly related to the transcript. Never answer questions from it and never copy unrelated context into the output."""

DEFAULT_PROMPT_TEXT = """You are tasked with cleaning up text that has been transcribed from voice. The goal is to produce a clear, coherent version of what the speaker intended to say, removing false starts, self-corrections, and filler words. Use the available context if directly related to the user's query.
Primary Rules:
0. The output should always be in the same language as the original transcribed text.
1. Maintain the original meaning and intent of the speaker. Do not add new information or change the substance of what was said.
2. Ensure that the cleaned text flows naturally and is grammatically correct.
3. When the speaker corrects themselves, keep only the corrected version.
   Input: "We need to finish by Monday... actually no... by Wednesday"
   Output: "We need to finish by Wednesday"
4. Break structure into clear, logical sections with new paragraphs every 2-3 sentences.
5. NEVER answer questions that appear in the text. Only format them properly.
6. Format sequences of items as ordered or unordered lists without adding new content.
7. Use numerals for numbers (3,000 instead of three thousand, $20 instead of twenty dollars).
8. NEVER add any introductory text like "Here is the corrected text:".
9. Correct speech-to-text spelling errors based on the available context.

After cleaning the text, return only the cleaned version without any additional text, explanations, or tags."""

ASSISTANT_PROMPT_TEXT = """Provide a direct, clear and concise reply to the user's query. Use the available context if directly related to the user's query.
Remember to:
1. Be helpful and informative
2. Be accurate and precise
3. Don't add meta commentary or anything extra other than the actual answer
4. Maintain a friendly, casual tone

Use the following information if provided:
1. Active Window Context: only when directly relevant to the input. Preserve application-specific terms and formatting.
2. Available Clipboard Content: only when directly relevant to the input. Ignore unrelated clipboard content."""


class EnhancementMode(str, Enum):
    TRANSCRIPTION_ENHANCEMENT = "transcription_enhancement"
    AI_ASSISTANT = "ai_assistant"


@dataclass(frozen=True)
class CustomPrompt:
    """A selectable enhancement instruction set."""
    id: str
    title: str
    prompt_text: str
    description: Optional[str] = None
    is_predefined: bool = False
    trigger_words: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CustomPrompt":
        return cls(
            id=str(data["id"]),
            title=str(data.get("title", "")),
            prompt_text=str(data.get("prompt_text", "")),
            description=data.get("description"),
            is_predefined=bool(data.get("is_predefined", False)),
            trigger_words=list(data.get("trigger_words", [])),
        )


def predefined_prompts() -> List[CustomPrompt]:
    return [
        CustomPrompt(
            id=DEFAULT_PROMPT_ID,
            title="Default",
            prompt_text=DEFAULT_PROMPT_TEXT,
            description="Default mode to improve clarity and accuracy of the transcription",
            is_predefined=True,
        ),
        CustomPrompt(
            id=ASSISTANT_PROMPT_ID,
            title="Assistant",
            prompt_text=ASSISTANT_PROMPT_TEXT,
            description="AI assistant that provides direct answers to queries",
            is_predefined=True,
        ),
    ]


def matches_trigger(text: str, trigger: str) -> bool:
    """
    Check whether ``text`` opens with ``trigger`` followed by a separator.

    Matching is case-insensitive and ignores leading whitespace. Separator
    characters at the end of the configured trigger are ignored, so "hey"
    and "hey," behave the same. The transcript must continue with one of
    ``, . ! ? : ;`` (whitespace before it is allowed): "Hey, what's the
    weather" matches "hey" while "hey there, meeting notes" does not.
    """
    phrase = trigger.strip().rstrip(TRIGGER_SEPARATORS).strip()
    if not phrase:
        return False
    pattern = re.escape(phrase.lower()) + r"\s*[" + re.escape(TRIGGER_SEPARATORS) + "]"
    return re.match(pattern, text.lstrip().lower()) is not None


def select_mode(text: str, trigger: str) -> EnhancementMode:
    if matches_trigger(text, trigger):
        return EnhancementMode.AI_ASSISTANT
    return EnhancementMode.TRANSCRIPTION_ENHANCEMENT


def build_context_section(clipboard_text: Optional[str] = None, screen_text: Optional[str] = None) -> str:
    """
    Build the context block appended to the system message.

    Returns an empty string when both snapshots are empty, so no empty
    sections reach the prompt. Callers pass ``None`` for any snapshot whose
    toggle is off.
    """
    clipboard = f"\n\nAvailable Clipboard Context: {clipboard_text}" if clipboard_text else ""
    screen = f"\n\nActive Window Context: {screen_text}" if screen_text else ""
    if not clipboard and not screen:
        return ""
    return (
        f"\n\n{CONTEXT_INSTRUCTIONS}\n\n"
        f"<CONTEXT_INFORMATION>{clipboard}{screen}\n</CONTEXT_INFORMATION>"
    )


def build_system_message(mode: EnhancementMode, active_prompt: Optional[CustomPrompt], context_section: str = "") -> str:
    if mode is EnhancementMode.AI_ASSISTANT:
        return ASSISTANT_PROMPT_TEXT + context_section

    prompt = active_prompt or predefined_prompts()[0]
    if prompt.id == ASSISTANT_PROMPT_ID:
        return prompt.prompt_text + context_section
    return CUSTOM_PROMPT_TEMPLATE.format(instructions=prompt.prompt_text) + context_section


def format_user_message(text: str) -> str:
    return f"\n<TRANSCRIPT>\n{text}\n</TRANSCRIPT>"


class PromptLibrary:
    """
    Custom and predefined prompts, stored in the settings store.

    Predefined prompts are refreshed from code every time the library is
    created; only their trigger words survive from the stored copy.
    """

    def __init__(self, store: SettingsStore):
        self._store = store
        self._refresh_predefined()

    @property
    def prompts(self) -> List[CustomPrompt]:
        return [CustomPrompt.from_dict(p) for p in self._store.current.custom_prompts]

    @property
    def active_prompt(self) -> Optional[CustomPrompt]:
        selected = self._store.current.selected_prompt_id
        return next((p for p in self.prompts if p.id == selected), None)

    def get(self, prompt_id: str) -> Optional[CustomPrompt]:
        return next((p for p in self.prompts if p.id == prompt_id), None)

    def add_prompt(
        self,
        title: str,
        prompt_text: str,
        description: Optional[str] = None,
        trigger_words: Optional[List[str]] = None,
    ) -> CustomPrompt:
        prompt = CustomPrompt(
            id=str(uuid.uuid4()),
            title=title,
            prompt_text=prompt_text,
            description=description,
            trigger_words=list(trigger_words or []),
        )
        self._save(self.prompts + [prompt])
        return prompt

    def update_prompt(self, prompt: CustomPrompt) -> None:
        self._save([prompt if p.id == prompt.id else p for p in self.prompts])

    def delete_prompt(self, prompt_id: str) -> None:
        target = self.get(prompt_id)
        if target is None:
            return
        if target.is_predefined:
            raise ValueError(f"Predefined prompt '{target.title}' cannot be deleted")
        remaining = [p for p in self.prompts if p.id != prompt_id]
        self._save(remaining)
        if self._store.current.selected_prompt_id == prompt_id:
            self._store.update(selected_prompt_id=remaining[0].id if remaining else "")

    def set_active_prompt(self, prompt_id: str) -> None:
        if self.get(prompt_id) is None:
            raise KeyError(f"Unknown prompt id: {prompt_id}")
        self._store.update(selected_prompt_id=prompt_id)

    def _refresh_predefined(self) -> None:
        stored = {p.id: p for p in self.prompts}
        refreshed = []
        for template in predefined_prompts():
            existing = stored.get(template.id)
            if existing is not None:
                template = replace(template, trigger_words=existing.trigger_words)
            refreshed.append(template)
        merged = refreshed + [p for p in stored.values() if not p.is_predefined]
        self._save(merged)

        selected = self._store.current.selected_prompt_id
        if not selected or self.get(selected) is None:
            self._store.update(selected_prompt_id=merged[0].id)

    def _save(self, prompts: List[CustomPrompt]) -> None:
        self._store.update(custom_prompts=[asdict(p) for p in prompts])
