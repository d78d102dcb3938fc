"""Answering interactive privilege prompts (``sudo``) on a PTY."""

from __future__ import annotations

import re
from enum import Enum

# A prompt is the whole unterminated last line of output
PROMPT_RE = re.compile(r"^(\[sudo\] password for \S+:|password:)[ \t]*$", re.IGNORECASE)
_RETRY_LINE_RE = re.compile(r"^Sorry, try again\.[ \t]*\n?", re.MULTILINE)

_TAIL_SIZE = 512


class PromptState(str, Enum):
    AWAITING_PROMPT = "awaiting_prompt"
    RESPONDED = "responded"
    EXHAUSTED = "exhausted"


class PromptAction(str, Enum):
    NONE = "none"
    RESPOND = "respond"
    FAIL = "fail"


class PromptResponder:
    """Per-command state machine deciding when to send the cached secret.

    ``feed`` is called with every chunk of output. A recognized prompt is
    answered at most ``max_attempts`` times; the next one fails the command.
    The text of every answered prompt is kept in ``answered`` so it can be
    removed from the captured output afterwards.
    """

    def __init__(self, max_attempts: int = 3) -> None:
        self.max_attempts = max_attempts
        self.attempts = 0
        self.state = PromptState.AWAITING_PROMPT
        self.answered: list[str] = []
        self._tail = ""

    def feed(self, chunk: str) -> PromptAction:
        if self.state is PromptState.EXHAUSTED:
            return PromptAction.FAIL
        self._tail = (self._tail + chunk.replace("\r", ""))[-_TAIL_SIZE:]
        last_line = self._tail.rsplit("\n", 1)[-1]
        if not PROMPT_RE.search(last_line):
            return PromptAction.NONE

        self._tail = ""
        if self.attempts >= self.max_attempts:
            self.state = PromptState.EXHAUSTED
            return PromptAction.FAIL
        self.attempts += 1
        self.answered.append(last_line.strip())
        self.state = PromptState.RESPONDED
        return PromptAction.RESPOND


def strip_prompts(output: str, answered: list[str] | tuple[str, ...] = ()) -> str:
    """Normalize line endings and remove the *answered* prompt lines from PTY output.

    Each prompt is removed once, and only where it fills a line of its own,
    so output that merely mentions a password stays intact.
    """
    text = output.replace("\r\n", "\n").replace("\r", "")
    for prompt in answered:
        text = re.sub(r"^" + re.escape(prompt) + r"[ \t]*\n?", "", text, count=1, flags=re.MULTILINE)
    if len(answered) > 1:
        text = _RETRY_LINE_RE.sub("", text, count=len(answered) - 1)
    return text
