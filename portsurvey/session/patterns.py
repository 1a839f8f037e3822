"""
Port Survey - Prompt and marker patterns.

The terminal stream has no framing, so every decision the session makes
(handshake done, command done, page break, login step) comes from testing
the accumulated buffer against one of these patterns.
"""

import re
from typing import Optional, Pattern, Union


class PromptPattern:
    """
    Small matching capability around a compiled regex.

    Usage:
        prompt = PromptPattern(r"[^\\r\\n]*[>#]\\s*\\Z")
        prompt.matches("show ver\\nSwitch#")          # True
        prompt.trailing_match("show ver\\nSwitch#")   # "Switch#"
        prompt.strip("show ver\\nSwitch#")            # "show ver\\n"
    """

    def __init__(self, pattern: Union[str, Pattern[str]], flags: int = 0):
        if isinstance(pattern, str):
            pattern = re.compile(pattern, flags)
        self.regex = pattern

    def __repr__(self) -> str:
        return f"PromptPattern({self.regex.pattern!r})"

    def matches(self, buffer: str) -> bool:
        return self.regex.search(buffer) is not None

    def trailing_match(self, buffer: str) -> Optional[str]:
        """Return the matched text (whitespace trimmed) or None."""
        match = self.regex.search(buffer)
        if match is None:
            return None
        return match.group(0).strip()

    def strip(self, buffer: str) -> str:
        """Remove the first match from the buffer."""
        return self.regex.sub("", buffer, count=1)

    def strip_all(self, buffer: str) -> str:
        return self.regex.sub("", buffer)


# Shell prompt: last line ends with '>' (user) or '#' (privileged)
DEFAULT_PROMPT = PromptPattern(r"[^\r\n]*[>#]\s*\Z")

# Any of the three outcomes of 'enable'
ENABLE_PROMPT = PromptPattern(r"[^\r\n]*(?:[Pp]assword:|[>#])\s*\Z")

# Telnet login automaton
LOGIN_PROMPT = PromptPattern(r"(?:[Uu]ser ?[Nn]ame|[Ll]ogin)\s*:\s*\Z")
PASSWORD_PROMPT = PromptPattern(r"[Pp]assword\s*:\s*\Z")
AUTH_FAILED = PromptPattern(
    r"(?:Login invalid|Login incorrect|Authentication failed|"
    r"Access denied|Bad passwords|% Bad secrets)",
    re.IGNORECASE,
)

# Pagination banners: IOS '--More--', SMB 'More: <space>, Quit: q ...'
_MORE = r"(?:-+ ?More ?-+|More: ?<space>[^\r\n]*|<-+ ?More ?-+>)"
MORE_AT_END = PromptPattern(_MORE + r"\s*\Z")
# A banner that sits alone on its line takes its preceding line break with it
MORE_LINE = PromptPattern(r"(?:\r?\n)?[ \t]*" + _MORE + r"[ \t]*(?=\r?\n|\Z)")
MORE_INLINE = PromptPattern(r"[ \t]*" + _MORE + r"[ \t]*")
# Terminals erase the banner with backspace / space / backspace runs
ERASE_SEQUENCE = PromptPattern(r"\x08+[ \t]*\x08*")

INVALID_INPUT = PromptPattern(r"%\s*(?:Invalid input|Unrecognized command)", re.IGNORECASE)


def is_privileged_prompt(prompt: str) -> bool:
    return prompt.rstrip().endswith("#")


def is_user_prompt(prompt: str) -> bool:
    return prompt.rstrip().endswith(">")


def is_password_prompt(prompt: str) -> bool:
    return PASSWORD_PROMPT.matches(prompt)


def strip_pagination(buffer: str) -> str:
    """Remove erase sequences and every pagination banner."""
    buffer = ERASE_SEQUENCE.strip_all(buffer)
    buffer = MORE_LINE.strip_all(buffer)
    return MORE_INLINE.strip_all(buffer)
