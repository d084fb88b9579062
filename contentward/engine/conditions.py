"""Conditions: detect content in a message payload and report findings.

Every string leaf of the active payload is flattened to a
``(field_path, value)`` pair; conditions report matches as spans within
those values so actions can rewrite exactly the matched text.
"""

from __future__ import annotations

import re
from abc import abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator

from contentward.engine.elements import ElementRegistry, PolicyElement
from contentward.engine.models import (
    ElementType,
    Finding,
    FindingLocation,
    PolicyContext,
)
from contentward.protocol import Message

# Characters on each side of a match searched for a supporting keyword.
KEYWORD_WINDOW_SIZE = 100

_NON_DIGIT_RE = re.compile(r"\D")


@dataclass(frozen=True)
class StringFieldValue:
    """A string leaf in a payload and the path that reaches it."""

    path: str
    value: str


def get_string_field_values(obj: Any, path: str = "") -> list[StringFieldValue]:
    """Flatten every string leaf of a JSON value.

    Object properties are joined with dots and array elements are written
    as ``name[index]``, e.g. ``arguments.items[0].note``.

    Args:
        obj: The decoded JSON value.
        path: Path prefix for ``obj``.

    Returns:
        String leaves in document order.
    """
    results: list[StringFieldValue] = []
    if isinstance(obj, str):
        results.append(StringFieldValue(path=path, value=obj))
    elif isinstance(obj, dict):
        for key, value in obj.items():
            property_path = f"{path}.{key}" if path else str(key)
            results.extend(get_string_field_values(value, property_path))
    elif isinstance(obj, (list, tuple)):
        for index, item in enumerate(obj):
            results.extend(get_string_field_values(item, f"{path}[{index}]"))
    # Numbers, booleans and null carry no text
    return results


def _luhn_check(digits: str) -> bool:
    """Validate a digit string using the Luhn algorithm.

    Args:
        digits: A string of digits (no spaces or dashes).

    Returns:
        True if the digit string passes the Luhn checksum.  An empty
        string sums to zero and passes.
    """
    if digits and not digits.isdigit():
        return False

    total = 0
    for i, d in enumerate(reversed(digits)):
        n = int(d)
        if i % 2 == 1:
            n *= 2
            if n > 9:
                n -= 9
        total += n
    return total % 10 == 0


def checksum_valid(text: str) -> bool:
    """Luhn-validate the digits of ``text``, ignoring separators.

    >>> checksum_valid("4532015112830366")
    True
    >>> checksum_valid("4532-0151-1283-0366")
    True
    >>> checksum_valid("1234567890123456")
    False
    """
    return _luhn_check(_NON_DIGIT_RE.sub("", text))


class Condition(PolicyElement):
    """Base class for conditions."""

    element_type = ElementType.CONDITION

    @abstractmethod
    async def evaluate(
        self,
        message: Message,
        config: dict[str, Any] | None,
        params: dict[str, Any],
        context: PolicyContext | None = None,
    ) -> list[Finding]:
        """Evaluate the message and return findings (empty if no match).

        Implementations must not mutate the message.
        """


class MatchValidator(str, Enum):
    """Post-match validation applied by the text match condition."""

    NONE = "none"
    CHECKSUM = "checksum"


class TextMatchParams(BaseModel):
    """Params for the text match condition."""

    regex: str = Field(description="Regular expression pattern to match")
    keywords: list[str] = Field(
        default_factory=list,
        description="Optional keywords, one of which must appear near a match",
    )
    validator: MatchValidator = Field(
        default=MatchValidator.NONE,
        description="Validator applied to each match: none or checksum (Luhn)",
    )

    @field_validator("regex")
    @classmethod
    def regex_compiles(cls, value: str) -> str:
        if not value:
            raise ValueError("Regex pattern is required")
        try:
            re.compile(value)
        except re.error as e:
            raise ValueError(f"Invalid regex pattern: {e}") from e
        return value

    @field_validator("validator", mode="before")
    @classmethod
    def luhn_alias(cls, value: Any) -> Any:
        # "luhn" is the name older policies use for the checksum validator
        if value == "luhn":
            return MatchValidator.CHECKSUM.value
        return value


class TextMatchCondition(Condition):
    """Match a regular expression in message text.

    Matches can be narrowed by nearby keywords and by a checksum validator
    (for card numbers).  Every accepted match becomes a located finding.
    """

    class_id = "regex"
    name = "Text Match"
    description = "Match regular expressions in message text, with optional keyword and checksum validators"
    params_model = TextMatchParams

    async def evaluate(
        self,
        message: Message,
        config: dict[str, Any] | None,
        params: dict[str, Any],
        context: PolicyContext | None = None,
    ) -> list[Finding]:
        parsed: TextMatchParams = self.parse_params(params)
        pattern = re.compile(parsed.regex)
        keyword_re = _keyword_pattern(parsed.keywords)

        findings: list[Finding] = []
        for string_field in get_string_field_values(message.content):
            text = string_field.value
            # finditer advances past zero-length matches on its own
            for match in pattern.finditer(text):
                if keyword_re is not None and not _keyword_near(keyword_re, text, match):
                    continue
                if parsed.validator == MatchValidator.CHECKSUM and not checksum_valid(match.group(0)):
                    continue
                findings.append(
                    Finding(
                        details=f"Regex match found: {match.group(0)}",
                        metadata={
                            "regex": parsed.regex,
                            "keywords": parsed.keywords,
                            "validator": parsed.validator.value,
                        },
                        is_text_match=True,
                        location=FindingLocation(
                            field_path=string_field.path,
                            start=match.start(),
                            end=match.end(),
                        ),
                    )
                )
        return findings


def _keyword_pattern(keywords: list[str]) -> re.Pattern[str] | None:
    words = [k for k in keywords if k]
    if not words:
        return None
    alternatives = "|".join(re.escape(k) for k in words)
    return re.compile(rf"\b(?:{alternatives})\b", re.IGNORECASE)


def _keyword_near(keyword_re: re.Pattern[str], text: str, match: re.Match[str]) -> bool:
    window_start = max(0, match.start() - KEYWORD_WINDOW_SIZE)
    window_end = min(len(text), match.end() + KEYWORD_WINDOW_SIZE)
    return keyword_re.search(text[window_start:window_end]) is not None


CONDITIONS: ElementRegistry[Condition] = ElementRegistry(ElementType.CONDITION)
CONDITIONS.register(TextMatchCondition())
