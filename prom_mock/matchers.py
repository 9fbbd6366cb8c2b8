"""Label matchers used to filter time series."""
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Optional

from prom_mock.series import Label


class MatchType(str, Enum):
    """Comparison mode of a label matcher."""
    EQUAL = "="
    NOT_EQUAL = "!="
    REGEX = "=~"
    NOT_REGEX = "!~"

    @property
    def is_regex(self) -> bool:
        return self in (MatchType.REGEX, MatchType.NOT_REGEX)

    @property
    def is_negative(self) -> bool:
        return self in (MatchType.NOT_EQUAL, MatchType.NOT_REGEX)


@dataclass(frozen=True)
class LabelMatcher:
    """
    Predicate over a label set testing one label name.

    Positive matchers (=, =~) match when any label with the name
    satisfies the condition. Negative matchers (!=, !~) match only when
    no label with the name satisfies the positive condition, so they are
    true when the name is absent.
    """
    name: str
    value: str
    type: MatchType = MatchType.EQUAL
    pattern: Optional[re.Pattern] = field(default=None, compare=False, repr=False)

    def __post_init__(self):
        if self.type.is_regex and self.pattern is None:
            object.__setattr__(self, "pattern", re.compile(self.value))

    @property
    def label_name(self) -> str:
        return self.name

    def _hit(self, label: Label) -> bool:
        if label.name != self.name:
            return False
        if self.type.is_regex:
            return self.pattern.fullmatch(label.value) is not None
        return label.value == self.value

    def matches(self, labels: Iterable[Label]) -> bool:
        """Check whether this matcher accepts the label set."""
        found = any(self._hit(label) for label in labels)
        return not found if self.type.is_negative else found

    def __str__(self) -> str:
        escaped = self.value.replace("\\", "\\\\").replace('"', '\\"')
        return f'{self.name}{self.type.value}"{escaped}"'


def equal(name: str, value: str) -> LabelMatcher:
    return LabelMatcher(name, value, MatchType.EQUAL)


def not_equal(name: str, value: str) -> LabelMatcher:
    return LabelMatcher(name, value, MatchType.NOT_EQUAL)


def regex(name: str, pattern: str) -> LabelMatcher:
    """Regex matcher; raises re.error for an invalid pattern."""
    return LabelMatcher(name, pattern, MatchType.REGEX)


def not_regex(name: str, pattern: str) -> LabelMatcher:
    """Negated regex matcher; raises re.error for an invalid pattern."""
    return LabelMatcher(name, pattern, MatchType.NOT_REGEX)


def matches_all(matchers: Iterable[LabelMatcher], labels: Iterable[Label]) -> bool:
    """Return True if every matcher accepts the labels (True for no matchers)."""
    labels = list(labels)
    for matcher in matchers:
        if not matcher.matches(labels):
            return False
    return True
