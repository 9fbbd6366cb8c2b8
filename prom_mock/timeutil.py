"""Resolution of time expressions like "now-15m", RFC3339 and Unix seconds."""
import math
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional

UNIT_SECONDS = {
    "s": 1,
    "m": 60,
    "h": 3600,
    "d": 86400,
}

_RFC3339_PATTERN = re.compile(
    r"^\d{4}-\d{2}-\d{2}[Tt]\d{2}:\d{2}:\d{2}(\.\d+)?([Zz]|[+-]\d{2}:\d{2})$"
)
_RELATIVE_PATTERN = re.compile(r"^(\d+)(.*)$")


class ParamKind(str, Enum):
    """How a time parameter was recognised."""
    RAW = "raw"
    ABSOLUTE = "absolute"
    RELATIVE = "relative"


@dataclass(frozen=True)
class ResolvedParam:
    """
    Result of resolving a time parameter.

    ABSOLUTE keeps the original text (Unix seconds or RFC3339).
    RELATIVE holds the resolved Unix seconds as text.
    RAW holds the unrecognised input as-is.
    """
    kind: ParamKind
    text: str


def parse_rfc3339(text: str) -> Optional[datetime]:
    """Parse an RFC3339 timestamp, returning None if the text is not one."""
    if not _RFC3339_PATTERN.match(text):
        return None
    normalized = text.replace("z", "Z").replace("t", "T")
    if normalized.endswith("Z"):
        normalized = normalized[:-1] + "+00:00"
    # fromisoformat only accepts up to microsecond precision
    if "." in normalized:
        head, _, rest = normalized.partition(".")
        digits = re.match(r"\d+", rest).group(0)
        normalized = f"{head}.{digits[:6].ljust(6, '0')}{rest[len(digits):]}"
    try:
        return datetime.fromisoformat(normalized)
    except ValueError:
        return None


def unix_seconds(moment: datetime) -> int:
    """Whole Unix seconds for a datetime (naive values are taken as UTC)."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return math.floor(moment.timestamp())


def resolve_relative(text: str, now: Optional[datetime] = None) -> ResolvedParam:
    """
    Resolve a time expression.

    Supports Unix seconds (all digits), RFC3339, and, when `now` is
    given, "now" and "now-<N><unit>" with unit in s, m, h, d.
    Anything else comes back as RAW; this never raises.

    Args:
        text: Time expression to resolve
        now: Reference instant for relative expressions

    Returns:
        ResolvedParam with the recognised kind
    """
    s = text.strip()

    if s and s.isdigit() and s.isascii():
        return ResolvedParam(ParamKind.ABSOLUTE, s)

    if parse_rfc3339(s) is not None:
        return ResolvedParam(ParamKind.ABSOLUTE, s)

    if now is not None:
        if s == "now":
            return ResolvedParam(ParamKind.RELATIVE, str(unix_seconds(now)))
        if s.startswith("now-"):
            match = _RELATIVE_PATTERN.match(s[len("now-"):])
            if match and match.group(1).isascii():
                unit = match.group(2)
                if unit not in UNIT_SECONDS:
                    return ResolvedParam(ParamKind.RAW, s)
                try:
                    amount = int(match.group(1))
                    resolved = now - timedelta(seconds=amount * UNIT_SECONDS[unit])
                except (OverflowError, ValueError):
                    # offset outside the datetime range, or too many digits for int()
                    return ResolvedParam(ParamKind.RAW, s)
                return ResolvedParam(ParamKind.RELATIVE, str(unix_seconds(resolved)))

    return ResolvedParam(ParamKind.RAW, s)


def to_unix_seconds(param: ResolvedParam) -> int:
    """
    Convert a resolved parameter to integer Unix seconds.

    RFC3339 absolute values are converted, fractional seconds are
    floored, and any other text yields 0. Nothing raises.
    """
    if param.text.isdigit() and param.text.isascii():
        try:
            return int(param.text)
        except ValueError:
            # longer than the int conversion digit limit
            return 0
    moment = parse_rfc3339(param.text)
    if moment is not None:
        return unix_seconds(moment)
    try:
        seconds = float(param.text)
    except ValueError:
        return 0
    return math.floor(seconds) if math.isfinite(seconds) else 0
