"""Session-info repair and parsing.

The YAML block embedded in an ``.ibt`` file is written by the sim without
escaping, so real recordings carry a recurring set of defects: control
characters, keys with a lone trailing comma, fragments starting with a
comma, keys whose colon is missing, repeated setup sub-sections, and
unquoted ``@`` values. ``SessionInfoNormalizer`` rewrites those line by line,
then hands the text to PyYAML. If PyYAML still rejects it, the offending
line (from the error mark) is patched by shape and parsing is retried a
bounded number of times.

The repairs are heuristics. The output is guaranteed to parse, not to mean
what the sim intended.
"""
from __future__ import annotations

from dataclasses import dataclass, field
import logging
import re
from typing import Any, List, Optional, Set, Tuple

import yaml

from .config import (
    NormalizerConfig,
    RULE_LEADING_COMMA,
    RULE_MISSING_COLON,
    RULE_QUOTE_AT_SIGN,
    RULE_RECURRING_SECTION,
    RULE_TRAILING_COMMA,
)
from .errors import UnrecoverableMetadata

logger = logging.getLogger(__name__)

CONTROL_CHARS_RE = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F\x80-\x9F]")

_KEY = r"[A-Za-z_][\w.]*"
TRAILING_COMMA_RE = re.compile(rf"^(?P<key>(?:-\s+)?{_KEY}):\s*,\s*$")
BARE_KEY_RE = re.compile(rf"^(?P<key>{_KEY})(?:\s+.*)?$")
KEY_LINE_RE = re.compile(rf"^(?:-\s+)?{_KEY}:(?:\s|$)")
SCALAR_KEY_RE = re.compile(rf"^(?:-\s+)?{_KEY}:\s+\S")
SECTION_HEADER_RE = re.compile(rf"^(?P<key>{_KEY}):$")
AT_VALUE_RE = re.compile(rf"^(?P<key>(?:-\s+)?{_KEY}):\s+(?P<value>[^\s\"'].*@.*)$")


@dataclass(frozen=True)
class Repair:
    line: int
    kind: str
    before: str
    after: str


@dataclass(frozen=True)
class NormalizedSessionInfo:
    text: str
    data: Any
    repairs: Tuple[Repair, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class SessionDetails:
    track_name: Optional[str]
    car_name: Optional[str]


def strip_control_characters(text: str) -> str:
    return CONTROL_CHARS_RE.sub("", text)


def _indent_of(line: str) -> str:
    return line[: len(line) - len(line.lstrip())]


def _continues_scalar(previous: str, line: str) -> bool:
    """True when ``line`` is a deeper-indented continuation of ``key: value``."""
    if not SCALAR_KEY_RE.match(previous.strip()):
        return False
    key_column = len(previous) - len(previous.lstrip(" \t-"))
    return len(_indent_of(line)) > key_column


class SessionInfoNormalizer:
    def __init__(self, config: Optional[NormalizerConfig] = None) -> None:
        self.config = config or NormalizerConfig()

    def clean(self, raw: str) -> str:
        """Run the text passes only (no parsing)."""
        return self._repair_lines(strip_control_characters(raw))

    def normalize(self, raw: str) -> NormalizedSessionInfo:
        text = self.clean(raw)
        repairs: List[Repair] = []
        attempt = 0

        while True:
            try:
                data = yaml.safe_load(text)
            except yaml.YAMLError as exc:
                line, problem = _error_location(exc)
                lines = text.split("\n")
                if line is None or not 0 <= line < len(lines) or attempt >= self.config.max_repairs:
                    raise UnrecoverableMetadata(line, problem) from exc
                repair = self._patch_line(lines, line, attempt)
                logger.info(
                    "Session info line %d did not parse (%s); applied %s repair",
                    line, problem, repair.kind,
                )
                repairs.append(repair)
                text = self.clean("\n".join(lines))
                attempt += 1
                continue
            if data is None:
                data = {}
            return NormalizedSessionInfo(text=text, data=data, repairs=tuple(repairs))

    def _repair_lines(self, text: str) -> str:
        config = self.config
        placeholder = config.placeholder
        lines = text.split("\n")
        kept: List[str] = []
        seen_sections: Set[str] = set()
        dropping_below: Optional[int] = None

        for i, line in enumerate(lines):
            stripped = line.strip()
            indent = _indent_of(line)

            if dropping_below is not None:
                if not stripped or len(indent) > dropping_below:
                    continue
                dropping_below = None

            if config.enabled(RULE_TRAILING_COMMA):
                match = TRAILING_COMMA_RE.match(stripped)
                if match:
                    kept.append(f"{indent}{match.group('key')}: {placeholder}")
                    continue

            if config.enabled(RULE_LEADING_COMMA) and stripped.startswith(","):
                logger.debug("Dropping session info line %d starting with a comma: %r", i, stripped)
                continue

            if config.enabled(RULE_RECURRING_SECTION):
                match = SECTION_HEADER_RE.match(stripped)
                if match and match.group("key") in config.recurring_sections:
                    key = match.group("key")
                    if key in seen_sections:
                        logger.debug("Dropping repeated %s section at line %d", key, i)
                        dropping_below = len(indent)
                        continue
                    seen_sections.add(key)

            if config.enabled(RULE_QUOTE_AT_SIGN):
                match = AT_VALUE_RE.match(stripped)
                if match:
                    value = match.group("value").strip()
                    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
                    kept.append(f'{indent}{match.group("key")}: "{escaped}"')
                    continue

            kept.append(line)

        # Lines without a colon never match the other rules, so this runs
        # separately, back to front, against the lines that survived.
        if config.enabled(RULE_MISSING_COLON):
            for i in range(len(kept) - 2, -1, -1):
                stripped = kept[i].strip()
                if ":" in stripped:
                    continue
                if i > 0 and _continues_scalar(kept[i - 1], kept[i]):
                    continue
                match = BARE_KEY_RE.match(stripped)
                if match and KEY_LINE_RE.match(kept[i + 1].strip()):
                    kept[i] = f"{_indent_of(kept[i])}{match.group('key')}: {placeholder}"

        return "\n".join(kept)

    def _patch_line(self, lines: List[str], index: int, attempt: int) -> Repair:
        line = lines[index]
        stripped = line.strip()
        indent = _indent_of(line)
        tokens = stripped.split()

        # List items first, so "- Key: value" never gets a colon after the dash.
        if stripped.startswith("-"):
            kind = "null_list_item"
            patched = f"{indent}- null"
        elif ":" in stripped and "," not in stripped and len(tokens) >= 2 and not tokens[0].endswith(":"):
            kind = "insert_colon"
            rest = stripped[len(tokens[0]):].lstrip()
            patched = f"{indent}{tokens[0]}: {rest}"
        elif "," in stripped:
            kind = "strip_commas"
            patched = line.replace(",", "")
        else:
            kind = "placeholder_key"
            patched = f"{indent}_unparsed_{attempt}_{index}: null"

        lines[index] = patched
        return Repair(line=index, kind=kind, before=line, after=patched)


def _error_location(exc: yaml.YAMLError) -> Tuple[Optional[int], str]:
    if isinstance(exc, yaml.MarkedYAMLError):
        mark = exc.problem_mark or exc.context_mark
        problem = exc.problem or exc.context or str(exc)
        return (mark.line if mark is not None else None), problem
    return None, str(exc)


def normalize_session_info(raw: str, config: Optional[NormalizerConfig] = None) -> NormalizedSessionInfo:
    return SessionInfoNormalizer(config).normalize(raw)


def session_details(data: Any) -> SessionDetails:
    """Pull the track and player car names out of parsed session info."""
    if not isinstance(data, dict):
        return SessionDetails(track_name=None, car_name=None)

    track_name = None
    weekend = data.get("WeekendInfo")
    if isinstance(weekend, dict):
        track_name = weekend.get("TrackDisplayName") or weekend.get("TrackName")

    car_name = None
    driver_info = data.get("DriverInfo")
    if isinstance(driver_info, dict):
        drivers = [d for d in driver_info.get("Drivers") or [] if isinstance(d, dict)]
        car_idx = driver_info.get("DriverCarIdx")
        for driver in drivers:
            if driver.get("CarIdx") == car_idx:
                car_name = driver.get("CarScreenName")
                break
        if car_name is None and drivers:
            car_name = drivers[0].get("CarScreenName")

    return SessionDetails(
        track_name=str(track_name) if track_name is not None else None,
        car_name=str(car_name) if car_name is not None else None,
    )
