from __future__ import annotations

from dataclasses import dataclass
import json
from pathlib import Path
from typing import Dict, Optional, Tuple, Union


DEFAULT_PLACEHOLDER = "unknown"
DEFAULT_MAX_REPAIRS = 5

RULE_TRAILING_COMMA = "trailing_comma"
RULE_LEADING_COMMA = "leading_comma"
RULE_MISSING_COLON = "missing_colon"
RULE_RECURRING_SECTION = "recurring_section"
RULE_QUOTE_AT_SIGN = "quote_at_sign"

# Order here is the order rules are tried on each line.
ALL_RULES: Tuple[str, ...] = (
    RULE_TRAILING_COMMA,
    RULE_LEADING_COMMA,
    RULE_MISSING_COLON,
    RULE_RECURRING_SECTION,
    RULE_QUOTE_AT_SIGN,
)

# Older session-info exports only needed the comma and colon fixes.
RULESETS: Dict[str, Tuple[str, ...]] = {
    "basic": (RULE_TRAILING_COMMA, RULE_LEADING_COMMA, RULE_MISSING_COLON),
    "full": ALL_RULES,
}

# Setup blocks repeat their own sub-headers at deeper levels.
DEFAULT_RECURRING_SECTIONS: Tuple[str, ...] = ("CarSetup",)


@dataclass(frozen=True)
class NormalizerConfig:
    placeholder: str = DEFAULT_PLACEHOLDER
    max_repairs: int = DEFAULT_MAX_REPAIRS
    rules: Tuple[str, ...] = ALL_RULES
    recurring_sections: Tuple[str, ...] = DEFAULT_RECURRING_SECTIONS

    def __post_init__(self) -> None:
        unknown = [rule for rule in self.rules if rule not in ALL_RULES]
        if unknown:
            raise ValueError(f"Unknown normalizer rules: {', '.join(unknown)}")
        if self.max_repairs < 0:
            raise ValueError(f"max_repairs must be >= 0 (got {self.max_repairs})")
        if not self.placeholder or not self.placeholder.strip():
            raise ValueError("placeholder must be a non-empty token")
        # Keep the fixed rule order regardless of how the caller listed them.
        object.__setattr__(self, "rules", tuple(r for r in ALL_RULES if r in self.rules))
        object.__setattr__(self, "recurring_sections", tuple(self.recurring_sections))

    def enabled(self, rule: str) -> bool:
        return rule in self.rules

    @classmethod
    def for_ruleset(cls, name: str, **overrides) -> "NormalizerConfig":
        try:
            rules = RULESETS[name]
        except KeyError as exc:
            raise ValueError(f"Unknown ruleset: {name}") from exc
        return cls(rules=rules, **overrides)


def load_normalizer_config(path: Optional[Union[str, Path]]) -> NormalizerConfig:
    if not path:
        return NormalizerConfig()
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Normalizer config not found: {path}")
    data = json.loads(path.read_text(encoding="utf-8"))
    ruleset = data.get("ruleset", "full")
    if ruleset not in RULESETS:
        raise ValueError(f"Unknown ruleset: {ruleset}")
    rules = tuple(data.get("rules", RULESETS[ruleset]))
    return NormalizerConfig(
        placeholder=data.get("placeholder", DEFAULT_PLACEHOLDER),
        max_repairs=int(data.get("max_repairs", DEFAULT_MAX_REPAIRS)),
        rules=rules,
        recurring_sections=tuple(data.get("recurring_sections", DEFAULT_RECURRING_SECTIONS)),
    )
