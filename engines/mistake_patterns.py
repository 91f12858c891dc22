"""Mistake pattern library loader."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Pattern, Tuple

from engines.taxonomy import MistakeType

GENERAL_FAMILY = "general"


class MistakePatternConfigError(ValueError):
    """Raised when ``mistake_patterns.json`` contains invalid data."""


@dataclass(frozen=True)
class MistakePattern:
    """A single regex rule that votes for a mistake type when it matches."""

    name: str
    type: MistakeType
    regex: Pattern[str]
    indicators: Tuple[str, ...]

    def matches(self, response: str) -> bool:
        return self.regex.search(response) is not None


class MistakePatternRegistry:
    """Load subject-scoped mistake patterns from ``data/mistake_patterns.json``."""

    def __init__(self, path: str | Path | None = None) -> None:
        base_path = Path(__file__).resolve().parent.parent / "data"
        self.path = Path(path) if path is not None else base_path / "mistake_patterns.json"
        self._patterns: Dict[str, List[MistakePattern]] = {}
        self._families: Dict[str, str] = {}
        self.reload()

    # ------------------------------------------------------------------
    def reload(self) -> None:
        """Reload the pattern library from disk and validate the structure."""

        if not self.path.exists():
            raise FileNotFoundError(f"Mistake pattern file not found: {self.path}")

        with self.path.open("r", encoding="utf-8") as fh:
            raw = json.load(fh)

        if not isinstance(raw, dict) or not isinstance(raw.get("patterns"), dict):
            raise MistakePatternConfigError("Pattern file must contain a 'patterns' object")

        patterns: Dict[str, List[MistakePattern]] = {}
        for family, entries in raw["patterns"].items():
            if not isinstance(entries, list):
                raise MistakePatternConfigError(f"Patterns for '{family}' must be a list")
            seen: set[str] = set()
            compiled: List[MistakePattern] = []
            for idx, entry in enumerate(entries, start=1):
                compiled.append(self._parse_entry(family, idx, entry, seen))
            patterns[str(family)] = compiled

        if GENERAL_FAMILY not in patterns:
            raise MistakePatternConfigError("Pattern file must define a 'general' family")

        families: Dict[str, str] = {}
        for family, subjects in (raw.get("families") or {}).items():
            if family not in patterns:
                raise MistakePatternConfigError(f"Family '{family}' has no patterns")
            for subject in subjects:
                key = str(subject).strip().lower()
                if key in families:
                    raise MistakePatternConfigError(f"Subject '{key}' mapped to more than one family")
                families[key] = family

        self._patterns = patterns
        self._families = families

    @staticmethod
    def _parse_entry(family: str, idx: int, entry: object, seen: set[str]) -> MistakePattern:
        if not isinstance(entry, dict):
            raise MistakePatternConfigError(f"{family} entry #{idx} must be a JSON object")
        name = str(entry.get("name", "")).strip()
        if not name:
            raise MistakePatternConfigError(f"{family} entry #{idx} is missing a non-empty 'name'")
        if name in seen:
            raise MistakePatternConfigError(f"Duplicate pattern name in {family}: {name}")
        seen.add(name)

        try:
            mistake_type = MistakeType(str(entry.get("type", "")))
        except ValueError as exc:
            raise MistakePatternConfigError(
                f"Pattern {family}/{name} has unknown type {entry.get('type')!r}"
            ) from exc

        flags = 0
        for flag_name in entry.get("flags") or []:
            flag = getattr(re, str(flag_name), None)
            if not isinstance(flag, re.RegexFlag):
                raise MistakePatternConfigError(f"Pattern {family}/{name} has unknown flag {flag_name!r}")
            flags |= flag
        try:
            regex = re.compile(str(entry.get("pattern", "")), flags)
        except re.error as exc:
            raise MistakePatternConfigError(f"Pattern {family}/{name} is not a valid regex: {exc}") from exc

        indicators = entry.get("indicators") or []
        if not isinstance(indicators, list):
            raise MistakePatternConfigError(f"Pattern {family}/{name} indicators must be a list")
        return MistakePattern(name, mistake_type, regex, tuple(str(item) for item in indicators))

    # ------------------------------------------------------------------
    def family_for(self, subject: Optional[str]) -> str:
        """Return the subject family (``mathematics``, ``science`` ...) for ``subject``."""

        key = (subject or "").strip().lower()
        if key in self._patterns:
            return key
        return self._families.get(key, GENERAL_FAMILY)

    def patterns_for(self, subject: Optional[str]) -> List[MistakePattern]:
        """Patterns of the subject family; unknown subjects get the general ones."""

        return list(self._patterns[self.family_for(subject)])

    @property
    def families(self) -> List[str]:
        return sorted(self._patterns)

