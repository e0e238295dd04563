"""Pattern matcher for extracting series information from file names.

Rules are regular expressions with named groups ``title``, ``season``,
``episode`` and ``year``.  They are evaluated in order against the file
name with its extension removed; the first rule that matches with a
non-empty title wins.
"""
from __future__ import annotations

import json
import logging
import posixpath
import re
from dataclasses import dataclass
from pathlib import Path

from .models import MatchOrigin, MatchResult, PATTERN_CONFIDENCE

log = logging.getLogger(__name__)

# Rule types with a fixed season.
SPECIAL_RULE_TYPE = "special"
SPECIALS_SEASON = 0

_SEP = r'[\s._\-]'


@dataclass(frozen=True)
class PatternRule:
    id: str
    pattern: str
    type: str = "tv"


# Built-in rules (order matters - more specific first)
DEFAULT_RULES: tuple[PatternRule, ...] = (
    # Show.2019.S01E04 / Show (2019) S01E04
    PatternRule(
        "year_season_episode",
        rf'^(?P<title>.+?){_SEP}*\(?(?P<year>(?:19|20)\d{{2}})\)?{_SEP}+'
        rf'[sS](?P<season>\d{{1,2}}){_SEP}?[eE](?P<episode>\d{{1,4}})',
    ),
    # Show.S01E04 / Show - s1e4
    PatternRule(
        "season_episode",
        rf'^(?P<title>.+?){_SEP}*[sS](?P<season>\d{{1,2}}){_SEP}?[eE](?P<episode>\d{{1,4}})',
    ),
    # Show 1x04
    PatternRule(
        "cross",
        rf'^(?P<title>.+?){_SEP}+(?P<season>\d{{1,2}})x(?P<episode>\d{{1,3}})\b',
    ),
    # Show Season 1 Episode 4
    PatternRule(
        "words",
        rf'^(?P<title>.+?){_SEP}+season{_SEP}*(?P<season>\d{{1,2}}){_SEP}*'
        rf'episode{_SEP}*(?P<episode>\d{{1,4}})',
    ),
    # Show 第2季 第04集
    PatternRule(
        "cjk_season_episode",
        rf'^(?P<title>.+?){_SEP}*第(?P<season>\d{{1,2}})季{_SEP}*第(?P<episode>\d{{1,4}})[集话話]',
    ),
    # Show 第04集
    PatternRule(
        "cjk_episode",
        rf'^(?P<title>.+?){_SEP}*第(?P<episode>\d{{1,4}})[集话話]',
    ),
    # Show OVA 2 / Show SP01 / Show Special 3
    PatternRule(
        "special",
        rf'^(?P<title>.+?){_SEP}+(?:sp|ova|oad|special){_SEP}*(?P<episode>\d{{1,3}})\b',
        SPECIAL_RULE_TYPE,
    ),
    # [Group] Show - 05 [1080p]
    PatternRule(
        "fansub_dash",
        r'^\[[^\]]+\]\s*(?P<title>.+?)\s+-\s+(?P<episode>\d{1,4})(?:v\d)?(?:\s|\[|\(|$)',
    ),
)


def strip_extension(filename: str) -> str:
    """Return the bare file name without directory or extension."""
    return posixpath.splitext(posixpath.basename(filename))[0]


def clean_title(title: str) -> str:
    """Clean up a captured title."""
    # Leading release-group tags: [Group] Show
    title = re.sub(r'^\s*(?:\[[^\]]*\]\s*)+', '', title)
    # Dots and underscores are word separators in release names
    title = re.sub(r'[._]', ' ', title)
    title = re.sub(r'\(\s*\)|\[\s*\]', '', title)
    title = re.sub(r'\s+', ' ', title)
    return title.strip()


def _parse_rule(raw: object) -> PatternRule | None:
    if not isinstance(raw, dict):
        return None
    pattern = raw.get("pattern")
    if not isinstance(pattern, str) or not pattern:
        return None
    return PatternRule(
        id=str(raw.get("id") or pattern),
        pattern=pattern,
        type=str(raw.get("type") or "tv"),
    )


def load_custom_rules(path: str | Path) -> list[PatternRule]:
    """
    Load user rules from a JSON file.

    The file holds a list of ``{"id", "pattern", "type"}`` objects.  A
    missing or unreadable file yields no rules.
    """
    path = Path(path)
    if not path.exists():
        log.debug("No custom rules at %s", path)
        return []
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except (json.JSONDecodeError, IOError) as e:
        log.warning("Could not read custom rules %s: %s", path, e)
        return []
    if not isinstance(data, list):
        log.warning("Custom rules %s must be a list, got %s", path, type(data).__name__)
        return []

    rules = []
    for raw in data:
        rule = _parse_rule(raw)
        if rule is None:
            log.warning("Skipping invalid custom rule: %r", raw)
            continue
        rules.append(rule)
    return rules


def load_rules(custom_rules_path: str | Path | None = None) -> list[PatternRule]:
    """Built-in rules with user rules taking precedence."""
    rules = list(DEFAULT_RULES)
    if custom_rules_path:
        rules[:0] = load_custom_rules(custom_rules_path)
    return rules


class PatternMatcher:
    """Deterministic filename matcher driven by an ordered rule list."""

    def __init__(self, rules: list[PatternRule] | None = None):
        self.rules = list(rules) if rules is not None else list(DEFAULT_RULES)

    @classmethod
    def from_settings(cls, custom_rules_path: str | Path | None = None) -> PatternMatcher:
        return cls(load_rules(custom_rules_path))

    def match(self, filename: str) -> MatchResult:
        """
        Match a filename against the rule list.

        Args:
            filename: File name, with or without extension

        Returns:
            MatchResult with confidence 1.0 on success, unresolved otherwise
        """
        name = strip_extension(filename)

        for rule in self.rules:
            try:
                m = re.search(rule.pattern, name, flags=re.IGNORECASE)
                if not m:
                    continue

                groups = m.groupdict()
                title = clean_title(groups.get("title") or "")
                if not title:
                    continue

                season = groups.get("season")
                episode = groups.get("episode")
                if season:
                    season_num = int(season)
                elif rule.type == SPECIAL_RULE_TYPE:
                    season_num = SPECIALS_SEASON
                else:
                    season_num = 1
                episode_num = int(episode) if episode else None
            except (re.error, ValueError) as e:
                log.error("Error executing pattern rule %s: %s", rule.id, e)
                continue

            log.debug("Rule %s matched %r -> %r", rule.id, name, title)
            return MatchResult(
                matched=True,
                series_name=title,
                season=season_num,
                episode=episode_num,
                year=groups.get("year"),
                confidence=PATTERN_CONFIDENCE,
                origin=MatchOrigin.PATTERN,
            )

        return MatchResult.unresolved()
