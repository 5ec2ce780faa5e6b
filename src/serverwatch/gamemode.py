"""Gamemode classification for game servers.

The classifier is a pure function over a server's name, map and a
normalized tag set. Rules are evaluated in a fixed priority order and the
first match wins; servers matching nothing are tagged ``public``.

Tag data arrives from servers in several shapes (a list, a comma-delimited
string, or a ``sv_tags`` rule value). ``normalize_tags`` turns any of them
into a frozenset of lowercase tokens so the classifier only ever sees one
type.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field

from serverwatch.types import Gamemode

# Rule name that Source engine servers use to publish their tag list
SV_TAGS_RULE = "sv_tags"


def normalize_tags(raw: Iterable[str] | str | None) -> frozenset[str]:
    """Normalize raw tag data to a set of lowercase tokens.

    Args:
        raw: A list of tags, a comma-delimited string, or None.

    Returns:
        Frozenset of non-empty, stripped, lowercase tokens.
    """
    if raw is None:
        return frozenset()
    items = raw.split(",") if isinstance(raw, str) else raw
    tokens: set[str] = set()
    for item in items:
        if not isinstance(item, str):
            continue
        token = item.strip().lower()
        if token:
            tokens.add(token)
    return frozenset(tokens)


def collect_tags(
    raw_tags: Iterable[str] | str | None,
    raw_rules: Mapping[str, str] | None = None,
) -> frozenset[str]:
    """Merge a server's tag list with the tags published in its rules."""
    tags = normalize_tags(raw_tags)
    if raw_rules:
        tags |= normalize_tags(raw_rules.get(SV_TAGS_RULE))
    return tags


@dataclass(frozen=True)
class GamemodeRule:
    """One classifier rule.

    A rule matches when the map starts with any of ``map_prefixes``, the
    server name contains any of ``name_contains``, or the tag set contains
    any of ``tags``. When ``also`` is set it must additionally hold.
    """

    gamemode: Gamemode
    map_prefixes: tuple[str, ...] = ()
    name_contains: tuple[str, ...] = ()
    tags: frozenset[str] = field(default_factory=frozenset)
    also: Callable[[str, str, frozenset[str]], bool] | None = None

    def matches(self, name: str, map_name: str, tags: frozenset[str]) -> bool:
        hit = (
            any(map_name.startswith(prefix) for prefix in self.map_prefixes)
            or any(fragment in name for fragment in self.name_contains)
            or not self.tags.isdisjoint(tags)
        )
        if hit and self.also is not None:
            return self.also(name, map_name, tags)
        return hit


def _is_combat(name: str, map_name: str, tags: frozenset[str]) -> bool:
    return "combat" in name or "dm" in name


# Priority order matters: the first matching rule wins.
GAMEMODE_RULES: tuple[GamemodeRule, ...] = (
    GamemodeRule(
        Gamemode.SURF,
        map_prefixes=("surf_",),
        name_contains=("surf",),
        tags=frozenset({"surf"}),
    ),
    GamemodeRule(
        Gamemode.BHOP,
        map_prefixes=("bhop_",),
        name_contains=("bhop", "bunnyhop"),
        tags=frozenset({"bhop", "bunnyhop"}),
    ),
    GamemodeRule(
        Gamemode.ZOMBIE_ESCAPE,
        map_prefixes=("ze_",),
        name_contains=("zombie", "ze "),
        tags=frozenset({"ze", "zombie", "zombieescape"}),
    ),
    GamemodeRule(
        Gamemode.KZ,
        map_prefixes=("kz_",),
        name_contains=(" kz", "climb"),
        tags=frozenset({"kz", "climb", "kreedz"}),
    ),
    GamemodeRule(
        Gamemode.DEATHMATCH,
        name_contains=("deathmatch", " dm "),
        tags=frozenset({"dm", "deathmatch", "ffa"}),
    ),
    GamemodeRule(
        Gamemode.RETAKE,
        name_contains=("retake",),
        tags=frozenset({"retake", "retakes"}),
    ),
    GamemodeRule(
        Gamemode.AWP,
        map_prefixes=("awp_",),
        name_contains=("awp",),
        tags=frozenset({"awp"}),
    ),
    GamemodeRule(
        Gamemode.AIM,
        map_prefixes=("aim_",),
        name_contains=("aim", "1v1"),
        tags=frozenset({"aim", "1v1"}),
    ),
    GamemodeRule(
        Gamemode.JAILBREAK,
        map_prefixes=("jb_", "ba_jail"),
        name_contains=("jail",),
        tags=frozenset({"jail", "jb", "jailbreak"}),
    ),
    GamemodeRule(
        Gamemode.GUNGAME,
        name_contains=("gungame", "arms race"),
        tags=frozenset({"gungame", "gg", "armsrace"}),
    ),
    GamemodeRule(
        Gamemode.COMBAT_SURF,
        map_prefixes=("surf_",),
        name_contains=("surf",),
        also=_is_combat,
    ),
    GamemodeRule(
        Gamemode.MINIGAME,
        map_prefixes=("mg_",),
        name_contains=("minigame",),
        tags=frozenset({"minigame", "minigames", "mg"}),
    ),
    GamemodeRule(
        Gamemode.HIDE_AND_SEEK,
        name_contains=("hide", "prop hunt"),
        tags=frozenset({"hide", "hns", "hideandseek"}),
    ),
)


def detect_gamemode(
    name: str | None,
    map_name: str | None,
    tags: frozenset[str] = frozenset(),
    rules: tuple[GamemodeRule, ...] = GAMEMODE_RULES,
) -> str:
    """Classify a server into a gamemode tag.

    Args:
        name: Server name as advertised.
        map_name: Current map.
        tags: Normalized tag set (see ``normalize_tags``).
        rules: Rule list in priority order.

    Returns:
        The gamemode tag of the first matching rule, or ``public``.

    Examples:
        >>> detect_gamemode("Surf Heaven", "surf_kitsune")
        'surf'
        >>> detect_gamemode("Best AWP 1v1 Server", "aim_arena")
        'awp'
        >>> detect_gamemode("casual pub", "de_dust2")
        'public'
    """
    lowered_name = (name or "").lower()
    lowered_map = (map_name or "").lower()
    for rule in rules:
        if rule.matches(lowered_name, lowered_map, tags):
            return str(rule.gamemode)
    return str(Gamemode.PUBLIC)


__all__ = [
    "GAMEMODE_RULES",
    "GamemodeRule",
    "SV_TAGS_RULE",
    "collect_tags",
    "detect_gamemode",
    "normalize_tags",
]
