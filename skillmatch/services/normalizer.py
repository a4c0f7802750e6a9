"""
Skill map normalization.

Raw skill maps come from profile and posting forms with inconsistent casing,
aliases ("ReactJS", "react.js") and stray values. Keys are folded to a
canonical lowercase name, proficiencies are clamped to 1..5 and entries whose
value is missing or not numeric are dropped and counted.
"""
import math
from typing import Any, Dict, Mapping, NamedTuple

from skillmatch.utils.logging_config import get_logger

logger = get_logger(__name__)

MIN_PROFICIENCY = 1
MAX_PROFICIENCY = 5

SKILL_SYNONYMS: Dict[str, tuple] = {
    "react": ("react.js", "reactjs", "react-js", "reactjsx"),
    "node.js": ("nodejs", "node", "node-js"),
    "javascript": ("js", "ecmascript", "javascript es6"),
    "typescript": ("ts", "typescript es6"),
    "python": ("py", "python3", "python 3"),
    "java": ("java 8", "java 11", "java 17"),
    "c++": ("cpp", "c plus plus"),
    "c#": ("csharp", "c-sharp"),
    ".net": ("dotnet", "asp.net"),
    "html": ("html5", "html 5"),
    "css": ("css3", "css 3", "scss", "sass"),
    "sql": ("mysql", "postgresql", "postgres", "sql server"),
    "mongodb": ("mongo", "mongo db"),
    "express": ("express.js", "expressjs"),
    "vue": ("vue.js", "vuejs", "vue 3"),
    "angular": ("angularjs", "angular 2", "angular.js"),
    "docker": ("docker container", "dockerfile"),
    "kubernetes": ("k8s", "kube"),
    "aws": ("amazon web services", "amazon aws"),
    "azure": ("microsoft azure",),
    "gcp": ("google cloud", "google cloud platform"),
}

_ALIASES: Dict[str, str] = {
    alias: canonical
    for canonical, aliases in SKILL_SYNONYMS.items()
    for alias in aliases
}


class NormalizedSkills(NamedTuple):
    skills: Dict[str, int]
    dropped: int


def normalize_skill_name(name: str) -> str:
    folded = " ".join(name.casefold().split())
    return _ALIASES.get(folded, folded)


def _coerce_proficiency(value: Any):
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number):
        return None
    return min(MAX_PROFICIENCY, max(MIN_PROFICIENCY, int(round(number))))


def normalize_skills(raw: Mapping[str, Any]) -> NormalizedSkills:
    """Clean a raw skill map. Never raises on bad entries; they are counted in `dropped`."""
    skills: Dict[str, int] = {}
    dropped = 0
    for key, value in (raw or {}).items():
        if not isinstance(key, str) or not key.strip():
            dropped += 1
            continue
        level = _coerce_proficiency(value)
        if level is None:
            dropped += 1
            continue
        name = normalize_skill_name(key)
        # two raw keys can fold to one canonical skill; keep the stronger
        skills[name] = max(level, skills.get(name, MIN_PROFICIENCY))

    if dropped:
        logger.debug(f"Dropped {dropped} malformed skill entr{'y' if dropped == 1 else 'ies'}")
    return NormalizedSkills(skills=skills, dropped=dropped)
