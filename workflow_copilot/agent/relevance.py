"""Skill relevance filter — decide which catalogue skills are worth injecting into a prompt.

Pure scoring/sort function, no I/O, deterministic for identical inputs.

Scoring is lexical:
  - The user message and each skill's name/description are tokenized into
    lowercase alphanumeric keywords (stopwords and 1-2 letter tokens dropped).
  - Each message keyword found in the skill name scores NAME_WEIGHT, each one
    found only in the description scores DESCRIPTION_WEIGHT.
  - A verbatim mention of the full skill name adds EXACT_NAME_BONUS.
  - The sum is divided by the number of message keywords, so scores are
    comparable across messages of different length.

Ordering: score descending; ties keep catalogue order, except that entries
sharing a name are grouped at the first occurrence with the project-scope
entry first.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable

from workflow_copilot.agent.skills import SkillReference

NAME_WEIGHT = 2.0
DESCRIPTION_WEIGHT = 1.0
EXACT_NAME_BONUS = 2.0
DEFAULT_MAX_RESULTS = 20

_TOKEN_RE = re.compile(r"[a-z0-9]+")

_STOPWORDS = frozenset(
    """
    a an and are as at be but by can could do does for from has have how i if in
    into is it its me my of on or our please should so that the their then there
    this to use using want was we what when which will with would you your add
    make node nodes workflow step steps need also like just
    """.split()
)

_SCOPE_RANK = {"project": 0, "personal": 1}


@dataclass(frozen=True)
class SkillRelevanceScore:
    skill: SkillReference
    score: float
    matched_keywords: tuple[str, ...] = ()


def extract_keywords(text: str) -> set[str]:
    """Lowercase alphanumeric tokens of length ≥ 3 that are not stopwords."""
    return {
        tok for tok in _TOKEN_RE.findall(text.lower())
        if len(tok) >= 3 and tok not in _STOPWORDS
    }


def score_skill(message_keywords: set[str], message_lower: str, skill: SkillReference) -> SkillRelevanceScore:
    name_keywords = extract_keywords(skill.name)
    description_keywords = extract_keywords(skill.description)

    name_hits = message_keywords & name_keywords
    description_hits = (message_keywords & description_keywords) - name_hits

    raw = NAME_WEIGHT * len(name_hits) + DESCRIPTION_WEIGHT * len(description_hits)
    if skill.name and skill.name.lower() in message_lower:
        raw += EXACT_NAME_BONUS

    score = raw / len(message_keywords) if message_keywords else 0.0
    return SkillRelevanceScore(
        skill=skill,
        score=round(score, 6),
        matched_keywords=tuple(sorted(name_hits | description_hits)),
    )


def filter_skills_by_relevance(
    user_message: str,
    catalogue: Iterable[SkillReference],
    max_results: int = DEFAULT_MAX_RESULTS,
    min_score: float = 0.0,
) -> list[SkillRelevanceScore]:
    """Score every skill against user_message; return those above min_score, best first."""
    skills = list(catalogue)
    message_lower = user_message.lower()
    message_keywords = extract_keywords(user_message)

    first_index_by_name: dict[str, int] = {}
    for index, skill in enumerate(skills):
        first_index_by_name.setdefault(skill.name, index)

    ranked: list[tuple[tuple[float, int, int, int], SkillRelevanceScore]] = []
    for index, skill in enumerate(skills):
        scored = score_skill(message_keywords, message_lower, skill)
        if scored.score <= min_score:
            continue
        sort_key = (
            -scored.score,
            first_index_by_name[skill.name],
            _SCOPE_RANK.get(skill.scope, len(_SCOPE_RANK)),
            index,
        )
        ranked.append((sort_key, scored))

    ranked.sort(key=lambda item: item[0])
    return [scored for _, scored in ranked[:max_results]]
