from __future__ import annotations

import datetime
import logging
from typing import Dict, List, Optional

from db import TemplateRepository
from models import TemplateCategory, WorkoutTemplate, utcnow

logger = logging.getLogger(__name__)

# ISO weekday (Monday = 1) -> categories tried in order
DAY_PREFERENCES: Dict[int, tuple[TemplateCategory, ...]] = {
    1: (TemplateCategory.PUSH, TemplateCategory.UPPER_BODY),
    2: (TemplateCategory.LEGS, TemplateCategory.LOWER_BODY),
    3: (TemplateCategory.PULL, TemplateCategory.UPPER_BODY),
    4: (TemplateCategory.FULL_BODY, TemplateCategory.STRENGTH),
    5: (TemplateCategory.PUSH, TemplateCategory.UPPER_BODY),
    6: (TemplateCategory.FULL_BODY, TemplateCategory.CARDIO),
    7: (TemplateCategory.PULL, TemplateCategory.FULL_BODY),
}

DAY_REASONS = {
    1: "Perfect way to start the week strong",
    2: "Build foundation with lower body power",
    3: "Mid-week back and bicep focus",
    4: "Balanced training for overall fitness",
    5: "End the work week with pushing power",
    6: "Weekend warrior full-body session",
    7: "Active recovery and muscle balance",
}

# fallback order among system templates
_FALLBACK_CATEGORIES = (TemplateCategory.FULL_BODY, TemplateCategory.PUSH)


def _least_used_first(templates: List[WorkoutTemplate]) -> List[WorkoutTemplate]:
    return sorted(templates, key=lambda t: (t.usage_count, t.name, t.id))


class RecommendationService:
    """Suggest templates for a user from their own and the system templates."""

    def __init__(self, template_repo: TemplateRepository) -> None:
        self.templates = template_repo

    def _candidates(self, owner_id: str) -> List[WorkoutTemplate]:
        system_owner = self.templates.system_owner_id
        found = self.templates.list(owner_id)
        if owner_id != system_owner:
            found += self.templates.list(system_owner)
        return found

    def todays_recommendation(
        self, owner_id: str, today: Optional[datetime.date] = None
    ) -> Optional[WorkoutTemplate]:
        """Pick the least used template of the first category preferred for today.

        When no template matches the day, the system fallback is used, and
        failing that the least used template overall. Returns ``None`` when no
        template exists.
        """
        today = today or utcnow().date()
        templates = self._candidates(owner_id)
        if not templates:
            return None
        for category in DAY_PREFERENCES[today.isoweekday()]:
            matching = [t for t in templates if t.category is category]
            if matching:
                choice = _least_used_first(matching)[0]
                logger.debug("recommending %s for %s on %s", choice.id, owner_id, today)
                return choice
        return self.fallback() or _least_used_first(templates)[0]

    def recommendations(self, owner_id: str, count: int = 3) -> List[WorkoutTemplate]:
        """Up to ``count`` templates, least used first, one per category before repeats."""
        if count <= 0:
            return []
        ordered = _least_used_first(self._candidates(owner_id))
        chosen: List[WorkoutTemplate] = []
        seen: set[TemplateCategory] = set()
        for template in ordered:
            if len(chosen) >= count:
                break
            if template.category not in seen:
                chosen.append(template)
                seen.add(template.category)
        picked = {t.id for t in chosen}
        for template in ordered:
            if len(chosen) >= count:
                break
            if template.id not in picked:
                chosen.append(template)
        return chosen

    def fallback(self) -> Optional[WorkoutTemplate]:
        """A full-body or push system template, else any system template."""
        system = _least_used_first(self.templates.list(self.templates.system_owner_id))
        for category in _FALLBACK_CATEGORIES:
            for template in system:
                if template.category is category:
                    return template
        return system[0] if system else None

    def is_recommended_for_today(
        self, owner_id: str, template_id: str, today: Optional[datetime.date] = None
    ) -> bool:
        choice = self.todays_recommendation(owner_id, today)
        return choice is not None and choice.id == template_id

    @staticmethod
    def reason(template: WorkoutTemplate, today: Optional[datetime.date] = None) -> str:
        today = today or utcnow().date()
        if template.category in (TemplateCategory.PUSH, TemplateCategory.PULL):
            return DAY_REASONS[today.isoweekday()]
        if template.category is TemplateCategory.LEGS:
            return "Build powerful legs and glutes"
        if template.category is TemplateCategory.FULL_BODY:
            return "Complete workout hitting all major muscles"
        return "Recommended based on your training schedule"
