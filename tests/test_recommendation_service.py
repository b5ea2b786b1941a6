import datetime
import os
import shutil
import sys
import tempfile
import unittest

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from db import TemplateRepository, WorkoutRepository
from models import SYSTEM_OWNER_ID, TemplateCategory, WorkoutTemplate
from planner_service import PlannerService
from recommendation_service import DAY_REASONS, RecommendationService

MONDAY = datetime.date(2024, 6, 10)
TUESDAY = datetime.date(2024, 6, 11)
WEDNESDAY = datetime.date(2024, 6, 12)
THURSDAY = datetime.date(2024, 6, 13)


class RecommendationServiceTest(unittest.TestCase):
    def setUp(self) -> None:
        self.tmp = tempfile.mkdtemp()
        path = os.path.join(self.tmp, "recommend.db")
        self.templates = TemplateRepository(path)
        self.service = RecommendationService(self.templates)
        self.planner = PlannerService(WorkoutRepository(path), self.templates)

    def tearDown(self) -> None:
        shutil.rmtree(self.tmp, ignore_errors=True)

    def test_nothing_stored(self) -> None:
        self.assertIsNone(self.service.todays_recommendation("u1", MONDAY))
        self.assertIsNone(self.service.fallback())
        self.assertEqual(self.service.recommendations("u1"), [])
        self.assertFalse(self.service.is_recommended_for_today("u1", "push_template", MONDAY))

    def test_day_rotation_prefers_least_used(self) -> None:
        self.planner.seed_default_templates()
        self.assertEqual(self.service.todays_recommendation("u1", MONDAY).id, "chest_template")
        self.templates.record_usage("chest_template")
        self.assertEqual(self.service.todays_recommendation("u1", MONDAY).id, "push_template")
        self.assertEqual(self.service.todays_recommendation("u1", TUESDAY).id, "upper_legs_template")
        self.assertEqual(self.service.todays_recommendation("u1", WEDNESDAY).id, "back_template")
        self.assertTrue(self.service.is_recommended_for_today("u1", "back_template", WEDNESDAY))

    def test_unmatched_day_uses_system_fallback(self) -> None:
        self.planner.seed_default_templates()
        # no full-body or strength templates are seeded
        self.assertEqual(self.service.todays_recommendation("u1", THURSDAY).id, "chest_template")
        self.assertEqual(self.service.fallback().category, TemplateCategory.PUSH)

    def test_own_templates_take_part(self) -> None:
        self.planner.seed_default_templates()
        mine = self.templates.save(
            WorkoutTemplate(owner_id="u1", name="My Full Body", category=TemplateCategory.FULL_BODY)
        )
        self.assertEqual(self.service.todays_recommendation("u1", THURSDAY).id, mine)
        self.assertEqual(self.service.todays_recommendation("u2", THURSDAY).id, "chest_template")

    def test_fallback_prefers_full_body(self) -> None:
        self.templates.save(
            WorkoutTemplate(owner_id=SYSTEM_OWNER_ID, name="Legs", category=TemplateCategory.LEGS)
        )
        self.assertEqual(self.service.fallback().name, "Legs")
        full = self.templates.save(
            WorkoutTemplate(owner_id=SYSTEM_OWNER_ID, name="Everything", category=TemplateCategory.FULL_BODY)
        )
        self.assertEqual(self.service.fallback().id, full)

    def test_diverse_recommendations(self) -> None:
        self.planner.seed_default_templates()
        names = [t.name for t in self.service.recommendations("u1", 3)]
        self.assertEqual(names, ["Arm Destroyer", "Back Builder", "Chest Focus"])
        names = [t.name for t in self.service.recommendations("u1", 5)]
        self.assertEqual(
            names, ["Arm Destroyer", "Back Builder", "Chest Focus", "Upper Legs Power", "Pull Day"]
        )
        self.assertEqual(len(self.service.recommendations("u1", 20)), 7)
        self.assertEqual(self.service.recommendations("u1", 0), [])

        self.templates.record_usage("arms_template")
        names = [t.name for t in self.service.recommendations("u1", 3)]
        self.assertEqual(names, ["Back Builder", "Chest Focus", "Shoulder Sculptor"])

    def test_reason(self) -> None:
        self.planner.seed_default_templates()
        push = self.templates.get("push_template")
        legs = self.templates.get("upper_legs_template")
        arms = self.templates.get("arms_template")
        self.assertEqual(self.service.reason(push, MONDAY), DAY_REASONS[1])
        self.assertEqual(self.service.reason(legs, MONDAY), "Build powerful legs and glutes")
        self.assertEqual(
            self.service.reason(arms, MONDAY), "Recommended based on your training schedule"
        )


if __name__ == "__main__":
    unittest.main()
