"""XP reward rules: streak bonus and quiz scoring."""

from learnxp.progress.rewards import quiz_source, quiz_xp, streak_bonus
from learnxp.progress.schemas import XpSource


class TestStreakBonus:
    def test_bonus_scales_with_streak(self):
        assert streak_bonus(50, 3, 0.1, XpSource.CHAPTER_COMPLETED) == 15

    def test_floors(self):
        assert streak_bonus(30, 1, 0.1, XpSource.QUIZ_COMPLETED) == 3
        assert streak_bonus(10, 1, 0.05, XpSource.DAILY_LOGIN) == 0

    def test_no_bonus_without_streak(self):
        assert streak_bonus(50, 0, 0.1, XpSource.CHAPTER_COMPLETED) == 0

    def test_reward_sources_earn_no_bonus(self):
        for source in (XpSource.BADGE_EARNED, XpSource.DAILY_GOAL, XpSource.STREAK_BONUS):
            assert streak_bonus(100, 10, 0.1, source) == 0


class TestQuizXp:
    def test_per_correct_answer(self):
        assert quiz_xp(4, 10) == 20

    def test_minimum_for_attempting(self):
        assert quiz_xp(0, 10) == 10
        assert quiz_xp(1, 10) == 10

    def test_perfect_bonus(self):
        assert quiz_xp(10, 10) == 75

    def test_capped(self):
        assert quiz_xp(40, 40) == 100

    def test_no_questions(self):
        assert quiz_xp(0, 0) == 0

    def test_source(self):
        assert quiz_source(10, 10) == XpSource.QUIZ_PERFECT
        assert quiz_source(9, 10) == XpSource.QUIZ_COMPLETED
