"""XP reward rules: streak bonus and quiz scoring."""

from __future__ import annotations

from learnxp.progress.schemas import NO_STREAK_BONUS_SOURCES, XpSource

QUIZ_XP_PER_CORRECT = 5
QUIZ_XP_MIN = 10
QUIZ_XP_MAX = 100


def streak_bonus(amount: int, streak: int, multiplier: float, source: XpSource) -> int:
    """Extra XP for learning on a streak: ``amount * streak * multiplier``, floored."""
    if source in NO_STREAK_BONUS_SOURCES or streak <= 0 or amount <= 0:
        return 0
    return int(amount * streak * multiplier)


def quiz_xp(correct: int, total_questions: int) -> int:
    """XP for a finished quiz.

    5 XP per correct answer, at least 10 for attempting, +50% for a perfect
    score, capped at 100.
    """
    if total_questions <= 0:
        return 0
    correct = max(0, min(correct, total_questions))
    xp = max(QUIZ_XP_MIN, correct * QUIZ_XP_PER_CORRECT)
    if correct == total_questions:
        xp = int(xp * 1.5)
    return min(QUIZ_XP_MAX, xp)


def quiz_source(correct: int, total_questions: int) -> XpSource:
    if total_questions > 0 and correct >= total_questions:
        return XpSource.QUIZ_PERFECT
    return XpSource.QUIZ_COMPLETED
