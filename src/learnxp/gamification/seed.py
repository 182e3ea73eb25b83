"""Badge seed data: the default catalog shipped with the engine."""

from __future__ import annotations

BADGE_SEED_DATA: list[dict] = [
    # Streaks
    {
        "slug": "streak_3",
        "name": "Warming Up",
        "description": "Learn three days in a row",
        "category": "streak",
        "rarity": "common",
        "xp_reward": 25,
        "trigger_type": "streak_days",
        "trigger_config": {"threshold": 3},
        "sort_order": 1,
    },
    {
        "slug": "streak_7",
        "name": "Week Warrior",
        "description": "Keep a seven-day learning streak",
        "category": "streak",
        "rarity": "uncommon",
        "xp_reward": 75,
        "trigger_type": "streak_days",
        "trigger_config": {"threshold": 7},
        "sort_order": 2,
    },
    {
        "slug": "streak_30",
        "name": "Unstoppable",
        "description": "Thirty days without missing a day",
        "category": "streak",
        "rarity": "epic",
        "xp_reward": 300,
        "trigger_type": "streak_days",
        "trigger_config": {"threshold": 30},
        "sort_order": 3,
    },
    # Quizzes
    {
        "slug": "quiz_first",
        "name": "First Steps",
        "description": "Complete your first quiz",
        "category": "quiz",
        "rarity": "common",
        "xp_reward": 25,
        "trigger_type": "quiz_count",
        "trigger_config": {"threshold": 1},
        "sort_order": 4,
    },
    {
        "slug": "quiz_10",
        "name": "Quiz Regular",
        "description": "Complete ten quizzes",
        "category": "quiz",
        "rarity": "uncommon",
        "xp_reward": 100,
        "trigger_type": "quiz_count",
        "trigger_config": {"threshold": 10},
        "sort_order": 5,
    },
    {
        "slug": "quiz_perfect",
        "name": "Flawless",
        "description": "Answer every question of a quiz correctly",
        "category": "quiz",
        "rarity": "uncommon",
        "xp_reward": 50,
        "trigger_type": "perfect_quiz_count",
        "trigger_config": {"threshold": 1},
        "sort_order": 6,
    },
    # Reading
    {
        "slug": "chapter_first",
        "name": "Page Turner",
        "description": "Finish your first chapter",
        "category": "learning",
        "rarity": "common",
        "xp_reward": 25,
        "trigger_type": "chapter_count",
        "trigger_config": {"threshold": 1},
        "sort_order": 7,
    },
    {
        "slug": "book_first",
        "name": "Bookworm",
        "description": "Finish an entire book",
        "category": "learning",
        "rarity": "rare",
        "xp_reward": 150,
        "trigger_type": "book_count",
        "trigger_config": {"threshold": 1},
        "sort_order": 8,
    },
    # Levels
    {
        "slug": "level_5",
        "name": "Rising Star",
        "description": "Reach level 5",
        "category": "achievement",
        "rarity": "uncommon",
        "xp_reward": 50,
        "trigger_type": "level",
        "trigger_config": {"threshold": 5},
        "sort_order": 9,
    },
    {
        "slug": "level_10",
        "name": "Seasoned Learner",
        "description": "Reach level 10",
        "category": "achievement",
        "rarity": "rare",
        "xp_reward": 100,
        "trigger_type": "level",
        "trigger_config": {"threshold": 10},
        "sort_order": 10,
    },
    {
        "slug": "level_25",
        "name": "Sage",
        "description": "Reach level 25",
        "category": "achievement",
        "rarity": "legendary",
        "xp_reward": 250,
        "trigger_type": "level",
        "trigger_config": {"threshold": 25},
        "sort_order": 11,
    },
    # Other
    {
        "slug": "ai_challenger",
        "name": "Challenger",
        "description": "Complete five AI challenges",
        "category": "learning",
        "rarity": "rare",
        "xp_reward": 100,
        "trigger_type": "ai_challenge_count",
        "trigger_config": {"threshold": 5},
        "sort_order": 12,
    },
    {
        "slug": "goal_getter",
        "name": "Goal Getter",
        "description": "Meet your daily goal seven times",
        "category": "achievement",
        "rarity": "uncommon",
        "xp_reward": 75,
        "trigger_type": "daily_goal_count",
        "trigger_config": {"threshold": 7},
        "sort_order": 13,
    },
]
