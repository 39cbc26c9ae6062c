import math

import pandas as pd

SECONDS_PER_DAY = 24 * 60 * 60


def longest_run(completed_dates):
    """
    Length of the longest run of consecutive calendar days in `completed_dates`
    (YYYY-MM-DD strings).
    """
    if not completed_dates:
        return 0

    days = pd.Series(pd.to_datetime(sorted(set(completed_dates)))).reset_index(drop=True)
    # A new run starts wherever the gap to the previous date is not exactly one day
    run_ids = days.diff().dt.days.ne(1).cumsum()
    return int(run_ids.value_counts().max())


def calculate_completion_rate(habits, now):
    """
    Completion percentage over the lifetime of all `habits`:
    sum(min(completed, days existed)) / sum(days existed) * 100, rounded half up.
    Each habit counts as existing for at least one day.
    """
    if not habits:
        return 0

    df = pd.DataFrame(
        {
            "created_at": pd.to_datetime([h.created_at for h in habits], utc=True),
            "completed": [len(h.completed_dates) for h in habits],
        }
    )
    age_seconds = (pd.Timestamp(now) - df["created_at"]).dt.total_seconds()
    days_exist = (age_seconds // SECONDS_PER_DAY).clip(lower=1)
    completed = df["completed"].clip(upper=days_exist)

    total_possible = days_exist.sum()
    if total_possible <= 0:
        return 0
    return int(math.floor(completed.sum() / total_possible * 100 + 0.5))


def calculate_friend_stats(habits, now):
    """Aggregate the habit stats shown next to a friend in the friends list."""
    return {
        "totalHabits": len(habits),
        "currentStreak": max((h.current_streak for h in habits), default=0),
        "completionRate": calculate_completion_rate(habits, now),
    }
