import logging
from datetime import timedelta

from habit_monster.analytics import longest_run
from habit_monster.exceptions import DomainPreconditionError, ValidationError
from habit_monster.utils import normalize_date

logger = logging.getLogger(__name__)

# --- CONFIGURATION ---
XP_PER_COMPLETION = 15
UNDO_WINDOW = timedelta(seconds=60)

HELL_WEEK_MIN_LEVEL = 4
HELL_WEEK_DURATION = timedelta(days=7)
HELL_WEEK_XP_BONUS = 20          # added to the magnitude of every habit XP change
HELL_WEEK_SURRENDER_PENALTY = 700
HELL_WEEK_FAIL_PENALTY = 500
HELL_WEEK_COMPLETE_REWARD = 1000

LEVEL_THRESHOLDS = [0, 100, 300, 600, 1000, 1500, 2100, 2800, 3600, 5000, 10000, 20000]

HELL_WEEK_START = "start"
HELL_WEEK_SURRENDER = "surrender"
HELL_WEEK_FAIL = "fail"
HELL_WEEK_COMPLETE = "complete"
HELL_WEEK_ACTIONS = (HELL_WEEK_START, HELL_WEEK_SURRENDER, HELL_WEEK_FAIL, HELL_WEEK_COMPLETE)

HELL_WEEK_MESSAGES = {
    HELL_WEEK_START: "Welcome to Hell.",
    HELL_WEEK_SURRENDER: "You gave up early. Coward.",
    HELL_WEEK_FAIL: "You survived but failed. Shame.",
    HELL_WEEK_COMPLETE: "You conquered Hell. Legendary.",
}

# --- PURE LOGIC ---

def level_for(xp):
    """Return the level for an XP total: how many thresholds are met (minimum 1)."""
    level = 1
    for i in range(1, len(LEVEL_THRESHOLDS)):
        if xp >= LEVEL_THRESHOLDS[i]:
            level = i + 1
        else:
            break
    return level


def level_progress(xp):
    """Return the current level with the XP bounds of the current and next level."""
    level = level_for(xp)
    next_xp = LEVEL_THRESHOLDS[level] if level < len(LEVEL_THRESHOLDS) else None
    return {
        "level": level,
        "current_level_xp": LEVEL_THRESHOLDS[level - 1],
        "next_level_xp": next_xp,
    }


def raise_level(user):
    """Raise user.level to match platform_xp. Never lowers an earned level."""
    calculated = level_for(user.platform_xp)
    if calculated > user.level:
        logger.info(f"Leveling up user {user.id}: {user.level} -> {calculated} for XP {user.platform_xp}")
        user.level = calculated
        return True
    return False


def apply_xp_delta(user, delta):
    """
    Apply a habit XP change to the user and return the change actually applied.
    During Hell Week the magnitude is inflated in the direction of the change.
    """
    if delta == 0:
        return 0
    if user.hell_week.is_active:
        delta = delta + HELL_WEEK_XP_BONUS if delta > 0 else delta - HELL_WEEK_XP_BONUS

    user.platform_xp = max(0, user.platform_xp + delta)
    raise_level(user)
    return delta


def apply_xp_penalty(user, amount):
    """Fixed penalty: no Hell Week inflation and no level change."""
    user.platform_xp = max(0, user.platform_xp - amount)


# --- COMPLETION LEDGER ---

def toggle_completion(habit, date, now):
    """
    Flip the completion mark of `date` on `habit` and return the raw XP delta.

    XP is paid at most once per date. Unchecking within UNDO_WINDOW of the
    grant refunds it; unchecking later keeps both the XP and the grant record,
    so checking the same date again pays nothing.
    """
    date = normalize_date(date)
    completed = set(habit.completed_dates)
    granted_at = habit.xp_granted_dates.get(date)
    delta = 0

    if date in completed:
        completed.discard(date)
        if granted_at is not None and now - granted_at < UNDO_WINDOW:
            del habit.xp_granted_dates[date]
            delta = -XP_PER_COMPLETION
    else:
        completed.add(date)
        if granted_at is None:
            habit.xp_granted_dates[date] = now
            delta = XP_PER_COMPLETION

    habit.completed_dates = sorted(completed)
    # currentStreak is the total number of completed days, not a consecutive run
    habit.current_streak = len(habit.completed_dates)
    habit.longest_streak = max(habit.longest_streak, longest_run(habit.completed_dates))
    return delta


# --- HELL WEEK ---

def start_hell_week(user, now):
    if user.hell_week.is_active:
        raise DomainPreconditionError("Already in hell")
    if user.level < HELL_WEEK_MIN_LEVEL:
        raise DomainPreconditionError(f"Hell Week requires Level {HELL_WEEK_MIN_LEVEL}")

    user.hell_week.is_active = True
    user.hell_week.start_date = now
    user.hell_week.target_date = now + HELL_WEEK_DURATION


def end_hell_week(user, action):
    """Close an active Hell Week with one of the terminal outcomes."""
    if not user.hell_week.is_active:
        raise DomainPreconditionError("Hell Week is not active")

    user.hell_week.is_active = False
    user.hell_week.start_date = None
    user.hell_week.target_date = None

    if action == HELL_WEEK_SURRENDER:
        apply_xp_penalty(user, HELL_WEEK_SURRENDER_PENALTY)
    elif action == HELL_WEEK_FAIL:
        apply_xp_penalty(user, HELL_WEEK_FAIL_PENALTY)
    elif action == HELL_WEEK_COMPLETE:
        user.platform_xp += HELL_WEEK_COMPLETE_REWARD
        raise_level(user)


def hell_week_transition(user, action, now):
    """Dispatch a Hell Week action. Returns the message shown to the player."""
    if action not in HELL_WEEK_ACTIONS:
        raise ValidationError(f"Unknown Hell Week action: {action}")

    if action == HELL_WEEK_START:
        start_hell_week(user, now)
    else:
        end_hell_week(user, action)
    return HELL_WEEK_MESSAGES[action]
