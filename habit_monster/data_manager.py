import logging

from habit_monster.auth import check_password, hash_password, is_legacy_match
from habit_monster.battles import create_battle, update_battle
from habit_monster.database import (
    find_habits,
    find_user,
    load_habit,
    load_user,
    save_habit,
    save_user,
)
from habit_monster.exceptions import AuthenticationError, ConflictError, NotFoundError, ValidationError
from habit_monster.gamification import apply_xp_delta, hell_week_transition, raise_level, toggle_completion
from habit_monster.schemas import HABITS, USERS, BattleStatus, Habit, User
from habit_monster.social import assign_friend_code

logger = logging.getLogger(__name__)

# Display fields copied from a create request and editable afterwards
HABIT_FIELDS = (
    "name",
    "rules",
    "color",
    "is_rep_based",
    "reps",
    "rep_unit",
    "rep_increment",
    "rep_increment_frequency",
)


def _normalize_email(email):
    return (email or "").strip().lower()


# --- USERS ---

def register_user(store, email, password):
    email = _normalize_email(email)
    if not email or not password:
        raise ValidationError("Email and password are required")
    if find_user(store, {"email": email}) is not None:
        raise ConflictError("Email already registered")

    user = User(email=email, password=hash_password(password))
    assign_friend_code(store, user)
    store.insert(USERS, user.to_document())
    logger.info(f"Registered user {user.id}")
    return user


def login_user(store, email, password):
    """
    Check credentials and return the user.
    Accounts that still hold a plain-text password are re-hashed on a matching login.
    """
    email = _normalize_email(email)
    user = find_user(store, {"email": email}) if email else None
    if user is None:
        raise AuthenticationError("Invalid credentials")

    if check_password(password, user.password):
        return user

    if is_legacy_match(password, user.password):
        logger.info(f"Migrating legacy password for user: {email}")
        user.password = hash_password(password)
        save_user(store, user)
        return user

    raise AuthenticationError("Invalid credentials")


def get_user(store, user_id):
    """Plain read. Use `repair_user` to backfill derived fields."""
    return load_user(store, user_id)


def repair_user(store, user):
    """
    Backfill a missing friend code and raise the level to match the XP.
    Idempotent; only writes when something changed.
    """
    changed = assign_friend_code(store, user)
    changed = raise_level(user) or changed
    if changed:
        save_user(store, user)
    return user


def hell_week_action(store, user_id, action, now):
    user = load_user(store, user_id)
    message = hell_week_transition(user, action, now)
    save_user(store, user)
    logger.info(f"Hell Week '{action}' for user {user.id}")
    return message, user


# --- HABITS ---

def create_habit(store, data):
    """Create a solo habit, or a battle invite when `data.partner_id` is set."""
    if not data.user_id:
        raise ValidationError("userId is required")
    if not data.name or not data.name.strip():
        raise ValidationError("Habit name is required")
    load_user(store, data.user_id)

    fields = data.model_dump(include=set(HABIT_FIELDS))
    fields["name"] = fields["name"].strip()

    if data.partner_id:
        creator, _ = create_battle(store, fields, data.user_id, data.partner_id, data.battle_duration)
        return creator

    habit = Habit(**fields, user_id=data.user_id)
    store.insert(HABITS, habit.to_document())
    return habit


def list_habits(store, user_id):
    """The home feed: hidden invites and finished battles are left out."""
    return find_habits(
        store,
        {"userId": user_id, "isVisible": True, "battleStatus": {"$ne": BattleStatus.COMPLETED.value}},
    )


def update_habit(store, habit_id, changes):
    """Edit display fields. Battle habits keep their shared fields in step with the opponent."""
    habit = load_habit(store, habit_id)
    updates = {}
    for field, value in changes.model_dump(include=set(HABIT_FIELDS), exclude_unset=True).items():
        if value is None:
            continue
        if field == "name":
            value = value.strip()
            if not value:
                raise ValidationError("Habit name is required")
        updates[field] = value

    if habit.is_battle and habit.shared_group_id:
        return update_battle(store, habit.id, updates)

    for field, value in updates.items():
        setattr(habit, field, value)
    save_habit(store, habit)
    return habit


def delete_habit(store, habit_id):
    if not store.delete_by_id(HABITS, habit_id):
        raise NotFoundError("Habit not found", details={"habit_id": habit_id})


def toggle_habit_date(store, habit_id, date, now):
    """
    Toggle one date on a habit and settle the owner's XP.
    Returns (habit, user, xp_change); user is None if the owner no longer exists.
    """
    habit = load_habit(store, habit_id, message="Not found")
    delta = toggle_completion(habit, date, now)
    save_habit(store, habit)

    user = find_user(store, {"_id": habit.user_id})
    applied = 0
    if user is not None and delta != 0:
        applied = apply_xp_delta(user, delta)
        save_user(store, user)
    return habit, user, applied
