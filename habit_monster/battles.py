"""
Battle lifecycle.

A battle is stored as two Habit records, one per participant, linked by
`shared_group_id`. Every change that touches both records goes through the
functions in this module, and every status change goes through `transition`,
which checks it against TRANSITIONS.

The two records are written one after the other. A failure between the two
writes leaves the pair out of step (for example one side `active`, the other
still `pending`); it is logged and surfaced to the caller, never rolled back.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional

from habit_monster.database import (
    find_habits,
    find_user,
    load_habit,
    load_user,
    save_habit,
    save_user,
)
from habit_monster.exceptions import (
    DomainPreconditionError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from habit_monster.gamification import apply_xp_penalty
from habit_monster.schemas import HABITS, BattleStatus, Habit, HabitType, new_id
from habit_monster.utils import battle_end

logger = logging.getLogger(__name__)

DEFAULT_BATTLE_DURATION = 7
BATTLE_SURRENDER_PENALTY = 100

ACCEPT = "accept"
REJECT = "reject"

# Both players fight over the same rules; color stays per player
SHARED_FIELDS = (
    "name",
    "rules",
    "is_rep_based",
    "reps",
    "rep_unit",
    "rep_increment",
    "rep_increment_frequency",
)

TRANSITIONS = {
    BattleStatus.WAITING: {BattleStatus.ACTIVE, BattleStatus.REJECTED},
    BattleStatus.PENDING: {BattleStatus.ACTIVE},
    BattleStatus.ACTIVE: {BattleStatus.COMPLETED},
    BattleStatus.COMPLETED: set(),
    BattleStatus.REJECTED: set(),
}


def can_transition(current, target):
    return BattleStatus(target) in TRANSITIONS[BattleStatus(current)]


def transition(habit, target):
    if not can_transition(habit.battle_status, target):
        raise InvalidTransitionError(habit.battle_status, BattleStatus(target).value)
    logger.debug(f"Battle habit {habit.id}: {habit.battle_status} -> {BattleStatus(target).value}")
    habit.battle_status = target


@dataclass
class BattlePair:
    mine: Habit
    theirs: Optional[Habit]

    def habits(self) -> List[Habit]:
        return [h for h in (self.mine, self.theirs) if h is not None]


def load_pair(store, habit_id):
    """Load a battle habit together with the opponent's record of the same group."""
    mine = load_habit(store, habit_id, message="Battle not found")
    if not mine.is_battle or not mine.shared_group_id:
        raise ValidationError("Habit is not a battle")

    docs = find_habits(store, {"sharedGroupId": mine.shared_group_id, "_id": {"$ne": mine.id}})
    return BattlePair(mine=mine, theirs=docs[0] if docs else None)


def save_pair(store, pair):
    save_habit(store, pair.mine)
    if pair.theirs is None:
        return
    try:
        save_habit(store, pair.theirs)
    except Exception:
        logger.error(
            f"Battle group {pair.mine.shared_group_id} left inconsistent: "
            f"saved {pair.mine.id}, failed to save {pair.theirs.id}"
        )
        raise


# --- LIFECYCLE ---

def create_battle(store, fields, creator_id, partner_id, duration=None):
    """
    Create the two records of a new battle invite.
    The creator's copy waits visibly; the invitee's copy stays hidden until accepted.
    """
    if partner_id == creator_id:
        raise ValidationError("You cannot battle yourself")
    load_user(store, partner_id, message="Partner not found")

    group_id = new_id()
    duration = duration or DEFAULT_BATTLE_DURATION
    common = dict(fields, shared_group_id=group_id, type=HabitType.BATTLE, battle_duration=duration)

    creator = Habit(
        **common,
        user_id=creator_id,
        partner_id=partner_id,
        battle_status=BattleStatus.WAITING,
        is_visible=True,
    )
    invitee = Habit(
        **common,
        user_id=partner_id,
        partner_id=creator_id,
        battle_status=BattleStatus.PENDING,
        is_visible=False,
    )
    store.insert(HABITS, creator.to_document())
    store.insert(HABITS, invitee.to_document())
    logger.info(f"Battle {group_id} created: {creator_id} challenged {partner_id}")
    return creator, invitee


def cancel_battle(store, habit_id):
    """Withdraw a sent invite before it is answered. Deletes both records."""
    pair = load_pair(store, habit_id)
    if pair.mine.battle_status != BattleStatus.WAITING:
        raise DomainPreconditionError("Only a battle request that is still waiting can be cancelled")

    store.delete_one(HABITS, {"sharedGroupId": pair.mine.shared_group_id, "_id": {"$ne": pair.mine.id}})
    store.delete_by_id(HABITS, pair.mine.id)
    logger.info(f"Battle {pair.mine.shared_group_id} cancelled")


def respond_to_battle(store, habit_id, action, now):
    """
    Accept or reject a pending invite from the invitee's side.
    Returns the invitee's habit on accept, None on reject (the record is deleted).
    """
    if action not in (ACCEPT, REJECT):
        raise ValidationError(f"Unknown battle response: {action}")

    pair = load_pair(store, habit_id)
    if pair.mine.battle_status != BattleStatus.PENDING:
        raise DomainPreconditionError("Battle request is no longer pending")

    if action == ACCEPT:
        for habit in pair.habits():
            transition(habit, BattleStatus.ACTIVE)
            habit.is_visible = True
            habit.battle_start_date = now
        save_pair(store, pair)
        logger.info(f"Battle {pair.mine.shared_group_id} accepted")
        return pair.mine

    if pair.theirs is not None and not can_transition(pair.theirs.battle_status, BattleStatus.REJECTED):
        raise InvalidTransitionError(pair.theirs.battle_status, BattleStatus.REJECTED.value)
    store.delete_by_id(HABITS, pair.mine.id)
    if pair.theirs is not None:
        transition(pair.theirs, BattleStatus.REJECTED)
        save_habit(store, pair.theirs)
    logger.info(f"Battle {pair.mine.shared_group_id} rejected")
    return None


def surrender_battle(store, habit_id):
    """
    Forfeit an active battle. Both records complete with the opponent as winner
    and the surrendering user pays BATTLE_SURRENDER_PENALTY XP.
    """
    pair = load_pair(store, habit_id)
    winner = pair.mine.partner_id

    transition(pair.mine, BattleStatus.COMPLETED)
    pair.mine.battle_winner = winner
    if pair.theirs is not None:
        if pair.theirs.battle_status == BattleStatus.ACTIVE:
            transition(pair.theirs, BattleStatus.COMPLETED)
            pair.theirs.battle_winner = winner
        else:
            logger.warning(
                f"Battle {pair.mine.shared_group_id}: opponent record already {pair.theirs.battle_status}"
            )
    save_pair(store, pair)

    user = load_user(store, pair.mine.user_id)
    apply_xp_penalty(user, BATTLE_SURRENDER_PENALTY)
    save_user(store, user)
    logger.info(f"User {user.id} surrendered battle {pair.mine.shared_group_id}")
    return pair.mine, user


def update_battle(store, habit_id, changes):
    """Apply field `changes` to a battle habit, copying SHARED_FIELDS onto the opponent's record."""
    pair = load_pair(store, habit_id)
    for field, value in changes.items():
        setattr(pair.mine, field, value)
        if pair.theirs is not None and field in SHARED_FIELDS:
            setattr(pair.theirs, field, value)
    save_pair(store, pair)
    return pair.mine


def is_expired(habit, now):
    if habit.battle_start_date is None:
        return False
    return now > battle_end(habit.battle_start_date, habit.battle_duration)


def sweep_expired_battles(store, user_id, now):
    """Complete every active battle of `user_id` whose duration has run out. Idempotent."""
    swept = []
    active = find_habits(
        store,
        {"userId": user_id, "type": HabitType.BATTLE.value, "battleStatus": BattleStatus.ACTIVE.value},
    )
    for habit in active:
        if is_expired(habit, now):
            # TODO: pick battle_winner from completion counts once a tie rule is agreed
            transition(habit, BattleStatus.COMPLETED)
            save_habit(store, habit)
            swept.append(habit)
    if swept:
        logger.info(f"Completed {len(swept)} expired battles for user {user_id}")
    return swept


# --- LISTINGS ---

def _battles_with_status(store, user_id, *statuses):
    values = [BattleStatus(s).value for s in statuses]
    query = {"userId": user_id, "type": HabitType.BATTLE.value}
    query["battleStatus"] = values[0] if len(values) == 1 else {"$in": values}
    return find_habits(store, query)


def list_battle_requests(store, user_id):
    return _battles_with_status(store, user_id, BattleStatus.PENDING)


def list_sent_battles(store, user_id):
    return _battles_with_status(store, user_id, BattleStatus.WAITING)


def list_battles(store, user_id):
    """Active and finished battles. Run `sweep_expired_battles` first to settle expiries."""
    return _battles_with_status(store, user_id, BattleStatus.ACTIVE, BattleStatus.COMPLETED)


def get_shared_group(store, group_id):
    habits = find_habits(store, {"sharedGroupId": group_id})
    if not habits:
        raise NotFoundError("Battle not found", details={"group_id": group_id})
    return habits


def battle_view(store, habit):
    """Habit payload with a short summary of the opponent attached."""
    payload = habit.public()
    partner = find_user(store, {"_id": habit.partner_id}) if habit.partner_id else None
    payload["partner"] = partner.summary() if partner else None
    return payload
