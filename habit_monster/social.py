import logging

from habit_monster.analytics import calculate_friend_stats
from habit_monster.database import find_habits, find_user, load_user, save_user
from habit_monster.exceptions import ConflictError, NotFoundError, ValidationError
from habit_monster.schemas import FriendRequest, FriendRequestStatus
from habit_monster.utils import generate_friend_code, is_valid_friend_code

logger = logging.getLogger(__name__)

ACCEPT = "accept"
REJECT = "reject"


def assign_friend_code(store, user):
    """
    Give `user` a friend code that no other user holds. Returns True if a code was assigned.

    The check and the later save are separate calls, so two registrations racing
    for the same code can still collide; the store's unique index rejects the loser.
    """
    if user.friend_code:
        return False
    while True:
        code = generate_friend_code()
        if find_user(store, {"friendCode": code}) is None:
            break
    user.friend_code = code
    logger.info(f"Generated friend code for user {user.id}")
    return True


# --- REQUESTS ---

def add_friend_request(store, sender_id, friend_code, now):
    sender = load_user(store, sender_id)
    code = (friend_code or "").strip().upper()
    if not code:
        raise ValidationError("Friend code is required")
    if not is_valid_friend_code(code):
        raise ValidationError(f"Invalid friend code: {code}")

    target = find_user(store, {"friendCode": code})
    if target is None:
        raise NotFoundError("User not found with this code.")
    if target.id == sender.id:
        raise ConflictError("You cannot add yourself.")
    if target.id in sender.friends or sender.id in target.friends:
        raise ConflictError("Already friends.")
    if any(r.from_user == sender.id and r.status == FriendRequestStatus.PENDING for r in target.friend_requests):
        raise ConflictError("Request already sent.")

    target.friend_requests.append(FriendRequest(from_user=sender.id, timestamp=now))
    save_user(store, target)
    return target


def handle_friend_request(store, user_id, requester_id, action):
    """Resolve the requests from `requester_id` in the user's queue. Accepting links both users."""
    if action not in (ACCEPT, REJECT):
        raise ValidationError(f"Unknown friend request action: {action}")

    user = load_user(store, user_id)
    requester = load_user(store, requester_id)
    if requester.id == user.id:
        raise ConflictError("You cannot add yourself.")

    remaining = [r for r in user.friend_requests if r.from_user != requester.id]
    already_friends = requester.id in user.friends and user.id in requester.friends
    # A repeated accept of an existing friendship is a no-op
    if len(remaining) == len(user.friend_requests) and not already_friends:
        raise NotFoundError("Friend request not found", details={"requester_id": requester.id})
    user.friend_requests = remaining

    if action == ACCEPT:
        if requester.id not in user.friends:
            user.friends.append(requester.id)
        if user.id not in requester.friends:
            requester.friends.append(user.id)
        save_user(store, requester)

    save_user(store, user)
    return user


def list_friend_requests(store, user_id):
    user = load_user(store, user_id)
    requests = []
    for r in user.friend_requests:
        if r.status != FriendRequestStatus.PENDING:
            continue
        sender = find_user(store, {"_id": r.from_user})
        # Sender may have been removed since the request was made
        if sender is None:
            continue
        requests.append({"from": sender.summary(), "timestamp": r.timestamp.isoformat()})
    return requests


def list_friends_with_stats(store, user_id, now):
    user = load_user(store, user_id)
    friends = []
    for friend_id in user.friends:
        friend = find_user(store, {"_id": friend_id})
        if friend is None:
            continue
        habits = find_habits(store, {"userId": friend.id})
        friends.append(
            {
                "_id": friend.id,
                "email": friend.email,
                "level": friend.level,
                "xp": friend.platform_xp,
                "monsterType": friend.monster_type,
                "hellWeek": friend.hell_week.model_dump(by_alias=True, mode="json"),
                "stats": calculate_friend_stats(habits, now),
            }
        )
    return friends
