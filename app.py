"""
HTTP API for Habit Monster.

Endpoints:
  POST /register, POST /login, GET /user/{id}, POST /user/{id}/hell-week
  GET/POST /habits, POST /habits/{id}/toggle, PUT/DELETE /habits/{id}
  GET /habits/shared/{group_id}
  GET /battles, GET /battles/requests, GET /battles/sent
  POST /battles/cancel, POST /battles/respond, POST /battles/surrender
  POST /social/add-friend, POST /social/handle-request
  GET /social/friends, GET /social/requests

Every error is returned as {"error": message}.
"""

import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from habit_monster import battles, data_manager, social
from habit_monster.database import DATABASE_BACKEND, get_store
from habit_monster.exceptions import HabitMonsterError
from habit_monster.gamification import level_progress
from habit_monster.schemas import (
    ActionRequest,
    BattleActionRequest,
    Credentials,
    FriendCodeRequest,
    FriendRequestAction,
    HabitCreate,
    HabitUpdate,
    ToggleRequest,
)

load_dotenv()

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]


# ── Lifespan ──────────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Monster API starting ({DATABASE_BACKEND} backend)")
    yield
    logger.info("Monster API shutting down")


app = FastAPI(title="Habit Monster API", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── Dependencies ──────────────────────────────────────────────

def get_db():
    return get_store()


def get_now():
    return datetime.now(timezone.utc)


# ── Error mapping ─────────────────────────────────────────────

@app.exception_handler(HabitMonsterError)
async def domain_error_handler(request: Request, exc: HabitMonsterError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc!r}")
    else:
        logger.debug(f"{request.method} {request.url.path} rejected: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    first = exc.errors()[0] if exc.errors() else {}
    field = ".".join(str(p) for p in first.get("loc", ())[1:])
    message = f"{field}: {first.get('msg', 'Invalid request')}" if field else first.get("msg", "Invalid request")
    return JSONResponse(status_code=400, content={"error": message})


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(status_code=500, content={"error": str(exc)})


# ── Health ────────────────────────────────────────────────────

@app.get("/")
def read_root():
    return {"status": "ok", "message": "Monster API is running!"}


@app.get("/health")
def health():
    return {"status": "ok", "timestamp": get_now().isoformat()}


# ── Users ─────────────────────────────────────────────────────

@app.post("/register", status_code=201)
def register(payload: Credentials, store=Depends(get_db)):
    user = data_manager.register_user(store, payload.email, payload.password)
    return {"user": user.public(), "message": "User created"}


@app.post("/login")
def login(payload: Credentials, store=Depends(get_db)):
    user = data_manager.login_user(store, payload.email, payload.password)
    return {"user": user.public()}


@app.get("/user/{user_id}")
def get_user(user_id: str, store=Depends(get_db)):
    user = data_manager.get_user(store, user_id)
    data_manager.repair_user(store, user)
    payload = user.public()
    payload["levelProgress"] = level_progress(user.platform_xp)
    return payload


@app.post("/user/{user_id}/hell-week")
def hell_week(user_id: str, payload: ActionRequest, store=Depends(get_db), now=Depends(get_now)):
    message, user = data_manager.hell_week_action(store, user_id, payload.action, now)
    public = user.public()
    return {"message": message, "hellWeek": public["hellWeek"], "user": public}


# ── Habits ────────────────────────────────────────────────────

@app.get("/habits")
def list_habits(user_id: str = Query(..., alias="userId"), store=Depends(get_db)):
    return [h.public() for h in data_manager.list_habits(store, user_id)]


@app.post("/habits", status_code=201)
def create_habit(payload: HabitCreate, store=Depends(get_db)):
    return data_manager.create_habit(store, payload).public()


@app.post("/habits/{habit_id}/toggle")
def toggle_habit(habit_id: str, payload: ToggleRequest, store=Depends(get_db), now=Depends(get_now)):
    habit, user, xp_change = data_manager.toggle_habit_date(store, habit_id, payload.date, now)
    return {
        "habit": habit.public(),
        "userLv": user.level if user else None,
        "userXp": user.platform_xp if user else None,
        "xpChange": xp_change,
    }


@app.put("/habits/{habit_id}")
def update_habit(habit_id: str, payload: HabitUpdate, store=Depends(get_db)):
    return data_manager.update_habit(store, habit_id, payload).public()


@app.delete("/habits/{habit_id}")
def delete_habit(habit_id: str, store=Depends(get_db)):
    data_manager.delete_habit(store, habit_id)
    return {"message": "Deleted"}


@app.get("/habits/shared/{group_id}")
def shared_group(group_id: str, store=Depends(get_db)):
    return [battles.battle_view(store, h) for h in battles.get_shared_group(store, group_id)]


# ── Battles ───────────────────────────────────────────────────

@app.get("/battles/requests")
def battle_requests(user_id: str = Query(..., alias="userId"), store=Depends(get_db)):
    return [battles.battle_view(store, h) for h in battles.list_battle_requests(store, user_id)]


@app.get("/battles/sent")
def sent_battles(user_id: str = Query(..., alias="userId"), store=Depends(get_db)):
    return [battles.battle_view(store, h) for h in battles.list_sent_battles(store, user_id)]


@app.post("/battles/cancel")
def cancel_battle(payload: BattleActionRequest, store=Depends(get_db)):
    battles.cancel_battle(store, payload.habit_id)
    return {"message": "Battle request cancelled"}


@app.post("/battles/respond")
def respond_battle(payload: BattleActionRequest, store=Depends(get_db), now=Depends(get_now)):
    habit = battles.respond_to_battle(store, payload.habit_id, payload.action, now)
    if habit is None:
        return {"message": "Battle Rejected"}
    return {"message": "Battle Accepted!", "habit": habit.public()}


@app.post("/battles/surrender")
def surrender_battle(payload: BattleActionRequest, store=Depends(get_db)):
    habit, user = battles.surrender_battle(store, payload.habit_id)
    return {"message": "You surrendered. Rival wins.", "habit": habit.public(), "user": user.public()}


@app.get("/battles")
def list_battles(user_id: str = Query(..., alias="userId"), store=Depends(get_db), now=Depends(get_now)):
    battles.sweep_expired_battles(store, user_id, now)
    return [battles.battle_view(store, h) for h in battles.list_battles(store, user_id)]


# ── Social ────────────────────────────────────────────────────

@app.post("/social/add-friend")
def add_friend(payload: FriendCodeRequest, store=Depends(get_db), now=Depends(get_now)):
    social.add_friend_request(store, payload.user_id, payload.friend_code, now)
    return {"message": "Friend request sent!"}


@app.post("/social/handle-request")
def handle_request(payload: FriendRequestAction, store=Depends(get_db)):
    user = social.handle_friend_request(store, payload.user_id, payload.requester_id, payload.action)
    return {"message": f"Request {payload.action}ed", "friends": user.friends}


@app.get("/social/friends")
def friends(user_id: str = Query(..., alias="userId"), store=Depends(get_db), now=Depends(get_now)):
    return social.list_friends_with_stats(store, user_id, now)


@app.get("/social/requests")
def friend_requests(user_id: str = Query(..., alias="userId"), store=Depends(get_db)):
    return social.list_friend_requests(store, user_id)


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 5000))
    uvicorn.run(app, host="0.0.0.0", port=port)
