"""
Dynamic Goals - short micro-goals that adapt to recent performance.

A small pool of active goals is kept topped up. Each goal tracks one kind of
progress from the attempt stream:

- accuracy: reach a target accuracy over a minimum number of attempts
- speed: a share of correct answers under a response-time limit
- streak: consecutive correct answers
- exploration: distinct verbs practised within a time limit
- mastery: high accuracy with low variance over the last 20 answers
- recovery: climb back from a low accuracy
- session: sustain accuracy over a session of a given length

New goal types are picked by weighted draw, with the weights shifted by the
learner's recent accuracy, speed, streak and variety. The random source is
seeded so a replayed stream produces the same goals.
"""

from __future__ import annotations

import random
from collections import deque
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from loguru import logger

from cadence.core.models import AttemptEvent, require_list, require_mapping
from cadence.core.stats import mean, variance


class GoalType(str, Enum):
    ACCURACY = "accuracy"
    SPEED = "speed"
    STREAK = "streak"
    EXPLORATION = "exploration"
    MASTERY = "mastery"
    RECOVERY = "recovery"
    SESSION = "session"


class GoalStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    EXPIRED = "expired"


# Each variation overrides the template requirements and points.
GOAL_TEMPLATES: dict[GoalType, dict[str, Any]] = {
    GoalType.ACCURACY: {
        "name": "Precision Master",
        "points": 100,
        "requirements": {"min_attempts": 10, "target_accuracy": 0.8},
        "variations": [
            {"mood": "indicative", "tense": "pres", "target_accuracy": 0.85, "points": 80},
            {"mood": "indicative", "tense": "pretPerf", "target_accuracy": 0.90, "points": 120},
            {"mood": "subjunctive", "tense": "subjPres", "target_accuracy": 0.75, "points": 150},
            {"target_accuracy": 0.80, "points": 100},
        ],
    },
    GoalType.SPEED: {
        "name": "Quick Response",
        "points": 150,
        "requirements": {"max_response_ms": 3000, "min_rate": 0.8, "min_attempts": 15},
        "variations": [
            {"max_response_ms": 5000, "min_rate": 0.80, "points": 100},
            {"max_response_ms": 3000, "min_rate": 0.75, "points": 150},
            {"max_response_ms": 2000, "min_rate": 0.70, "points": 200},
        ],
    },
    GoalType.STREAK: {
        "name": "Unstoppable Streak",
        "points": 200,
        "requirements": {"target_streak": 10},
        "variations": [
            {"target_streak": 5, "points": 75},
            {"target_streak": 10, "points": 150},
            {"target_streak": 20, "points": 300},
            {"target_streak": 50, "points": 500},
        ],
    },
    GoalType.EXPLORATION: {
        "name": "Verb Explorer",
        "points": 100,
        "time_limit_days": 7,
        "requirements": {"unique_verbs": 25},
        "variations": [
            {"unique_verbs": 10, "time_limit_days": 3, "points": 50},
            {"unique_verbs": 25, "time_limit_days": 7, "points": 100},
            {"unique_verbs": 50, "time_limit_days": 14, "points": 200},
            {"unique_verbs": 100, "time_limit_days": 30, "points": 400},
        ],
    },
    GoalType.MASTERY: {
        "name": "Complete Mastery",
        "points": 500,
        "requirements": {"min_accuracy": 0.95, "min_attempts": 20, "consistency": 0.9},
        "variations": [
            {"mood": "indicative", "tense": "pres", "points": 300},
            {"mood": "indicative", "tense": "pretIndef", "points": 400},
            {"mood": "subjunctive", "tense": "subjImpf", "points": 600},
        ],
    },
    GoalType.RECOVERY: {
        "name": "Resilient Phoenix",
        "points": 100,
        "requirements": {"recover_from": 0.5, "target_accuracy": 0.8, "min_attempts": 10},
        "variations": [{}],
    },
    GoalType.SESSION: {
        "name": "Learning Marathon",
        "points": 150,
        "requirements": {"session_minutes": 20, "min_accuracy": 0.75},
        "variations": [
            {"session_minutes": 15, "min_accuracy": 0.70, "points": 100},
            {"session_minutes": 30, "min_accuracy": 0.75, "points": 200},
            {"session_minutes": 60, "min_accuracy": 0.80, "points": 400},
        ],
    },
}

BASE_WEIGHTS = {
    GoalType.ACCURACY: 1.0,
    GoalType.SPEED: 1.0,
    GoalType.STREAK: 1.0,
    GoalType.EXPLORATION: 1.0,
    GoalType.MASTERY: 0.5,
    GoalType.RECOVERY: 0.1,
    GoalType.SESSION: 0.8,
}

POINT_MILESTONES = (100, 500, 1000, 2500, 5000, 10000)


@dataclass
class GoalsConfig:
    min_active: int = 2
    max_active: int = 5
    recent_window: int = 20
    completed_history: int = 50
    seed: int = 0


@dataclass
class Goal:
    """One active or finished micro-goal."""

    id: str
    type: GoalType
    name: str
    points: int
    requirements: dict[str, Any]
    created_at: datetime
    updated_at: datetime
    time_limit_days: float | None = None
    status: GoalStatus = GoalStatus.ACTIVE
    completed_at: datetime | None = None
    progress: dict[str, Any] = field(default_factory=dict)

    def matches(self, event: AttemptEvent) -> bool:
        """Accuracy and mastery goals can be restricted to one mood/tense."""
        mood = self.requirements.get("mood")
        tense = self.requirements.get("tense")
        return (mood is None or event.item.mood == mood) and (tense is None or event.item.tense == tense)

    def expired(self, now: datetime) -> bool:
        if self.time_limit_days is None:
            return False
        return now - self.created_at > timedelta(days=self.time_limit_days)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["type"] = self.type.value
        data["status"] = self.status.value
        data["created_at"] = self.created_at.isoformat()
        data["updated_at"] = self.updated_at.isoformat()
        data["completed_at"] = self.completed_at.isoformat() if self.completed_at else None
        return data

    @classmethod
    def from_dict(cls, data: dict) -> Goal:
        data = require_mapping(data, "goal")
        completed_at = data.get("completed_at")
        return cls(
            id=data["id"],
            type=GoalType(data["type"]),
            name=data.get("name", ""),
            points=int(data.get("points", 0)),
            requirements=dict(require_mapping(data.get("requirements", {}), "requirements")),
            created_at=datetime.fromisoformat(data["created_at"]),
            updated_at=datetime.fromisoformat(data["updated_at"]),
            time_limit_days=data.get("time_limit_days"),
            status=GoalStatus(data.get("status", "active")),
            completed_at=datetime.fromisoformat(completed_at) if completed_at else None,
            progress=dict(require_mapping(data.get("progress", {}), "progress")),
        )


@dataclass
class GoalsResult:
    updates: list[dict] = field(default_factory=list)
    completed: list[Goal] = field(default_factory=list)
    new_goals: list[Goal] = field(default_factory=list)
    total_active: int = 0


class GoalTracker:
    """
    Maintains the pool of micro-goals for one learner.

    Usage:
        goals = GoalTracker()
        result = goals.process(event)
        state = goals.get_state()
    """

    def __init__(self, config: GoalsConfig | None = None):
        self.config = config or GoalsConfig()
        self.reset()

    def reset(self) -> None:
        self.rng = random.Random(self.config.seed)
        self.active: dict[str, Goal] = {}
        self.completed: list[Goal] = []
        self.total_points = 0
        self.badges: list[str] = []
        self.generated = 0
        self.recent: deque[AttemptEvent] = deque(maxlen=self.config.recent_window)
        self.current_streak = 0
        self.recent_verbs: deque[str] = deque(maxlen=50)

    # =========================================================================
    # Processing
    # =========================================================================

    def process(self, event: AttemptEvent) -> GoalsResult:
        now = event.timestamp
        self.recent.append(event)
        self.current_streak = self.current_streak + 1 if event.correct else 0
        self.recent_verbs.append(event.item.verb)

        if len(self.active) < self.config.min_active + 1:
            self._fill_pool(now)

        updates = []
        for goal in self.active.values():
            update = self._update_goal(goal, event)
            if update is not None:
                goal.updated_at = now
                updates.append(update)

        completed = self._collect_completed(now)
        new_goals = self._maintain_pool(now)
        return GoalsResult(
            updates=updates,
            completed=completed,
            new_goals=new_goals,
            total_active=len(self.active),
        )

    def _update_goal(self, goal: Goal, event: AttemptEvent) -> dict | None:
        p, req = goal.progress, goal.requirements

        if goal.type in (GoalType.ACCURACY, GoalType.MASTERY):
            if not goal.matches(event):
                return None
            p["attempts"] = p.get("attempts", 0) + 1
            p["correct"] = p.get("correct", 0) + int(event.correct)
            history = p.setdefault("recent", [])
            history.append(1 if event.correct else 0)
            del history[:-20]
            accuracy = p["correct"] / p["attempts"]
            return _update(goal, round(accuracy * 100), round(req.get("target_accuracy", req.get("min_accuracy", 0)) * 100))

        if goal.type == GoalType.SPEED:
            p["total"] = p.get("total", 0) + 1
            if event.correct and event.response_time_ms <= req["max_response_ms"]:
                p["fast"] = p.get("fast", 0) + 1
            return _update(goal, round(p.get("fast", 0) / p["total"] * 100), round(req["min_rate"] * 100))

        if goal.type == GoalType.STREAK:
            p["current"] = p.get("current", 0) + 1 if event.correct else 0
            p["best"] = max(p.get("best", 0), p["current"])
            return _update(goal, p["current"], req["target_streak"])

        if goal.type == GoalType.EXPLORATION:
            verbs = p.setdefault("verbs", [])
            if event.item.verb not in verbs:
                verbs.append(event.item.verb)
            return _update(goal, len(verbs), req["unique_verbs"])

        if goal.type == GoalType.RECOVERY:
            accuracy = self.recent_accuracy()
            p["attempts"] = p.get("attempts", 0) + 1
            if p["attempts"] == 1:
                p["start"] = accuracy
            p["current"] = accuracy
            return _update(goal, round((accuracy - p["start"]) * 100), round((req["target_accuracy"] - req["recover_from"]) * 100))

        if goal.type == GoalType.SESSION:
            p.setdefault("start", event.timestamp.isoformat())
            p["attempts"] = p.get("attempts", 0) + 1
            p["correct"] = p.get("correct", 0) + int(event.correct)
            p["minutes"] = (event.timestamp - datetime.fromisoformat(p["start"])).total_seconds() / 60
            return _update(goal, round(p["minutes"]), req["session_minutes"])

        return None

    def is_completed(self, goal: Goal) -> bool:
        p, req = goal.progress, goal.requirements
        if goal.type == GoalType.ACCURACY:
            attempts = p.get("attempts", 0)
            return attempts >= req["min_attempts"] and p.get("correct", 0) / attempts >= req["target_accuracy"]
        if goal.type == GoalType.SPEED:
            total = p.get("total", 0)
            return total >= req["min_attempts"] and p.get("fast", 0) / total >= req["min_rate"]
        if goal.type == GoalType.STREAK:
            return p.get("current", 0) >= req["target_streak"]
        if goal.type == GoalType.EXPLORATION:
            return len(p.get("verbs", [])) >= req["unique_verbs"]
        if goal.type == GoalType.MASTERY:
            attempts = p.get("attempts", 0)
            if attempts < req["min_attempts"]:
                return False
            consistency = 1 - variance(p.get("recent", []))
            return p.get("correct", 0) / attempts >= req["min_accuracy"] and consistency >= req["consistency"]
        if goal.type == GoalType.RECOVERY:
            improvement = p.get("current", 0.0) - p.get("start", 0.0)
            return (
                p.get("attempts", 0) >= req["min_attempts"]
                and improvement >= req["target_accuracy"] - req["recover_from"]
            )
        if goal.type == GoalType.SESSION:
            attempts = p.get("attempts", 0)
            return (
                attempts > 0
                and p.get("minutes", 0.0) >= req["session_minutes"]
                and p.get("correct", 0) / attempts >= req["min_accuracy"]
            )
        return False

    def _collect_completed(self, now: datetime) -> list[Goal]:
        done = []
        for goal_id, goal in list(self.active.items()):
            if not self.is_completed(goal):
                continue
            goal.status = GoalStatus.COMPLETED
            goal.completed_at = now
            self.total_points += goal.points
            badge = _badge_for(goal)
            if badge:
                self.badges.append(badge)
            del self.active[goal_id]
            self.completed.append(goal)
            done.append(goal)
            logger.info(f"Goal completed: {goal.name} (+{goal.points} points)")
        del self.completed[: -self.config.completed_history]
        return done

    # =========================================================================
    # Pool maintenance
    # =========================================================================

    def _fill_pool(self, now: datetime) -> list[Goal]:
        created = []
        while len(self.active) < self.config.min_active + 1:
            goal = self.generate_goal(now)
            self.active[goal.id] = goal
            created.append(goal)
        return created

    def _maintain_pool(self, now: datetime) -> list[Goal]:
        for goal_id, goal in list(self.active.items()):
            if goal.expired(now) and not self.is_completed(goal):
                goal.status = GoalStatus.EXPIRED
                del self.active[goal_id]
                logger.debug(f"Goal expired: {goal.name}")

        created = self._fill_pool(now)

        if len(self.active) > self.config.max_active:
            oldest = sorted(self.active.values(), key=lambda g: g.created_at)
            for goal in oldest[: len(self.active) - self.config.max_active]:
                del self.active[goal.id]
        return created

    def select_goal_type(self) -> GoalType:
        weights = dict(BASE_WEIGHTS)
        if self.recent:
            if self.recent_accuracy() < 0.6:
                weights[GoalType.RECOVERY] = 2.0
                weights[GoalType.ACCURACY] = 1.5
                weights[GoalType.SPEED] = 0.3
            if mean([e.response_time_ms for e in self.recent]) > 8000:
                weights[GoalType.SPEED] = 2.0
            if len(set(self.recent_verbs)) < 10:
                weights[GoalType.EXPLORATION] = 1.8
        if self.current_streak > 15:
            weights[GoalType.STREAK] = 2.0

        types = list(weights)
        return self.rng.choices(types, weights=[weights[t] for t in types])[0]

    def generate_goal(self, now: datetime) -> Goal:
        goal_type = self.select_goal_type()
        template = GOAL_TEMPLATES[goal_type]
        variation = self.rng.choice(template["variations"])
        requirements = {**template["requirements"], **variation}
        points = requirements.pop("points", template["points"])
        time_limit = requirements.pop("time_limit_days", template.get("time_limit_days"))
        self.generated += 1
        return Goal(
            id=f"goal_{self.generated}",
            type=goal_type,
            name=template["name"],
            points=points,
            requirements=requirements,
            created_at=now,
            updated_at=now,
            time_limit_days=time_limit,
        )

    # =========================================================================
    # Queries
    # =========================================================================

    def recent_accuracy(self) -> float:
        return mean([1.0 if e.correct else 0.0 for e in self.recent])

    def next_milestone(self) -> dict | None:
        for milestone in POINT_MILESTONES:
            if milestone > self.total_points:
                return {
                    "points": milestone,
                    "remaining": milestone - self.total_points,
                    "progress": self.total_points / milestone,
                }
        return None

    def get_state(self) -> dict:
        completed_count = len(self.completed)
        return {
            "active_goals": [g.to_dict() for g in self.active.values()],
            "recent_completed": [g.to_dict() for g in self.completed[-5:]],
            "total_points": self.total_points,
            "badges": list(self.badges),
            "metrics": {
                "total_generated": self.generated,
                "total_completed": completed_count,
                "completion_rate": completed_count / self.generated if self.generated else 0.0,
            },
            "next_milestone": self.next_milestone(),
        }

    # =========================================================================
    # Persistence
    # =========================================================================

    def to_dict(self) -> dict:
        return {
            "active": [g.to_dict() for g in self.active.values()],
            "completed": [g.to_dict() for g in self.completed],
            "total_points": self.total_points,
            "badges": list(self.badges),
            "generated": self.generated,
            "rng_state": _dump_rng(self.rng),
        }

    def load_dict(self, data: dict) -> None:
        """Restore from to_dict() output. Nothing is assigned unless the whole blob parses."""
        data = require_mapping(data, "goals checkpoint")
        active = {g.id: g for g in (Goal.from_dict(d) for d in require_list(data.get("active", []), "active"))}
        completed = [Goal.from_dict(d) for d in require_list(data.get("completed", []), "completed")]
        total_points = int(data.get("total_points", 0))
        badges = [str(b) for b in require_list(data.get("badges", []), "badges")]
        generated = int(data.get("generated", len(active) + len(completed)))
        rng = random.Random(self.config.seed)
        if data.get("rng_state") is not None:
            rng.setstate(_load_rng(data["rng_state"]))

        self.active = active
        self.completed = completed
        self.total_points = total_points
        self.badges = badges
        self.generated = generated
        self.rng = rng


def _dump_rng(rng: random.Random) -> list:
    version, internal, gauss = rng.getstate()
    return [version, list(internal), gauss]


def _load_rng(state: Any) -> tuple:
    version, internal, gauss = require_list(state, "rng_state")
    return (int(version), tuple(int(x) for x in require_list(internal, "rng_state")), gauss)


def _update(goal: Goal, progress: Any, target: Any) -> dict:
    return {"goal_id": goal.id, "type": goal.type.value, "progress": progress, "target": target}


def _badge_for(goal: Goal) -> str | None:
    req = goal.requirements
    if goal.type == GoalType.MASTERY:
        return "master"
    if goal.type == GoalType.STREAK and req.get("target_streak", 0) >= 50:
        return "unstoppable"
    if goal.type == GoalType.SPEED and req.get("max_response_ms", 10**9) <= 2000:
        return "lightning"
    if goal.type == GoalType.EXPLORATION and req.get("unique_verbs", 0) >= 100:
        return "great_explorer"
    return None
