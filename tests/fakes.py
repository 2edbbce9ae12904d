"""
In-memory GamificationStore for unit tests.

Each unit of work keeps an undo journal of its own writes; an exception
inside the block replays the journal in reverse. Undo entries compensate
(subtract an increment, drop an inserted key) instead of restoring whole
snapshots, so interleaved units of work under `asyncio.gather` roll back
only what they wrote.

Reads yield to the event loop once, which lets concurrent tests interleave
a pre-check and an insert the way two database transactions would.

Failure injection
-----------------
    store.failures["insert_user_badge"] = RuntimeError("disk full")
    store.malformed_rules["check_in"] = 1
"""

from __future__ import annotations

import asyncio
import itertools
from contextlib import asynccontextmanager
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Callable, Dict, List, Mapping, Optional, Tuple

from passport.domain.models.gamification import (
    AchievementDefinition,
    BadgeDefinition,
    EarnedBadge,
    LedgerEntry,
    ProgressSnapshot,
    QuestDefinition,
    QuestStatus,
    QuestStep,
    RewardAmount,
    RuleDefinition,
    UnlockedAchievement,
    UserQuestState,
)
from passport.modules.gamification.counts import KNOWN_COUNT_FIELDS
from passport.modules.gamification.store import GamificationStore, GamificationUnitOfWork
from passport.modules.shared.exceptions import QuestStateConflictError


@dataclass
class _BadgeGrant:
    earned_at: datetime
    visual_state: str
    seq: int


class InMemoryUnitOfWork(GamificationUnitOfWork):
    def __init__(self, store: InMemoryGamificationStore) -> None:
        self._store = store
        self._undo: List[Callable[[], None]] = []

    async def _read(self, operation: str) -> None:
        self._store.calls.append(operation)
        failure = self._store.failures.get(operation)
        if failure is not None:
            raise failure
        await asyncio.sleep(0)

    def rollback(self) -> None:
        for undo in reversed(self._undo):
            undo()
        self._undo.clear()

    # Rules & activity

    async def fetch_active_rules(self, trigger_event: str) -> List[RuleDefinition]:
        await self._read("fetch_active_rules")
        rules = [
            rule
            for rule in self._store.rules.values()
            if rule.trigger_event == trigger_event and rule.is_active
        ]
        return sorted(rules, key=lambda rule: (-rule.priority, rule.id))

    async def has_active_rules(self, trigger_event: str) -> bool:
        await self._read("has_active_rules")
        if self._store.malformed_rules.get(trigger_event):
            return True
        return any(
            rule.trigger_event == trigger_event and rule.is_active
            for rule in self._store.rules.values()
        )

    async def count_activity(self, field: str, subject_id: str) -> int:
        await self._read("count_activity")
        table = KNOWN_COUNT_FIELDS[field]
        return self._store.activity.get(table, {}).get(subject_id, 0)

    # Catalog

    async def get_badge(self, badge_id: int) -> Optional[BadgeDefinition]:
        await self._read("get_badge")
        return self._store.badges.get(badge_id)

    async def list_badges(self) -> List[BadgeDefinition]:
        await self._read("list_badges")
        return [self._store.badges[key] for key in sorted(self._store.badges)]

    async def get_achievement(self, achievement_id: int) -> Optional[AchievementDefinition]:
        await self._read("get_achievement")
        return self._store.achievements.get(achievement_id)

    async def list_achievements(self) -> List[AchievementDefinition]:
        await self._read("list_achievements")
        return [self._store.achievements[key] for key in sorted(self._store.achievements)]

    async def get_quest(self, quest_id: int) -> Optional[QuestDefinition]:
        await self._read("get_quest")
        return self._store.quests.get(quest_id)

    async def list_active_quests(self) -> List[QuestDefinition]:
        await self._read("list_active_quests")
        return [
            self._store.quests[key]
            for key in sorted(self._store.quests)
            if self._store.quests[key].is_active
        ]

    # Grants

    async def has_badge(self, subject_id: str, badge_id: int) -> bool:
        await self._read("has_badge")
        return (subject_id, badge_id) in self._store.user_badges

    async def has_achievement(self, subject_id: str, achievement_id: int) -> bool:
        await self._read("has_achievement")
        return (subject_id, achievement_id) in self._store.user_achievements

    async def insert_user_badge(
        self,
        subject_id: str,
        badge_id: int,
        visual_state: str,
        earned_at: datetime,
    ) -> bool:
        await self._read("insert_user_badge")
        key = (subject_id, badge_id)
        if key in self._store.user_badges:
            return False
        self._store.user_badges[key] = _BadgeGrant(
            earned_at=earned_at,
            visual_state=visual_state,
            seq=next(self._store.sequence),
        )
        self._undo.append(lambda: self._store.user_badges.pop(key, None))
        return True

    async def insert_user_achievement(
        self,
        subject_id: str,
        achievement_id: int,
        unlocked_at: datetime,
    ) -> bool:
        await self._read("insert_user_achievement")
        key = (subject_id, achievement_id)
        if key in self._store.user_achievements:
            return False
        self._store.user_achievements[key] = unlocked_at
        self._undo.append(lambda: self._store.user_achievements.pop(key, None))
        return True

    async def list_user_badges(self, subject_id: str) -> List[EarnedBadge]:
        await self._read("list_user_badges")
        held = [
            (grant, self._store.badges[badge_id])
            for (owner, badge_id), grant in self._store.user_badges.items()
            if owner == subject_id
        ]
        held.sort(key=lambda pair: (pair[0].earned_at, pair[0].seq), reverse=True)
        return [
            EarnedBadge(badge=badge, earned_at=grant.earned_at, visual_state=grant.visual_state)
            for grant, badge in held
        ]

    async def list_user_achievements(self, subject_id: str) -> List[UnlockedAchievement]:
        await self._read("list_user_achievements")
        return [
            UnlockedAchievement(
                achievement=self._store.achievements[achievement_id],
                unlocked_at=unlocked_at,
            )
            for (owner, achievement_id), unlocked_at in self._store.user_achievements.items()
            if owner == subject_id
        ]

    # Quests

    async def fetch_in_progress_quests(
        self, subject_id: str
    ) -> List[Tuple[UserQuestState, QuestDefinition]]:
        await self._read("fetch_in_progress_quests")
        pairs = []
        for (owner, quest_id), state in sorted(self._store.user_quests.items()):
            quest = self._store.quests.get(quest_id)
            if (
                owner == subject_id
                and state.status is QuestStatus.IN_PROGRESS
                and quest is not None
                and quest.is_active
            ):
                pairs.append((state, quest))
        return pairs

    async def get_user_quest(self, subject_id: str, quest_id: int) -> Optional[UserQuestState]:
        await self._read("get_user_quest")
        return self._store.user_quests.get((subject_id, quest_id))

    async def list_user_quests(self, subject_id: str) -> List[UserQuestState]:
        await self._read("list_user_quests")
        return [
            state
            for (owner, _), state in sorted(self._store.user_quests.items())
            if owner == subject_id
        ]

    async def insert_user_quest(self, state: UserQuestState) -> bool:
        await self._read("insert_user_quest")
        key = (state.subject_id, state.quest_id)
        if key in self._store.user_quests:
            return False
        self._store.user_quests[key] = state
        self._undo.append(lambda: self._store.user_quests.pop(key, None))
        return True

    async def save_user_quest(self, state: UserQuestState, expected_step: int) -> None:
        await self._read("save_user_quest")
        key = (state.subject_id, state.quest_id)
        current = self._store.user_quests.get(key)
        if (
            current is None
            or current.status is not QuestStatus.IN_PROGRESS
            or current.current_step != expected_step
        ):
            raise QuestStateConflictError(state.subject_id, state.quest_id, expected_step)
        self._store.user_quests[key] = state
        self._undo.append(lambda: self._store.user_quests.__setitem__(key, current))

    # Progress & ledger

    async def increment_rewards(
        self, subject_id: str, amount: RewardAmount, reason: str
    ) -> ProgressSnapshot:
        await self._read("increment_rewards")
        progress = self._store.progress
        created = subject_id not in progress
        current = progress.get(subject_id) or ProgressSnapshot(subject_id=subject_id)
        progress[subject_id] = replace(
            current,
            total_xp=current.total_xp + amount.xp,
            coins=current.coins + amount.coins,
        )

        entry = LedgerEntry(
            subject_id=subject_id,
            xp=amount.xp,
            coins=amount.coins,
            reason=reason,
            created_at=datetime.now(timezone.utc),
        )
        self._store.ledger.append(entry)

        def undo() -> None:
            self._store.ledger[:] = [item for item in self._store.ledger if item is not entry]
            if created:
                progress.pop(subject_id, None)
                return
            latest = progress[subject_id]
            progress[subject_id] = replace(
                latest,
                total_xp=latest.total_xp - amount.xp,
                coins=latest.coins - amount.coins,
            )

        self._undo.append(undo)
        return progress[subject_id]

    async def set_level(self, subject_id: str, level: int) -> None:
        await self._read("set_level")
        previous = self._store.progress[subject_id].level
        self._store.progress[subject_id] = replace(self._store.progress[subject_id], level=level)

        def undo() -> None:
            if subject_id in self._store.progress:
                self._store.progress[subject_id] = replace(
                    self._store.progress[subject_id], level=previous
                )

        self._undo.append(undo)

    async def get_progress(self, subject_id: str) -> Optional[ProgressSnapshot]:
        await self._read("get_progress")
        return self._store.progress.get(subject_id)

    async def list_ledger(self, subject_id: str) -> List[LedgerEntry]:
        await self._read("list_ledger")
        return [entry for entry in self._store.ledger if entry.subject_id == subject_id]


class InMemoryGamificationStore(GamificationStore):
    def __init__(self) -> None:
        self.rules: Dict[int, RuleDefinition] = {}
        self.badges: Dict[int, BadgeDefinition] = {}
        self.achievements: Dict[int, AchievementDefinition] = {}
        self.quests: Dict[int, QuestDefinition] = {}
        self.activity: Dict[str, Dict[str, int]] = {}
        # Active rule rows per trigger that would not load as RuleDefinition
        self.malformed_rules: Dict[str, int] = {}

        self.user_badges: Dict[Tuple[str, int], _BadgeGrant] = {}
        self.user_achievements: Dict[Tuple[str, int], datetime] = {}
        self.user_quests: Dict[Tuple[str, int], UserQuestState] = {}
        self.progress: Dict[str, ProgressSnapshot] = {}
        self.ledger: List[LedgerEntry] = []

        self.failures: Dict[str, Exception] = {}
        self.calls: List[str] = []
        self.commits = 0
        self.rollbacks = 0
        self.sequence = itertools.count(1)

    @asynccontextmanager
    async def unit_of_work(self) -> AsyncIterator[InMemoryUnitOfWork]:
        uow = InMemoryUnitOfWork(self)
        try:
            yield uow
        except BaseException:
            uow.rollback()
            self.rollbacks += 1
            raise
        self.commits += 1

    # ------------------------------------------------------------------ #
    # Seeding helpers
    # ------------------------------------------------------------------ #

    def add_badge(self, badge_id: int, name: str, **fields: Any) -> BadgeDefinition:
        fields.setdefault("slug", name.lower().replace(" ", "-"))
        badge = BadgeDefinition(id=badge_id, name=name, **fields)
        self.badges[badge_id] = badge
        return badge

    def add_achievement(self, achievement_id: int, name: str, **fields: Any) -> AchievementDefinition:
        achievement = AchievementDefinition(id=achievement_id, name=name, **fields)
        self.achievements[achievement_id] = achievement
        return achievement

    def add_rule(
        self,
        rule_id: int,
        trigger_event: str,
        condition: Optional[Mapping[str, Any]] = None,
        **fields: Any,
    ) -> RuleDefinition:
        fields.setdefault("name", f"Rule {rule_id}")
        rule = RuleDefinition(
            id=rule_id,
            trigger_event=trigger_event,
            condition=dict(condition or {}),
            **fields,
        )
        self.rules[rule_id] = rule
        return rule

    def add_quest(
        self,
        quest_id: int,
        name: str,
        steps: List[Mapping[str, Any]],
        **fields: Any,
    ) -> QuestDefinition:
        quest = QuestDefinition(
            id=quest_id,
            name=name,
            steps=tuple(QuestStep.from_mapping(raw, index) for index, raw in enumerate(steps, 1)),
            **fields,
        )
        self.quests[quest_id] = quest
        return quest

    def start(self, subject_id: str, quest_id: int, **fields: Any) -> UserQuestState:
        fields.setdefault("started_at", datetime.now(timezone.utc))
        state = UserQuestState(subject_id=subject_id, quest_id=quest_id, **fields)
        self.user_quests[(subject_id, quest_id)] = state
        return state

    def record_activity(self, table: str, subject_id: str, count: int = 1) -> None:
        bucket = self.activity.setdefault(table, {})
        bucket[subject_id] = bucket.get(subject_id, 0) + count

    # ------------------------------------------------------------------ #
    # Assertion helpers
    # ------------------------------------------------------------------ #

    def ledger_for(self, subject_id: str) -> List[LedgerEntry]:
        return [entry for entry in self.ledger if entry.subject_id == subject_id]

    def holds_badge(self, subject_id: str, badge_id: int) -> bool:
        return (subject_id, badge_id) in self.user_badges

    def totals(self, subject_id: str) -> ProgressSnapshot:
        return self.progress.get(subject_id) or ProgressSnapshot(subject_id=subject_id)
