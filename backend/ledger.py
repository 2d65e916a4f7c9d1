# backend/ledger.py
"""
In-memory completion ledger, one per event.

Completions are append-only records; "uncomplete" is a soft delete that
stamps uncompleted_at / uncompleted_by_admin_email and keeps the record.

Two marshals completing the same shared context at the same moment may both
append a completion. Readers treat "any non-deleted completion in the
context" as completed; duplicates are accepted.
"""

import datetime
import logging
import uuid
from typing import Iterable, List, Optional

from .models import ACTOR_MARSHAL, ChecklistCompletion, ContextType

log = logging.getLogger("uvicorn.error")


class CompletionLedger:
    def __init__(self, event_id: str, completions: Optional[Iterable[ChecklistCompletion]] = None):
        self.event_id = event_id
        self._completions: List[ChecklistCompletion] = list(completions or [])

    def __len__(self) -> int:
        return len(self._completions)

    def for_event(self, include_deleted: bool = False) -> List[ChecklistCompletion]:
        if include_deleted:
            return list(self._completions)
        return [c for c in self._completions if not c.is_deleted]

    def for_item(self, item_id: str, include_deleted: bool = False) -> List[ChecklistCompletion]:
        return [c for c in self.for_event(include_deleted) if c.item_id == item_id]

    def record_completion(
        self,
        item_id: str,
        context_type: ContextType,
        context_id: str,
        context_owner_marshal_id: str,
        context_owner_marshal_name: str = "",
        actor_type: str = ACTOR_MARSHAL,
        actor_id: str = "",
        actor_name: str = "",
        completed_at: Optional[datetime.datetime] = None,
    ) -> ChecklistCompletion:
        completion = ChecklistCompletion(
            completion_id=str(uuid.uuid4()),
            event_id=self.event_id,
            item_id=item_id,
            context_type=context_type,
            context_id=context_id,
            context_owner_marshal_id=context_owner_marshal_id,
            context_owner_marshal_name=context_owner_marshal_name,
            actor_type=actor_type,
            actor_id=actor_id,
            actor_name=actor_name,
            completed_at=completed_at or datetime.datetime.now(datetime.timezone.utc),
        )
        self._completions.append(completion)
        log.info(
            "Checklist item %s completed in %s:%s by %s %s",
            item_id, context_type.value, context_id, actor_type, actor_id,
        )
        return completion

    def uncomplete(
        self,
        item_id: str,
        context_type: ContextType,
        context_id: str,
        context_owner_marshal_id: str,
        admin_email: str,
        now: Optional[datetime.datetime] = None,
    ) -> List[ChecklistCompletion]:
        """
        Soft delete every live completion of ``item_id`` in the given context
        (personal contexts are keyed by owner). Returns the updated records.
        """
        now = now or datetime.datetime.now(datetime.timezone.utc)
        updated: List[ChecklistCompletion] = []
        for idx, c in enumerate(self._completions):
            if c.item_id != item_id or c.is_deleted or c.context_type != context_type:
                continue
            if context_type == ContextType.PERSONAL:
                if c.context_owner_marshal_id != context_owner_marshal_id:
                    continue
            elif c.context_id != context_id:
                continue
            replaced = c.model_copy(update={
                "is_deleted": True,
                "uncompleted_at": now,
                "uncompleted_by_admin_email": admin_email,
            })
            self._completions[idx] = replaced
            updated.append(replaced)

        if updated:
            log.info(
                "Checklist item %s uncompleted in %s:%s by %s (%d record(s))",
                item_id, context_type.value, context_id, admin_email, len(updated),
            )
        return updated
