# backend/scope_evaluator.py
"""
Scope evaluator: "most specific wins" over a list of ScopeConfiguration.

Every configuration yields zero or more candidates, one per matching id:
    (config, rank, context_type, context_id)

The winner is the minimum candidate under a total order:
    rank                (Marshal=1 < Checkpoint=2 < Area=3)
    family preference   (shared Checkpoint/Area contexts before Personal)
    context_id
    Everyone last
    scope name, ids     (stable final tie-break)

so the result does not depend on the order configurations were stored in.

Absence never raises: unknown checkpoints, missing lookups, empty id lists
and unknown scope kinds all degrade to "no candidate".
"""

import logging
from typing import Dict, Iterable, List, Mapping, NamedTuple, Optional, Set, Tuple

from .models import (
    ContextType,
    ItemType,
    Location,
    MarshalContext,
    ScopeConfiguration,
    ScopeKind,
    ScopeMatchResult,
    SPECIFICITY_AREA,
    SPECIFICITY_CHECKPOINT,
    SPECIFICITY_MARSHAL,
)

log = logging.getLogger(__name__)

CheckpointLookup = Mapping[str, Location]

# ---------------- CONFIG ----------------
RANK_FOR_ITEM_TYPE = {
    ItemType.MARSHAL: SPECIFICITY_MARSHAL,
    ItemType.CHECKPOINT: SPECIFICITY_CHECKPOINT,
    ItemType.AREA: SPECIFICITY_AREA,
}

# Kinds that let area leads in through the checkpoint/area chain.
LEAD_ADMITTING_SCOPES = frozenset({
    ScopeKind.ONE_PER_CHECKPOINT,
    ScopeKind.ONE_PER_AREA,
    ScopeKind.ONE_LEAD_PER_AREA,
    ScopeKind.EVERY_AREA_LEAD,
})

# Kinds that admit nobody but area leads.
LEAD_ONLY_SCOPES = frozenset({
    ScopeKind.ONE_LEAD_PER_AREA,
    ScopeKind.EVERY_AREA_LEAD,
})
# ----------------------------------------


class Candidate(NamedTuple):
    config: ScopeConfiguration
    rank: int
    context_type: ContextType
    context_id: str


# ---------- Helpers ----------
def context_type_for_scope(kind: Optional[ScopeKind]) -> ContextType:
    """Context family of a scope kind. Unknown kinds are treated as Personal."""
    if kind == ScopeKind.ONE_PER_CHECKPOINT:
        return ContextType.CHECKPOINT
    if kind in (ScopeKind.ONE_PER_AREA, ScopeKind.ONE_LEAD_PER_AREA):
        return ContextType.AREA
    return ContextType.PERSONAL


def is_personal_scope(kind: Optional[ScopeKind]) -> bool:
    return context_type_for_scope(kind) == ContextType.PERSONAL


def is_personal_context_type(context_type: Optional[ContextType]) -> bool:
    return context_type is None or context_type == ContextType.PERSONAL


def _sort_key(c: Candidate) -> Tuple:
    family = 1 if c.context_type == ContextType.PERSONAL else 0
    everyone_last = 1 if c.config.scope == ScopeKind.EVERYONE else 0
    return (c.rank, family, c.context_id, everyone_last, c.config.scope.value, c.config.ids)


def _checkpoint_areas(checkpoint_id: str, lookup: CheckpointLookup) -> Tuple[str, ...]:
    loc = lookup.get(checkpoint_id)
    return loc.area_ids if loc is not None else ()


def _checkpoints_in_areas(area_ids: Iterable[str], lookup: CheckpointLookup) -> Set[str]:
    wanted = set(area_ids)
    if not wanted:
        return set()
    return {cid for cid, loc in lookup.items() if wanted.intersection(loc.area_ids)}


# ---------- Candidate generation ----------
def _marshal_candidates(config: ScopeConfiguration, ctx: MarshalContext) -> List[Candidate]:
    if config.match_all or ctx.marshal_id in config.ids:
        return [Candidate(config, SPECIFICITY_MARSHAL, ContextType.PERSONAL, ctx.marshal_id)]
    return []


def _checkpoint_candidates(
    config: ScopeConfiguration, ctx: MarshalContext, lookup: CheckpointLookup
) -> List[Candidate]:
    scope = config.scope
    lead_admitting = scope in LEAD_ADMITTING_SCOPES
    lead_only = scope in LEAD_ONLY_SCOPES
    family = context_type_for_scope(scope)

    if config.match_all:
        checkpoint_ids = set(ctx.assigned_location_ids)
        if lead_admitting:
            checkpoint_ids |= _checkpoints_in_areas(ctx.area_lead_for_area_ids, lookup)
    else:
        checkpoint_ids = set(config.ids)

    out: List[Candidate] = []
    for cid in sorted(checkpoint_ids):
        cp_areas = _checkpoint_areas(cid, lookup)
        leads_here = lead_admitting and bool(ctx.area_lead_for_area_ids.intersection(cp_areas))
        if lead_only:
            admitted = leads_here
        else:
            admitted = cid in ctx.assigned_location_ids or leads_here
        if not admitted:
            continue

        if family == ContextType.CHECKPOINT:
            out.append(Candidate(config, SPECIFICITY_CHECKPOINT, family, cid))
        elif family == ContextType.AREA:
            relevant = set(ctx.area_lead_for_area_ids)
            if not lead_only:
                relevant |= ctx.assigned_area_ids
            for aid in sorted(relevant.intersection(cp_areas)):
                out.append(Candidate(config, SPECIFICITY_CHECKPOINT, family, aid))
        else:
            out.append(Candidate(config, SPECIFICITY_CHECKPOINT, family, ctx.marshal_id))
    return out


def _area_candidates(
    config: ScopeConfiguration, ctx: MarshalContext, lookup: CheckpointLookup
) -> List[Candidate]:
    scope = config.scope
    leads = ctx.area_lead_for_area_ids
    assigned = ctx.assigned_area_ids

    if scope in LEAD_ONLY_SCOPES:
        eligible = set(leads)
    elif scope in (ScopeKind.ONE_PER_AREA, ScopeKind.ONE_PER_CHECKPOINT):
        eligible = set(assigned) | set(leads)
    else:
        eligible = set(assigned)

    area_ids = eligible if config.match_all else eligible.intersection(config.ids)

    out: List[Candidate] = []
    for aid in sorted(area_ids):
        if scope == ScopeKind.ONE_PER_CHECKPOINT:
            # one per checkpoint, restricted to checkpoints inside these areas
            checkpoints = {
                cid for cid in ctx.assigned_location_ids
                if aid in _checkpoint_areas(cid, lookup)
            }
            if aid in leads:
                checkpoints |= _checkpoints_in_areas([aid], lookup)
            for cid in sorted(checkpoints):
                out.append(Candidate(config, SPECIFICITY_CHECKPOINT, ContextType.CHECKPOINT, cid))
        elif scope in (ScopeKind.ONE_PER_AREA, ScopeKind.ONE_LEAD_PER_AREA):
            out.append(Candidate(config, SPECIFICITY_AREA, ContextType.AREA, aid))
        else:
            out.append(Candidate(config, SPECIFICITY_AREA, ContextType.PERSONAL, ctx.marshal_id))
    return out


def candidates_for_config(
    config: ScopeConfiguration,
    ctx: MarshalContext,
    checkpoint_lookup: Optional[CheckpointLookup] = None,
) -> List[Candidate]:
    lookup = checkpoint_lookup or {}

    if config.scope == ScopeKind.UNKNOWN:
        return []
    if config.scope == ScopeKind.EVERYONE:
        return [Candidate(config, SPECIFICITY_AREA, ContextType.PERSONAL, ctx.marshal_id)]
    if config.item_type is None or config.is_empty():
        return []

    if config.item_type == ItemType.MARSHAL:
        return _marshal_candidates(config, ctx)
    if config.item_type == ItemType.CHECKPOINT:
        return _checkpoint_candidates(config, ctx, lookup)
    return _area_candidates(config, ctx, lookup)


def _all_candidates(
    configs: Iterable[ScopeConfiguration],
    ctx: MarshalContext,
    checkpoint_lookup: Optional[CheckpointLookup],
) -> List[Candidate]:
    out: List[Candidate] = []
    for config in configs or ():
        out.extend(candidates_for_config(config, ctx, checkpoint_lookup))
    return out


def _to_result(c: Candidate) -> ScopeMatchResult:
    return ScopeMatchResult(
        is_relevant=True,
        winning_config=c.config,
        specificity=c.rank,
        context_type=c.context_type,
        context_id=c.context_id,
    )


# ---------- Public API ----------
def evaluate(
    configs: Iterable[ScopeConfiguration],
    ctx: MarshalContext,
    checkpoint_lookup: Optional[CheckpointLookup] = None,
) -> ScopeMatchResult:
    """
    Pick the single winning configuration for ``ctx``.
    Returns ScopeMatchResult.no_match() when nothing admits the actor.
    """
    candidates = _all_candidates(configs, ctx, checkpoint_lookup)
    if not candidates:
        return ScopeMatchResult.no_match()
    best = min(candidates, key=_sort_key)
    log.debug(
        "scope winner for %s: %s rank=%d %s:%s (of %d candidates)",
        ctx.marshal_id, best.config.scope.value, best.rank,
        best.context_type.value, best.context_id, len(candidates),
    )
    return _to_result(best)


def all_checkpoint_contexts(
    config: ScopeConfiguration,
    ctx: MarshalContext,
    checkpoint_lookup: Optional[CheckpointLookup] = None,
) -> List[str]:
    """Every checkpoint context ``config`` puts the actor in, sorted."""
    ids = {
        c.context_id for c in candidates_for_config(config, ctx, checkpoint_lookup)
        if c.context_type == ContextType.CHECKPOINT
    }
    return sorted(ids)


def all_area_contexts(
    config: ScopeConfiguration,
    ctx: MarshalContext,
    checkpoint_lookup: Optional[CheckpointLookup] = None,
    lead_only: bool = False,
) -> List[str]:
    """
    Every area context ``config`` puts the actor in, sorted.
    With ``lead_only`` only areas the actor leads are returned.
    """
    ids = {
        c.context_id for c in candidates_for_config(config, ctx, checkpoint_lookup)
        if c.context_type == ContextType.AREA
    }
    if lead_only:
        ids &= ctx.area_lead_for_area_ids
    return sorted(ids)


def all_relevant_contexts(
    configs: Iterable[ScopeConfiguration],
    ctx: MarshalContext,
    checkpoint_lookup: Optional[CheckpointLookup] = None,
) -> List[ScopeMatchResult]:
    """
    The winning match followed by every other shared context, from any
    configuration, with the winner's rank and context type. Each context id
    appears once, carried by its best candidate, so the list does not depend
    on how a policy is split across configurations. A personal winner yields
    a single-element list; no match yields an empty list.
    """
    candidates = _all_candidates(configs, ctx, checkpoint_lookup)
    if not candidates:
        return []
    winner = min(candidates, key=_sort_key)
    if is_personal_context_type(winner.context_type):
        return [_to_result(winner)]

    best: Dict[str, Candidate] = {}
    for c in candidates:
        if c.rank != winner.rank or c.context_type != winner.context_type:
            continue
        current = best.get(c.context_id)
        if current is None or _sort_key(c) < _sort_key(current):
            best[c.context_id] = c
    return [_to_result(best[cid]) for cid in sorted(best)]
