"""Live thread state — folds snapshot/patch stream events into per-thread state.

The backend streams ``thread-stream-state-changed`` broadcasts for every
thread it knows. Each carries either a full snapshot of the conversation
state or an ordered list of path-addressed patches. This module reduces an
ordered sequence of such events into a mapping ``thread_id -> ThreadState``.

Rules:
  - Threads are independent; events for one thread never touch another.
  - A snapshot replaces the conversation state unconditionally (no version gate).
  - Patches apply in array order against the current state. Patches that
    arrive before any snapshot are dropped: there is no base to apply them to.
  - A patch whose path does not exist is skipped (permissive mode, default)
    or raises ``ThreadStreamReductionError`` (strict mode).
  - States are copy-on-write: a stored conversation state is never mutated,
    so reducing a growing prefix event-by-event gives the same result as
    reducing the whole batch at once.

Key pieces: ``apply_patch()``, ``LiveStateReducer`` (streaming),
``reduce_thread_stream_events()`` (pure fold).
"""

import copy
from collections.abc import Iterable
from dataclasses import dataclass, replace
from typing import Any, Literal

import structlog

from .errors import ThreadStreamReductionError
from .protocol.ipc import ThreadStreamStateChangedBroadcast
from .protocol.thread import ThreadStreamSnapshotChange

logger = structlog.get_logger()

PatchOp = Literal["add", "replace", "remove"]
PathSegment = str | int
ConversationState = dict[str, Any]


class PatchPathError(ValueError):
    """A patch path does not address an existing location."""


# ── Events and state ─────────────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class PatchOperation:
    op: PatchOp
    path: tuple[PathSegment, ...]
    value: Any = None


@dataclass(frozen=True, slots=True)
class SnapshotChange:
    conversation_state: ConversationState


@dataclass(frozen=True, slots=True)
class PatchesChange:
    patches: tuple[PatchOperation, ...]


@dataclass(frozen=True, slots=True)
class StateChangeEvent:
    """One versioned change for one thread."""

    thread_id: str
    version: int
    change: SnapshotChange | PatchesChange
    source_client_id: str | None = None

    @classmethod
    def from_broadcast(
        cls, broadcast: ThreadStreamStateChangedBroadcast
    ) -> "StateChangeEvent":
        """Build an event from a validated stream broadcast."""
        params = broadcast.params
        change: SnapshotChange | PatchesChange
        if isinstance(params.change, ThreadStreamSnapshotChange):
            change = SnapshotChange(params.change.conversation_state.to_state_dict())
        else:
            change = PatchesChange(
                tuple(
                    PatchOperation(
                        op=patch.op,
                        path=tuple(patch.path),
                        value=patch.to_wire().get("value"),
                    )
                    for patch in params.change.patches
                )
            )
        return cls(
            thread_id=params.conversation_id,
            version=params.version,
            change=change,
            source_client_id=broadcast.source_client_id,
        )


@dataclass(frozen=True, slots=True)
class ThreadState:
    """Reduced view of one thread.

    ``conversation_state`` stays ``None`` until the first snapshot arrives.
    Treat it as read-only; the reducer shares it between calls.
    """

    conversation_state: ConversationState | None = None
    owner_client_id: str | None = None
    version: int | None = None


# ── Patch application ────────────────────────────────────────────────────


def _is_index(segment: PathSegment) -> bool:
    return isinstance(segment, int) and not isinstance(segment, bool) and segment >= 0


def _label(segment: PathSegment) -> str:
    return f"[{segment}]" if isinstance(segment, int) else segment


def _apply_in_place(root: ConversationState, patch: PatchOperation) -> str | None:
    """Apply *patch* to *root*. Returns ``None`` on success, else the reason.

    The target is fully resolved before anything is mutated, so a rejected
    patch leaves *root* untouched.
    """
    if not patch.path:
        return "Patch path cannot be empty"

    *parent_path, last = patch.path
    parent: Any = root
    for segment in parent_path:
        if isinstance(parent, list) and _is_index(segment):
            if segment >= len(parent):
                return f"Patch path segment out of range: {_label(segment)}"
            parent = parent[segment]
        elif isinstance(parent, dict) and isinstance(segment, str):
            if segment not in parent:
                return f"Patch path segment missing: {segment}"
            parent = parent[segment]
        else:
            return f"Patch path invalid at segment {_label(segment)}"

    if isinstance(parent, list) and _is_index(last):
        if patch.op == "add":
            if last > len(parent):
                return f"Patch add index out of range: {last}"
            parent.insert(last, copy.deepcopy(patch.value))
            return None
        if last >= len(parent):
            return f"Patch {patch.op} index out of range: {last}"
        if patch.op == "replace":
            parent[last] = copy.deepcopy(patch.value)
        else:
            del parent[last]
        return None

    if isinstance(parent, dict) and isinstance(last, str):
        if patch.op == "remove":
            if last not in parent:
                return f"Patch remove key missing: {last}"
            del parent[last]
            return None
        parent[last] = copy.deepcopy(patch.value)
        return None

    return "Patch target type mismatch"


def apply_patch(
    state: ConversationState, patch: PatchOperation, *, strict: bool = False
) -> ConversationState:
    """Return a new state with *patch* applied; *state* is never mutated.

    When the path does not exist, returns *state* unchanged, or raises
    ``PatchPathError`` if *strict*.
    """
    updated = copy.deepcopy(state)
    reason = _apply_in_place(updated, patch)
    if reason is None:
        return updated
    if strict:
        raise PatchPathError(reason)
    return state


# ── Reducer ──────────────────────────────────────────────────────────────


class LiveStateReducer:
    """Streaming reducer: feed events one at a time in receipt order.

    Each event must be applied exactly once — replaying an ``add`` into a
    list would insert a duplicate.
    """

    def __init__(self, *, strict: bool = False) -> None:
        self._strict = strict
        self._threads: dict[str, ThreadState] = {}
        self._event_count = 0

    @property
    def threads(self) -> dict[str, ThreadState]:
        """Copy of the current thread-id → state mapping."""
        return dict(self._threads)

    def get(self, thread_id: str) -> ThreadState | None:
        return self._threads.get(thread_id)

    def apply(self, event: StateChangeEvent) -> ThreadState:
        """Fold one event in and return the thread's new state."""
        event_index = self._event_count
        self._event_count += 1

        previous = self._threads.get(event.thread_id) or ThreadState()
        owner = event.source_client_id or previous.owner_client_id

        if isinstance(event.change, SnapshotChange):
            state = ThreadState(
                conversation_state=copy.deepcopy(event.change.conversation_state),
                owner_client_id=owner,
                version=event.version,
            )
        elif previous.conversation_state is None:
            logger.debug(
                "Dropping %d patch(es) for %s: no snapshot yet (version %d)",
                len(event.change.patches),
                event.thread_id,
                event.version,
            )
            state = replace(previous, owner_client_id=owner)
        else:
            state = ThreadState(
                conversation_state=self._apply_patches(
                    previous.conversation_state, event.change.patches, event, event_index
                ),
                owner_client_id=owner,
                version=event.version,
            )

        self._threads[event.thread_id] = state
        return state

    def apply_all(self, events: Iterable[StateChangeEvent]) -> dict[str, ThreadState]:
        for event in events:
            self.apply(event)
        return self.threads

    def _apply_patches(
        self,
        base: ConversationState,
        patches: tuple[PatchOperation, ...],
        event: StateChangeEvent,
        event_index: int,
    ) -> ConversationState:
        working = copy.deepcopy(base)
        for patch_index, patch in enumerate(patches):
            reason = _apply_in_place(working, patch)
            if reason is None:
                continue
            if self._strict:
                raise ThreadStreamReductionError(
                    reason, event.thread_id, event_index, patch_index
                )
            logger.debug(
                "Skipping patch %d of version %d for %s: %s",
                patch_index,
                event.version,
                event.thread_id,
                reason,
            )
        return working


def reduce_thread_stream_events(
    events: Iterable[StateChangeEvent], *, strict: bool = False
) -> dict[str, ThreadState]:
    """Pure fold of *events* (in the given order) into per-thread state."""
    return LiveStateReducer(strict=strict).apply_all(events)


def find_latest_turn_params_template(
    conversation_state: ConversationState,
) -> dict[str, Any]:
    """Params of the newest turn that has any; the base for a follow-up turn."""
    for turn in reversed(conversation_state.get("turns") or []):
        params = turn.get("params") if isinstance(turn, dict) else None
        if params:
            return params
    raise ValueError("No turn params template found in conversation state")
