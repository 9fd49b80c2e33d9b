"""Three-way merge of two replicas of a vault.

The common ancestor is not a full copy of the vault but the edit-state
snapshot taken at the end of the last successful sync: for every group and
entry, its ``modified`` and ``location_changed`` times and its parent. An
object whose times still match the snapshot is unchanged on that side.

Content (fields, names) and location (parent pointer) are resolved
separately, each by the same rule:

  * changed on one side only -> that side wins
  * changed on both sides    -> the later timestamp wins
  * unchanged on both        -> the two copies are identical

An object known to the snapshot but missing on one side was deleted there.
The deletion stands unless the other side touched the object since the
snapshot, in which case it is resurrected.

merge() never fails on conflicting data; conflicts are reported in
``MergeResult.conflicts`` and logged. Only an unreadable snapshot raises
(MalformedEditState).
"""
import copy
import json
import logging

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from crypto.protected import ProtectedValue
from storage.codec import encode_entry
from utils.dataModels import Entry, Group, Vault
from utils.errors import MalformedEditState
from utils.helper import from_iso, to_iso

logger = logging.getLogger(__name__)

EDIT_STATE_VERSION = 1


@dataclass(frozen=True)
class Stamp:
    modified: datetime
    location_changed: datetime
    parent: Optional[str]


@dataclass
class MergeResult:
    vault: Vault
    edit_state: bytes
    conflicts: List[str] = field(default_factory=list)


# -- edit state --

def _stamp_row(obj: Group | Entry) -> list:
    return [to_iso(obj.modified), to_iso(obj.location_changed), obj.parent]


def snapshot(vault: Vault) -> bytes:
    """Structural fingerprint of `vault`, stored as the next sync's ancestor."""
    state = {
        "version": EDIT_STATE_VERSION,
        "groups": {g.uuid: _stamp_row(g) for g in vault.iter_groups()},
        "entries": {e.uuid: _stamp_row(e) for e in vault.iter_entries()},
    }
    return json.dumps(state, sort_keys=True, separators=(",", ":")).encode("utf-8")


def parse_edit_state(blob: bytes | None) -> Tuple[Dict[str, Stamp], Dict[str, Stamp]]:
    if blob is None:
        return {}, {}
    try:
        state = json.loads(blob.decode("utf-8"))
        if state["version"] != EDIT_STATE_VERSION:
            raise MalformedEditState(f"Unknown edit-state version {state['version']!r}")
        groups = {uid: Stamp(from_iso(m), from_iso(l), p) for uid, (m, l, p) in state["groups"].items()}
        entries = {uid: Stamp(from_iso(m), from_iso(l), p) for uid, (m, l, p) in state["entries"].items()}
    except (ValueError, KeyError, TypeError, AttributeError) as e:
        raise MalformedEditState(f"Edit state could not be parsed ({e.__class__.__name__})") from e
    return groups, entries


# -- replica view --

class _Side:
    """One replica flattened into UUID keyspaces."""

    def __init__(self, vault: Vault, root_alias: Optional[str] = None) -> None:
        self.vault = vault
        self.alias = {vault.root.uuid: root_alias} if root_alias else {}
        self.groups: Dict[str, Group] = {}
        self.entries: Dict[str, Entry] = {}
        self.group_order: Dict[str, List[str]] = {}
        self.entry_order: Dict[str, List[str]] = {}
        for g in vault.iter_groups():
            gid = self.uid(g.uuid)
            self.groups[gid] = g
            self.group_order[gid] = [self.uid(c.uuid) for c in g.groups]
            self.entry_order[gid] = [e.uuid for e in g.entries]
            for e in g.entries:
                self.entries[e.uuid] = e
        self.tombstones = vault.deleted

    def uid(self, value: Optional[str]) -> Optional[str]:
        return self.alias.get(value, value)

    def parent(self, obj: Group | Entry) -> Optional[str]:
        return self.uid(obj.parent)


def _label(kind: str, uid: str, obj: Group | Entry) -> str:
    if isinstance(obj, Group):
        return f"{kind} {uid} ({obj.name!r})"
    title = obj.fields.get("Title")
    return f"{kind} {uid} ({title!r})" if isinstance(title, str) and title else f"{kind} {uid}"


def _canonical(obj: Group | Entry) -> bytes:
    if isinstance(obj, Entry):
        d = encode_entry(obj)
    else:
        d = dict(obj.extra, name=obj.name, modified=to_iso(obj.modified), created=to_iso(obj.created))
    return json.dumps(d, sort_keys=True, default=str).encode("utf-8")


def _later(a, b, attr: str):
    ta, tb = getattr(a, attr), getattr(b, attr)
    if ta != tb:
        return a if ta > tb else b
    # equal timestamps: pick on content so argument order never matters
    return a if _canonical(a) >= _canonical(b) else b


def _pick(lo, ro, base: Optional[Stamp], attr: str):
    """Winner for one attribute (content or location) of an object on both sides."""
    if base is None:
        return _later(lo, ro, attr)
    l_changed = getattr(lo, attr) != getattr(base, attr)
    r_changed = getattr(ro, attr) != getattr(base, attr)
    if l_changed and not r_changed:
        return lo
    if r_changed and not l_changed:
        return ro
    if l_changed and r_changed:
        return _later(lo, ro, attr)
    return lo


def _untouched(obj: Group | Entry, base: Stamp) -> bool:
    return obj.modified == base.modified and obj.location_changed == base.location_changed


@dataclass
class _Decision:
    content: Group | Entry
    location: Group | Entry
    location_side: _Side


class _Merger:
    def __init__(self, local: Vault, remote: Vault, base_groups: Dict[str, Stamp],
                 base_entries: Dict[str, Stamp]) -> None:
        self.root_id = local.root.uuid
        self.conflicts: List[str] = []
        self.tombstones: Dict[str, datetime] = {}
        if remote.root.uuid != local.root.uuid:
            self.conflict(f"root groups differ ({local.root.uuid} / {remote.root.uuid}); treating them as one")
        self.L = _Side(local)
        self.R = _Side(remote, root_alias=self.root_id if remote.root.uuid != local.root.uuid else None)
        self.base = {"group": base_groups, "entry": base_entries}
        for side in (self.L, self.R):
            for uid, ts in side.tombstones.items():
                if uid not in self.tombstones or ts > self.tombstones[uid]:
                    self.tombstones[uid] = ts

    def conflict(self, message: str) -> None:
        logger.warning("merge conflict: %s", message)
        self.conflicts.append(message)

    def decide(self, kind: str, uid: str, lo, ro) -> Optional[_Decision]:
        L, R = self.L, self.R
        base = self.base[kind].get(uid)

        if lo is not None and ro is not None:
            content = _pick(lo, ro, base, "modified")
            location = _pick(lo, ro, base, "location_changed")
            if base is None:
                if _canonical(lo) != _canonical(ro) or L.parent(lo) != R.parent(ro):
                    self.conflict(f"{_label(kind, uid, content)} created on both replicas; kept the newer copy")
                else:
                    logger.debug("%s present on both replicas with identical content", _label(kind, uid, lo))
            elif (lo.modified != base.modified and ro.modified != base.modified
                  and _canonical(lo) != _canonical(ro)):
                self.conflict(f"{_label(kind, uid, content)} edited on both replicas; kept the newer edit")
            return _Decision(content, location, L if location is lo else R)

        obj, side, other = (lo, L, R) if lo is not None else (ro, R, L)
        if base is None:
            # new on one side; only an explicit tombstone on the other side can veto it
            tomb = other.tombstones.get(uid)
            if tomb is not None and tomb >= obj.modified and tomb >= obj.location_changed:
                logger.info("%s was deleted on the other replica", _label(kind, uid, obj))
                return None
            return _Decision(obj, obj, side)

        if _untouched(obj, base):
            self.tombstones.setdefault(uid, max(base.modified, base.location_changed))
            logger.info("%s deleted", _label(kind, uid, obj))
            return None
        self.conflict(f"{_label(kind, uid, obj)} deleted on one replica but edited on the other; kept it")
        return _Decision(obj, obj, side)

    # -- tree assembly --

    def _order(self, gid: str, members: set, attr: str) -> List[str]:
        orders = []
        for side in (self.L, self.R):
            listing = getattr(side, attr).get(gid)
            if listing is not None:
                orders.append([uid for uid in listing if uid in members])
        if orders and all(o == orders[0] for o in orders) and set(orders[0]) == members:
            return orders[0]
        return sorted(members, key=lambda uid: (self._created[uid], uid))

    @staticmethod
    def _cycle_from(gid: str, parents: Dict[str, Optional[str]]) -> Optional[List[str]]:
        path: List[str] = []
        current: Optional[str] = gid
        while current is not None:
            if current in path:
                return path[path.index(current):]
            path.append(current)
            current = parents.get(current)
        return None

    def run(self) -> Vault:
        L, R = self.L, self.R
        groups: Dict[str, Group] = {}
        group_parent: Dict[str, Optional[str]] = {}
        for uid in sorted(set(L.groups) | set(R.groups)):
            d = self.decide("group", uid, L.groups.get(uid), R.groups.get(uid))
            if d is None:
                continue
            groups[uid] = _clone_group(d.content, uid)
            groups[uid].location_changed = d.location.location_changed
            group_parent[uid] = None if uid == self.root_id else d.location_side.parent(d.location)

        entries: Dict[str, Entry] = {}
        entry_parent: Dict[str, str] = {}
        for uid in sorted(set(L.entries) | set(R.entries)):
            d = self.decide("entry", uid, L.entries.get(uid), R.entries.get(uid))
            if d is None:
                continue
            entries[uid] = _clone_entry(d.content)
            entries[uid].location_changed = d.location.location_changed
            entry_parent[uid] = d.location_side.parent(d.location)

        if self.root_id not in groups:
            # the root can only vanish through a corrupt replica; rebuild it from local
            groups[self.root_id] = _clone_group(L.vault.root, self.root_id)
            group_parent[self.root_id] = None

        for uid in sorted(group_parent):
            if uid == self.root_id:
                continue
            if group_parent[uid] not in groups:
                self.conflict(f"group {uid} lost its parent; moved to the root group")
                group_parent[uid] = self.root_id
            cycle = self._cycle_from(uid, group_parent)
            while cycle:
                victim = min(cycle)
                self.conflict(f"group {victim} was moved into its own subtree; moved to the root group")
                group_parent[victim] = self.root_id
                cycle = self._cycle_from(uid, group_parent)
        for uid in sorted(entry_parent):
            if entry_parent[uid] not in groups:
                self.conflict(f"entry {uid} lost its group; moved to the root group")
                entry_parent[uid] = self.root_id

        self._created = {uid: g.created for uid, g in groups.items()}
        self._created.update({uid: e.created for uid, e in entries.items()})
        child_groups: Dict[str, set] = {uid: set() for uid in groups}
        child_entries: Dict[str, set] = {uid: set() for uid in groups}
        for uid, parent in group_parent.items():
            if parent is not None:
                child_groups[parent].add(uid)
        for uid, parent in entry_parent.items():
            child_entries[parent].add(uid)

        for gid, group in groups.items():
            group.parent = group_parent[gid]
            group.groups = [groups[c] for c in self._order(gid, child_groups[gid], "group_order")]
            group.entries = []
            for eid in self._order(gid, child_entries[gid], "entry_order"):
                entry = entries[eid]
                entry.parent = gid
                group.entries.append(entry)

        present = set(groups) | set(entries)
        local, remote = L.vault, R.vault
        return Vault(
            name=local.name,
            kdf=local.kdf,
            root=groups[self.root_id],
            modified=max(local.modified, remote.modified),
            deleted={uid: ts for uid, ts in sorted(self.tombstones.items()) if uid not in present},
            extra=copy.deepcopy({**remote.extra, **local.extra}),
        )


def _clone_value(value: str | ProtectedValue) -> str | ProtectedValue:
    return value.copy() if isinstance(value, ProtectedValue) else value


def _clone_entry(entry: Entry) -> Entry:
    return Entry(
        uuid=entry.uuid,
        parent=entry.parent,
        fields={name: _clone_value(v) for name, v in entry.fields.items()},
        created=entry.created,
        modified=entry.modified,
        location_changed=entry.location_changed,
        extra=copy.deepcopy(entry.extra),
        field_extra=copy.deepcopy(entry.field_extra),
    )


def _clone_group(group: Group, uid: str) -> Group:
    return Group(
        uuid=uid,
        name=group.name,
        created=group.created,
        modified=group.modified,
        location_changed=group.location_changed,
        extra=copy.deepcopy(group.extra),
    )


def merge(local: Vault, remote: Vault, edit_state: bytes | None) -> MergeResult:
    base_groups, base_entries = parse_edit_state(edit_state)
    merger = _Merger(local, remote, base_groups, base_entries)
    merged = merger.run()
    merged.edit_state = snapshot(merged)
    logger.info("merged %d groups, %d entries (%d conflicts)",
                sum(1 for _ in merged.iter_groups()), sum(1 for _ in merged.iter_entries()),
                len(merger.conflicts))
    return MergeResult(vault=merged, edit_state=merged.edit_state, conflicts=merger.conflicts)
