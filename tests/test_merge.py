# Tests for the three-way merge: identity, commutativity, last-writer-wins,
# deletions and resurrection, moves, and edit-state handling.

from datetime import timedelta

import pytest

from sync.merge import merge, parse_edit_state, snapshot
from utils.dataModels import Entry, Vault
from utils.errors import MalformedEditState

from conftest import clone


@pytest.fixture
def base(vault):
    vault.create_group(vault.root, "work")
    vault.create_entry(vault.root, Title="Old", Password="x")
    vault.edit_state = snapshot(vault)
    return vault


def entry_by_title(vault, title):
    return next(e for e in vault.iter_entries() if e.reveal("Title") == title)


def titles(vault):
    return sorted(e.reveal("Title") for e in vault.iter_entries())


def assert_tree(vault):
    """Every group and entry points at a group that actually holds it."""
    seen = set()
    for group in vault.iter_groups():
        assert group.uuid not in seen
        seen.add(group.uuid)
        for child in group.groups:
            assert child.parent == group.uuid
        for entry in group.entries:
            assert entry.parent == group.uuid


# ── Identity / commutativity ──────────────────────────────────────────


class TestIdentity:
    def test_merge_with_self(self, base):
        result = merge(clone(base), clone(base), base.edit_state)
        assert result.vault == base
        assert result.conflicts == []

    def test_merge_with_self_after_local_edits(self, base):
        entry_by_title(base, "Mail").set("Title", "Webmail")
        base.create_entry(base.find_group_by_name("work"), Title="VPN")
        e = base.edit_state
        result = merge(clone(base), clone(base), e)
        assert titles(result.vault) == titles(base)
        assert result.conflicts == []

    def test_does_not_mutate_inputs(self, base):
        local, remote = clone(base), clone(base)
        entry_by_title(remote, "Mail").set("Title", "Webmail")
        local_copy, remote_copy = clone(local), clone(remote)
        merge(local, remote, base.edit_state)
        assert local == local_copy
        assert remote == remote_copy


class TestCommutativity:
    def test_disjoint_edits(self, base):
        local, remote = clone(base), clone(base)
        entry_by_title(local, "Mail").set("Title", "Webmail")
        local.create_entry(local.root, Title="C")
        remote.create_entry(remote.find_group_by_name("work"), Title="B")
        remote.delete_entry(entry_by_title(remote, "Old"))

        lr = merge(local, remote, base.edit_state)
        rl = merge(remote, local, base.edit_state)
        assert lr.vault == rl.vault
        assert titles(lr.vault) == ["B", "C", "Webmail"]
        assert lr.conflicts == rl.conflicts == []


# ── Last writer wins ──────────────────────────────────────────────────


class TestLastWriterWins:
    def test_later_edit_wins(self, base):
        uid = entry_by_title(base, "Mail").uuid
        t0 = base.find_entry(uid).modified
        local, remote = clone(base), clone(base)
        le, re_ = local.find_entry(uid), remote.find_entry(uid)
        le.set("Title", "from-local")
        le.modified = t0 + timedelta(seconds=1)
        re_.set("Title", "from-remote")
        re_.modified = t0 + timedelta(seconds=2)

        result = merge(local, remote, base.edit_state)
        assert result.vault.find_entry(uid).text("Title") == "from-remote"
        assert len(result.conflicts) == 1
        assert merge(remote, local, base.edit_state).vault.find_entry(uid).text("Title") == "from-remote"

    def test_one_sided_edit_wins_even_if_older(self, base):
        uid = entry_by_title(base, "Mail").uuid
        local, remote = clone(base), clone(base)
        local.find_entry(uid).set("UserName", "bob")
        result = merge(local, remote, base.edit_state)
        assert result.vault.find_entry(uid).text("UserName") == "bob"
        assert result.conflicts == []

    def test_rename_and_move_both_survive(self, base):
        uid = entry_by_title(base, "Mail").uuid
        local, remote = clone(base), clone(base)
        local.move_entry(local.find_entry(uid), local.find_group_by_name("work"))
        remote.find_entry(uid).set("Title", "Webmail")

        merged = merge(local, remote, base.edit_state).vault
        entry = merged.find_entry(uid)
        assert entry.text("Title") == "Webmail"
        assert entry.parent == merged.find_group_by_name("work").uuid
        assert_tree(merged)

    def test_edit_and_move_converge_over_later_syncs(self, base):
        uid = entry_by_title(base, "Mail").uuid
        one, two = clone(base), clone(base)
        one.find_entry(uid).set("Title", "Webmail")
        two.move_entry(two.find_entry(uid), two.find_group_by_name("work"))

        # one syncs first, then two, then one picks up two's result
        first = merge(one, clone(base), base.edit_state).vault
        second = merge(two, clone(first), base.edit_state).vault
        third = merge(clone(first), clone(second), first.edit_state).vault

        work = base.find_group_by_name("work").uuid
        moved = two.find_entry(uid).location_changed
        assert second.find_entry(uid).parent == work
        assert second.find_entry(uid).location_changed == moved
        assert third.find_entry(uid).parent == work
        assert third.find_entry(uid).text("Title") == "Webmail"
        assert third == second

    def test_group_rename_and_move_converge(self, base):
        parent = base.create_group(base.root, "parent")
        base.edit_state = snapshot(base)
        one, two = clone(base), clone(base)
        one.find_group_by_name("work").rename("office")
        two.move_group(two.find_group_by_name("work"), two.find_group(parent.uuid))

        first = merge(one, clone(base), base.edit_state).vault
        second = merge(two, clone(first), base.edit_state).vault
        third = merge(clone(first), clone(second), first.edit_state).vault
        office = third.find_group_by_name("office")
        assert office.parent == parent.uuid
        assert third == second

    def test_conflicting_moves_resolve_by_location_time(self, base):
        uid = entry_by_title(base, "Mail").uuid
        local, remote = clone(base), clone(base)
        a = local.create_group(local.root, "a")
        local.move_entry(local.find_entry(uid), a)
        remote.move_entry(remote.find_entry(uid), remote.find_group_by_name("work"))
        remote.find_entry(uid).location_changed = local.find_entry(uid).location_changed + timedelta(seconds=5)

        merged = merge(local, remote, base.edit_state).vault
        assert merged.find_entry(uid).parent == merged.find_group_by_name("work").uuid
        assert merged.find_group_by_name("a") is not None


# ── Creations ─────────────────────────────────────────────────────────


class TestCreations:
    def test_new_on_one_side_is_copied(self, base):
        local, remote = clone(base), clone(base)
        g = remote.create_group(remote.root, "personal")
        e = remote.create_entry(g, Title="Bank", Password="1234")
        merged = merge(local, remote, base.edit_state).vault
        assert merged.find_group(g.uuid).name == "personal"
        assert merged.find_entry(e.uuid).reveal("Password") == "1234"
        assert merged.find_entry(e.uuid).parent == g.uuid

    def test_same_uuid_created_on_both_sides(self, base):
        local, remote = clone(base), clone(base)
        le = local.create_entry(local.root, Title="twin-local")
        re_ = Entry(uuid=le.uuid, parent=remote.root.uuid, fields={"Title": "twin-remote"},
                    created=le.created, modified=le.modified + timedelta(seconds=1),
                    location_changed=le.location_changed)
        remote.root.entries.append(re_)

        result = merge(local, remote, base.edit_state)
        copies = [e for e in result.vault.iter_entries() if e.uuid == le.uuid]
        assert len(copies) == 1
        assert copies[0].text("Title") == "twin-remote"
        assert any("created on both replicas" in c for c in result.conflicts)


# ── Deletions ─────────────────────────────────────────────────────────


class TestDeletions:
    def test_deletion_propagates(self, base):
        uid = entry_by_title(base, "Old").uuid
        local, remote = clone(base), clone(base)
        local.delete_entry(local.find_entry(uid))
        result = merge(local, remote, base.edit_state)
        assert result.vault.find_entry(uid) is None
        assert uid in result.vault.deleted
        assert result.conflicts == []

    def test_deletion_without_tombstone(self, base):
        uid = entry_by_title(base, "Old").uuid
        local, remote = clone(base), clone(base)
        local.root.entries = [e for e in local.root.entries if e.uuid != uid]
        merged = merge(local, remote, base.edit_state).vault
        assert merged.find_entry(uid) is None
        assert uid in merged.deleted

    def test_modification_resurrects(self, base):
        uid = entry_by_title(base, "Old").uuid
        local, remote = clone(base), clone(base)
        local.delete_entry(local.find_entry(uid))
        remote.find_entry(uid).set("Title", "Still needed")

        result = merge(local, remote, base.edit_state)
        assert result.vault.find_entry(uid).text("Title") == "Still needed"
        assert uid not in result.vault.deleted
        assert any("deleted on one replica" in c for c in result.conflicts)

    def test_entry_added_to_deleted_group_lands_in_root(self, base):
        local, remote = clone(base), clone(base)
        local.delete_group(local.find_group_by_name("work"))
        e = remote.create_entry(remote.find_group_by_name("work"), Title="orphan")

        result = merge(local, remote, base.edit_state)
        assert result.vault.find_group_by_name("work") is None
        assert result.vault.find_entry(e.uuid).parent == result.vault.root.uuid
        assert any("lost its group" in c for c in result.conflicts)
        assert_tree(result.vault)

    def test_tombstone_vetoes_without_edit_state(self, base):
        uid = entry_by_title(base, "Old").uuid
        local, remote = clone(base), clone(base)
        local.delete_entry(local.find_entry(uid))
        merged = merge(local, remote, None).vault
        assert merged.find_entry(uid) is None


# ── Group structure ───────────────────────────────────────────────────


class TestGroups:
    def test_crossed_group_moves_do_not_create_cycle(self, base):
        g1 = base.create_group(base.root, "g1")
        g2 = base.create_group(base.root, "g2")
        base.edit_state = snapshot(base)
        local, remote = clone(base), clone(base)
        local.move_group(local.find_group(g1.uuid), local.find_group(g2.uuid))
        remote.move_group(remote.find_group(g2.uuid), remote.find_group(g1.uuid))

        result = merge(local, remote, base.edit_state)
        merged = result.vault
        assert {g.uuid for g in merged.iter_groups()} >= {g1.uuid, g2.uuid}
        assert_tree(merged)
        assert any("own subtree" in c for c in result.conflicts)

    def test_group_rename(self, base):
        local, remote = clone(base), clone(base)
        remote.find_group_by_name("work").rename("office")
        merged = merge(local, remote, base.edit_state).vault
        assert merged.find_group_by_name("office") is not None
        assert merged.find_group_by_name("work") is None

    def test_independent_roots_are_unified(self, kdf, base):
        other = Vault.create("vault1", kdf)
        e = other.create_entry(other.root, Title="elsewhere")
        result = merge(clone(base), other, None)
        assert result.vault.root.uuid == base.root.uuid
        assert result.vault.find_entry(e.uuid).parent == base.root.uuid
        assert any("root groups differ" in c for c in result.conflicts)


# ── Edit state ────────────────────────────────────────────────────────


class TestEditState:
    def test_result_carries_fresh_snapshot(self, base):
        local, remote = clone(base), clone(base)
        remote.create_entry(remote.root, Title="new")
        result = merge(local, remote, base.edit_state)
        assert result.edit_state == snapshot(result.vault)
        assert result.vault.edit_state == result.edit_state
        groups, entries = parse_edit_state(result.edit_state)
        assert set(entries) == {e.uuid for e in result.vault.iter_entries()}
        assert set(groups) == {g.uuid for g in result.vault.iter_groups()}

    @pytest.mark.parametrize("blob", [
        b"garbage",
        b'{"version": 99, "groups": {}, "entries": {}}',
        b'{"version": 1, "groups": {"x": ["not-a-date", "x", null]}, "entries": {}}',
        b'{"version": 1}',
    ])
    def test_malformed(self, base, blob):
        with pytest.raises(MalformedEditState):
            merge(clone(base), clone(base), blob)

    def test_empty_edit_state_identical_replicas(self, base):
        result = merge(clone(base), clone(base), None)
        assert titles(result.vault) == titles(base)
        assert result.conflicts == []
