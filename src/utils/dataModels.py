import os
import struct
import uuid

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional

from crypto.protected import ProtectedValue
from utils.errors import InvalidParameters
from utils.helper import utc_now

DEFAULT_T_COST = 4
DEFAULT_M_COST_KiB = 262144  # 256 MiB (tune per device)
DEFAULT_PARALLELISM = 2
DEFAULT_HASH_LEN = 32
MAX_T_COST = 64
MAX_M_COST_KiB = 4 * 1024 * 1024  # 4 GiB
MAX_PARALLELISM = 64
ARGON2ID = 2
SALT_SIZE = 16

VAULT_MAGIC = b"KTV1"
VAULT_VERSION = 1
VAULT_HDR_FMT = ">4sBBIIIB16s12s"  # magic, ver, type, t, m, p, hash_len, salt(16), nonce(12)
VAULT_HDR_SIZE = struct.calcsize(VAULT_HDR_FMT)

STANDARD_FIELDS = ("Title", "UserName", "Password", "URL", "Notes")
ALWAYS_PROTECTED = frozenset({"Password"})

FieldValue = str | ProtectedValue


def new_uuid() -> str:
    return str(uuid.uuid4())


@dataclass(frozen=True)
class KdfParams:
    salt: bytes
    t_cost: int = DEFAULT_T_COST
    m_cost_kib: int = DEFAULT_M_COST_KiB
    parallelism: int = DEFAULT_PARALLELISM
    hash_len: int = DEFAULT_HASH_LEN
    kdf_type: int = ARGON2ID

    @staticmethod
    def generate(t_cost: int = DEFAULT_T_COST, m_cost_kib: int = DEFAULT_M_COST_KiB,
                 parallelism: int = DEFAULT_PARALLELISM) -> "KdfParams":
        return KdfParams(salt=os.urandom(SALT_SIZE), t_cost=t_cost, m_cost_kib=m_cost_kib, parallelism=parallelism)


@dataclass
class Entry:
    uuid: str
    parent: str
    fields: Dict[str, FieldValue] = field(default_factory=dict)
    created: datetime = field(default_factory=utc_now)
    modified: datetime = field(default_factory=utc_now)
    location_changed: datetime = field(default_factory=utc_now)
    extra: Dict[str, Any] = field(default_factory=dict)
    # unknown keys stored alongside individual field values, by field name
    field_extra: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    def text(self, name: str) -> str:
        """Plain field value, or '' when missing. Protected fields must go through reveal()."""
        value = self.fields.get(name, "")
        if isinstance(value, ProtectedValue):
            raise InvalidParameters(f"Field {name!r} is protected; use reveal()")
        return value

    def secret(self, name: str) -> Optional[ProtectedValue]:
        value = self.fields.get(name)
        if value is None:
            return None
        if not isinstance(value, ProtectedValue):
            raise InvalidParameters(f"Field {name!r} is not protected")
        return value

    def reveal(self, name: str) -> str:
        value = self.fields.get(name, "")
        if isinstance(value, ProtectedValue):
            return value.reveal()
        return value

    def is_protected(self, name: str) -> bool:
        return isinstance(self.fields.get(name), ProtectedValue)

    def set(self, name: str, value: FieldValue | None, protected: bool | None = None) -> None:
        self._assign(name, value, protected)
        self.touch()

    def _assign(self, name: str, value: FieldValue | None, protected: bool | None = None) -> None:
        if protected is None:
            protected = name in ALWAYS_PROTECTED
        if value is None:
            self.fields.pop(name, None)
            self.field_extra.pop(name, None)
        elif protected and isinstance(value, str):
            self.fields[name] = ProtectedValue.from_string(value)
        else:
            self.fields[name] = value

    def touch(self) -> None:
        self.modified = utc_now(after=self.modified)

    def wipe(self) -> None:
        for value in self.fields.values():
            if isinstance(value, ProtectedValue):
                value.wipe()


@dataclass
class Group:
    uuid: str
    name: str
    parent: Optional[str] = None
    groups: List["Group"] = field(default_factory=list)
    entries: List[Entry] = field(default_factory=list)
    created: datetime = field(default_factory=utc_now)
    modified: datetime = field(default_factory=utc_now)
    location_changed: datetime = field(default_factory=utc_now)
    extra: Dict[str, Any] = field(default_factory=dict)

    def walk(self) -> Iterator["Group"]:
        yield self
        for child in self.groups:
            yield from child.walk()

    def rename(self, name: str) -> None:
        self.name = name
        self.modified = utc_now(after=self.modified)


@dataclass
class Vault:
    name: str
    kdf: KdfParams
    root: Group
    modified: datetime = field(default_factory=utc_now)
    deleted: Dict[str, datetime] = field(default_factory=dict)
    edit_state: Optional[bytes] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @staticmethod
    def create(name: str, kdf: KdfParams) -> "Vault":
        now = utc_now()
        root = Group(uuid=new_uuid(), name=name, created=now, modified=now, location_changed=now)
        return Vault(name=name, kdf=kdf, root=root, modified=now)

    def touch(self) -> None:
        self.modified = utc_now(after=self.modified)

    # -- lookup --

    def iter_groups(self) -> Iterator[Group]:
        return self.root.walk()

    def iter_entries(self) -> Iterator[Entry]:
        for group in self.iter_groups():
            yield from group.entries

    def find_group(self, gid: str) -> Optional[Group]:
        return next((g for g in self.iter_groups() if g.uuid == gid), None)

    def find_group_by_name(self, name: str) -> Optional[Group]:
        return next((g for g in self.iter_groups() if g.name == name), None)

    def find_entry(self, eid: str) -> Optional[Entry]:
        return next((e for e in self.iter_entries() if e.uuid == eid), None)

    def _owner(self, gid: Optional[str]) -> Group:
        group = self.find_group(gid) if gid else None
        if group is None:
            raise InvalidParameters(f"No such group: {gid}")
        return group

    # -- mutation --

    def create_group(self, parent: Group, name: str) -> Group:
        now = utc_now()
        group = Group(uuid=new_uuid(), name=name, parent=parent.uuid, created=now, modified=now, location_changed=now)
        parent.groups.append(group)
        self.touch()
        return group

    def create_entry(self, group: Group, **fields: FieldValue | None) -> Entry:
        now = utc_now()
        entry = Entry(uuid=new_uuid(), parent=group.uuid, created=now, modified=now, location_changed=now)
        for name, value in fields.items():
            if value is not None:
                entry._assign(name, value)
        group.entries.append(entry)
        self.touch()
        return entry

    def move_entry(self, entry: Entry, target: Group) -> None:
        source = self._owner(entry.parent)
        source.entries.remove(entry)
        target.entries.append(entry)
        entry.parent = target.uuid
        entry.location_changed = utc_now(after=entry.location_changed)
        self.touch()

    def move_group(self, group: Group, target: Group) -> None:
        if group is self.root:
            raise InvalidParameters("The root group cannot be moved")
        if any(g is target for g in group.walk()):
            raise InvalidParameters("A group cannot be moved into its own subtree")
        source = self._owner(group.parent)
        source.groups.remove(group)
        target.groups.append(group)
        group.parent = target.uuid
        group.location_changed = utc_now(after=group.location_changed)
        self.touch()

    def delete_entry(self, entry: Entry) -> None:
        self._owner(entry.parent).entries.remove(entry)
        self.deleted[entry.uuid] = utc_now()
        entry.wipe()
        self.touch()

    def delete_group(self, group: Group) -> None:
        if group is self.root:
            raise InvalidParameters("The root group cannot be deleted")
        self._owner(group.parent).groups.remove(group)
        now = utc_now()
        for g in group.walk():
            self.deleted[g.uuid] = now
            for entry in g.entries:
                self.deleted[entry.uuid] = now
                entry.wipe()
        self.touch()

    def wipe(self) -> None:
        for entry in self.iter_entries():
            entry.wipe()
