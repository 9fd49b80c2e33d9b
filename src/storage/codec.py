"""Vault tree <-> plaintext payload.

The payload is compact UTF-8 JSON. Keys this version does not understand are
carried in each object's ``extra`` dict and written back verbatim, so a vault
touched by a newer writer loses nothing when saved by this one.
"""
import base64
import json

from typing import Any, Dict

from crypto.protected import ProtectedValue
from utils.dataModels import Entry, Group, KdfParams, Vault
from utils.errors import InvalidParameters
from utils.helper import from_iso, to_iso

FORMAT_VERSION = 1

_VAULT_KEYS = {"format", "name", "modified", "root", "deleted", "edit_state"}
_GROUP_KEYS = {"uuid", "name", "created", "modified", "location_changed", "groups", "entries"}
_ENTRY_KEYS = {"uuid", "created", "modified", "location_changed", "fields"}
_FIELD_KEYS = {"value", "protected"}


def _times(obj: Group | Entry) -> Dict[str, str]:
    return {
        "created": to_iso(obj.created),
        "modified": to_iso(obj.modified),
        "location_changed": to_iso(obj.location_changed),
    }


def _encode_field(value: str | ProtectedValue, extra: Dict[str, Any]) -> Dict[str, Any]:
    d: Dict[str, Any] = dict(extra)
    if isinstance(value, ProtectedValue):
        d.update(value=value.reveal(), protected=True)
    else:
        d["value"] = value
    return d


def encode_entry(entry: Entry) -> Dict[str, Any]:
    d: Dict[str, Any] = dict(entry.extra)
    d.update(uuid=entry.uuid, **_times(entry))
    d["fields"] = {
        name: _encode_field(value, entry.field_extra.get(name, {})) for name, value in entry.fields.items()
    }
    return d


def encode_group(group: Group) -> Dict[str, Any]:
    d: Dict[str, Any] = dict(group.extra)
    d.update(uuid=group.uuid, name=group.name, **_times(group))
    d["groups"] = [encode_group(g) for g in group.groups]
    d["entries"] = [encode_entry(e) for e in group.entries]
    return d


def encode_vault(vault: Vault) -> bytes:
    d: Dict[str, Any] = dict(vault.extra)
    d.update(
        format=FORMAT_VERSION,
        name=vault.name,
        modified=to_iso(vault.modified),
        root=encode_group(vault.root),
        deleted={uid: to_iso(ts) for uid, ts in sorted(vault.deleted.items())},
        edit_state=base64.b64encode(vault.edit_state).decode() if vault.edit_state is not None else None,
    )
    return json.dumps(d, ensure_ascii=False, separators=(",", ":")).encode("utf-8")


def _extra(obj: Dict[str, Any], known: set) -> Dict[str, Any]:
    return {k: v for k, v in obj.items() if k not in known}


def decode_entry(obj: Dict[str, Any], parent: str) -> Entry:
    fields: Dict[str, str | ProtectedValue] = {}
    field_extra: Dict[str, Dict[str, Any]] = {}
    for name, raw in obj.get("fields", {}).items():
        value = raw["value"]
        fields[name] = ProtectedValue.from_string(value) if raw.get("protected") else value
        if raw.keys() - _FIELD_KEYS:
            field_extra[name] = _extra(raw, _FIELD_KEYS)
    return Entry(
        uuid=obj["uuid"],
        parent=parent,
        fields=fields,
        created=from_iso(obj["created"]),
        modified=from_iso(obj["modified"]),
        location_changed=from_iso(obj["location_changed"]),
        extra=_extra(obj, _ENTRY_KEYS),
        field_extra=field_extra,
    )


def decode_group(obj: Dict[str, Any], parent: str | None) -> Group:
    gid = obj["uuid"]
    return Group(
        uuid=gid,
        name=obj["name"],
        parent=parent,
        groups=[decode_group(g, gid) for g in obj.get("groups", [])],
        entries=[decode_entry(e, gid) for e in obj.get("entries", [])],
        created=from_iso(obj["created"]),
        modified=from_iso(obj["modified"]),
        location_changed=from_iso(obj["location_changed"]),
        extra=_extra(obj, _GROUP_KEYS),
    )


def decode_vault(payload: bytes, kdf: KdfParams) -> Vault:
    try:
        obj = json.loads(payload.decode("utf-8"))
        if obj.get("format", 1) > FORMAT_VERSION:
            raise InvalidParameters(f"Unsupported vault format {obj['format']}")
        edit_state = obj.get("edit_state")
        return Vault(
            name=obj["name"],
            kdf=kdf,
            root=decode_group(obj["root"], None),
            modified=from_iso(obj["modified"]),
            deleted={uid: from_iso(ts) for uid, ts in obj.get("deleted", {}).items()},
            edit_state=base64.b64decode(edit_state) if edit_state is not None else None,
            extra=_extra(obj, _VAULT_KEYS),
        )
    except (ValueError, KeyError, TypeError, AttributeError) as e:
        raise InvalidParameters(f"Malformed vault payload: {e.__class__.__name__}") from e
