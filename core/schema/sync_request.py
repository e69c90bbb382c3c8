"""ExternalSecret (sync request) data model."""

import copy
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional, Union

from core.config.exceptions import ConfigValidationError
from core.schema.duration import parse_duration
from core.schema.store import SECRET_STORE_KIND, STORE_KINDS

EXTERNAL_SECRET_KIND = "ExternalSecret"
API_VERSION = "secret-manager.itscontained.io/v1alpha1"

CONDITION_READY = "Ready"

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def format_time(value: datetime) -> str:
    """RFC 3339 timestamp in UTC with second precision."""
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def parse_time(value: Union[str, datetime, None]) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    text = value.replace("Z", "+00:00")
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError as e:
        raise ConfigValidationError(f"Invalid timestamp {value!r}: {e}") from e
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(frozen=True)
class RemoteRef:
    """Pointer to one secret value or JSON object inside a backend."""

    path: str
    property: Optional[str] = None
    version: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> "RemoteRef":
        path = data.get("path") or data.get("name")
        if not path:
            raise ConfigValidationError(f"remoteRef requires a path or name: {data}")
        return cls(path=path, property=data.get("property"), version=data.get("version"))


@dataclass(frozen=True)
class DataEntry:
    """One single-key reference: ``remote_ref`` lands under ``secret_key``."""

    secret_key: str
    remote_ref: RemoteRef


@dataclass(frozen=True)
class StoreRef:
    name: str
    kind: str = SECRET_STORE_KIND


@dataclass
class Condition:
    type: str
    status: str
    reason: str = ""
    message: str = ""
    last_transition_time: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "status": self.status,
            "reason": self.reason,
            "message": self.message,
            "lastTransitionTime": self.last_transition_time,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Condition":
        return cls(
            type=data.get("type", ""),
            status=data.get("status", "Unknown"),
            reason=data.get("reason", ""),
            message=data.get("message", ""),
            last_transition_time=data.get("lastTransitionTime"),
        )


@dataclass
class SyncStatus:
    conditions: list = field(default_factory=list)
    next_sync: Optional[datetime] = None

    def get_condition(self, condition_type: str) -> Optional[Condition]:
        for condition in self.conditions:
            if condition.type == condition_type:
                return condition
        return None

    def set_condition(self, condition: Condition) -> None:
        """Replace the condition of the same type.

        The transition time only moves when the status value changes.
        """
        existing = self.get_condition(condition.type)
        if existing is None:
            self.conditions.append(condition)
            return
        if existing.status == condition.status and existing.last_transition_time:
            condition.last_transition_time = existing.last_transition_time
        self.conditions[self.conditions.index(existing)] = condition

    def to_dict(self) -> dict:
        out = {"conditions": [c.to_dict() for c in self.conditions]}
        if self.next_sync is not None:
            out["nextSync"] = format_time(self.next_sync)
        return out

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "SyncStatus":
        data = data or {}
        return cls(
            conditions=[Condition.from_dict(c) for c in data.get("conditions") or []],
            next_sync=parse_time(data.get("nextSync")),
        )


@dataclass
class SyncRequest:
    """A parsed ExternalSecret."""

    namespace: str
    name: str
    store_ref: StoreRef
    refresh_interval: Optional[timedelta] = None
    data: list = field(default_factory=list)
    data_from: list = field(default_factory=list)
    template: Union[dict, str, None] = None
    labels: dict = field(default_factory=dict)
    annotations: dict = field(default_factory=dict)
    uid: Optional[str] = None
    status: SyncStatus = field(default_factory=SyncStatus)

    @property
    def identity(self) -> str:
        return f"{self.namespace}/{self.name}"

    @classmethod
    def from_manifest(cls, manifest: dict) -> "SyncRequest":
        """
        Build a SyncRequest from an ExternalSecret manifest.

        ``renewAfter`` is honoured as a fallback when ``refreshInterval``
        is not set.

        Raises:
            ConfigValidationError: If required fields are missing or malformed
        """
        metadata = manifest.get("metadata") or {}
        spec = manifest.get("spec") or {}
        name = metadata.get("name")
        if not name:
            raise ConfigValidationError("ExternalSecret has no metadata.name")

        store_ref = spec.get("storeRef") or {}
        if not store_ref.get("name"):
            raise ConfigValidationError(f"ExternalSecret {name!r} has no storeRef.name")
        store_kind = store_ref.get("kind") or SECRET_STORE_KIND
        if store_kind not in STORE_KINDS:
            raise ConfigValidationError(
                f"ExternalSecret {name!r}: unknown store kind {store_kind!r}"
            )

        interval = spec.get("refreshInterval")
        if interval is None:
            interval = spec.get("renewAfter")

        data = []
        for entry in spec.get("data") or []:
            if not entry.get("secretKey"):
                raise ConfigValidationError(
                    f"ExternalSecret {name!r}: data entry without secretKey"
                )
            data.append(
                DataEntry(
                    secret_key=entry["secretKey"],
                    remote_ref=RemoteRef.from_dict(entry.get("remoteRef") or {}),
                )
            )

        return cls(
            namespace=metadata.get("namespace") or "default",
            name=name,
            store_ref=StoreRef(name=store_ref["name"], kind=store_kind),
            refresh_interval=parse_duration(interval),
            data=data,
            data_from=[RemoteRef.from_dict(ref) for ref in spec.get("dataFrom") or []],
            template=copy.deepcopy(spec.get("template")),
            labels=dict(metadata.get("labels") or {}),
            annotations=dict(metadata.get("annotations") or {}),
            uid=metadata.get("uid"),
            status=SyncStatus.from_dict(manifest.get("status")),
        )
