"""
# Storage Models

Pydantic models shared by the storage bootstrap:

- **Catalog primitives**: `IndexSpec`, `PrunePolicy`, `SeedPolicy`, `CollectionDescriptor`.
  Declared once at import time and consumed by the generic provisioning routine.
- **Change feed**: `ChangeEvent`, decoded once from the raw change-stream document.
- **Seeded documents**: `County`, `Symptoms`, `CRules`, `SymptomGroup`, mapped to the
  MongoDB field names used by the rest of the application.
- **Reports**: results of provisioning, seeding and pruning, collected per collection
  during startup.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

if TYPE_CHECKING:
    from health_storage.database.seeding import SeedContext

ASCENDING = 1
DESCENDING = -1

Document = Dict[str, Any]


class IndexSpec(BaseModel):
    """
    One index a collection must carry.

    Attributes:
        keys: Ordered `(field_path, direction)` pairs; direction is `1` or `-1`.
        unique: Whether the index enforces uniqueness.
        name: Index name. Derived from the keys when omitted.
    """

    model_config = ConfigDict(frozen=True)

    keys: Tuple[Tuple[str, int], ...]
    unique: bool = False
    name: Optional[str] = None

    @field_validator("keys")
    @classmethod
    def validate_keys(cls, v: Tuple[Tuple[str, int], ...]) -> Tuple[Tuple[str, int], ...]:
        if not v:
            raise ValueError("an index needs at least one key")
        for field, direction in v:
            if not field:
                raise ValueError("index field path must not be empty")
            if direction not in (ASCENDING, DESCENDING):
                raise ValueError(f"unsupported index direction {direction!r} for {field}")
        return v

    @classmethod
    def on(cls, field: str, direction: int = ASCENDING, unique: bool = False, name: Optional[str] = None) -> "IndexSpec":
        """Single-field index shortcut."""
        return cls(keys=((field, direction),), unique=unique, name=name)

    @property
    def index_name(self) -> str:
        if self.name:
            return self.name
        return "_".join(f"{field}_{direction}" for field, direction in self.keys)

    @property
    def key_list(self) -> List[Tuple[str, int]]:
        return list(self.keys)


class PrunePolicy(BaseModel):
    """Documents matching `terminal_filter` are deleted on every startup."""

    model_config = ConfigDict(frozen=True)

    terminal_filter: Dict[str, Any]
    description: str = ""


class SeedPolicy(ABC):
    """
    Initial content a collection must hold.

    The runner queries the collection with `lookup_filter()`; only when nothing
    matches does it call `generate()` and insert the result.
    """

    #: Human readable key identifying the seeded content, e.g. `symptoms:2.6`.
    key: str = ""
    #: Collections that must be provisioned before this policy runs.
    depends_on: Tuple[str, ...] = ()

    @abstractmethod
    async def lookup_filter(self, context: "SeedContext") -> Document:
        """Filter matching already-seeded content. May resolve lookups through `context`."""

    @abstractmethod
    async def generate(self, context: "SeedContext") -> Union[Document, List[Document]]:
        """Build the document or documents to insert."""


class CollectionDescriptor(BaseModel):
    """
    Declarative description of one logical collection.

    Attributes:
        name: MongoDB collection name.
        indexes: Indexes applied in order.
        prune_policies: Unconditional cleanups applied after the indexes.
        seed_policies: Seed-if-absent content applied after pruning.
        depends_on: Collections that must be declared earlier.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    name: str
    indexes: List[IndexSpec] = Field(default_factory=list)
    prune_policies: List[PrunePolicy] = Field(default_factory=list)
    seed_policies: List[SeedPolicy] = Field(default_factory=list)
    depends_on: List[str] = Field(default_factory=list)

    @property
    def dependencies(self) -> List[str]:
        deps = list(self.depends_on)
        for policy in self.seed_policies:
            for dep in policy.depends_on:
                if dep not in deps:
                    deps.append(dep)
        return deps


class ChangeNamespace(BaseModel):
    model_config = ConfigDict(extra="ignore")

    db: Optional[str] = None
    coll: Optional[str] = None


class ChangeEvent(BaseModel):
    """
    A change-stream event. Only the source collection name is acted upon;
    the rest of the payload is kept opaque.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore", arbitrary_types_allowed=True)

    operation_type: Optional[str] = Field(default=None, alias="operationType")
    namespace: ChangeNamespace = Field(alias="ns")
    document_key: Optional[Dict[str, Any]] = Field(default=None, alias="documentKey")

    @property
    def collection(self) -> str:
        return self.namespace.coll or ""

    @classmethod
    def from_raw(cls, raw: Optional[Mapping[str, Any]]) -> Optional["ChangeEvent"]:
        """
        Decode a raw change document. Returns `None` when the namespace or
        collection name is absent or malformed; such events are dropped.
        """
        if not raw or not isinstance(raw, Mapping):
            return None
        ns = raw.get("ns")
        if not isinstance(ns, Mapping) or not ns.get("coll"):
            return None
        try:
            return cls.model_validate(dict(raw))
        except ValidationError:
            return None


class MongoDocument(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", arbitrary_types_allowed=True)

    def to_document(self) -> Document:
        return self.model_dump(by_alias=True, exclude_none=True)


class County(MongoDocument):
    id: Any = Field(alias="_id")
    name: str
    state_province: Optional[str] = None
    country: Optional[str] = None


class Symptoms(MongoDocument):
    """Versioned symptom content. `items` is the opaque asset text."""

    app_version: str
    items: str


class CRules(MongoDocument):
    """Versioned symptom rules for one county. `data` is the opaque asset text."""

    app_version: str
    county_id: Any
    data: str


class SymptomGroup(MongoDocument):
    id: str = Field(alias="_id")
    name: str
    symptoms: List[Dict[str, Any]] = Field(default_factory=list)


class SeedOutcome(str, Enum):
    INSERTED = "inserted"
    ALREADY_PRESENT = "already_present"
    INSERTED_BY_ANOTHER_WRITER = "inserted_by_another_writer"


class ProvisionReport(BaseModel):
    collection: str
    created: List[str] = Field(default_factory=list)
    existing: List[str] = Field(default_factory=list)


class IndexVerificationReport(BaseModel):
    collection: str
    verified: List[str] = Field(default_factory=list)
    missing: List[str] = Field(default_factory=list)
    conflicting: List[str] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.missing and not self.conflicting


class CollectionStartupReport(BaseModel):
    collection: str
    provision: Optional[ProvisionReport] = None
    pruned: int = 0
    seeds: Dict[str, SeedOutcome] = Field(default_factory=dict)
    duration: float = 0.0


class StartupReport(BaseModel):
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    collections: List[CollectionStartupReport] = Field(default_factory=list)
    duration: float = 0.0
