from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Iterator, Literal, get_args

from pydantic import BaseModel, ConfigDict, RootModel, field_validator
from pydantic.alias_generators import to_camel

from rules.stats import StatsDelta, StatVector, combine_deltas

GRID_SIZE = 12

ModuleType = Literal["miner", "validator", "rpc", "firewall"]
MODULE_TYPES: tuple[str, ...] = get_args(ModuleType)


class InfrastructureError(ValueError):
    pass


class InvalidSlotError(InfrastructureError):
    pass


class SlotOccupiedError(InfrastructureError):
    pass


class SlotEmptyError(InfrastructureError):
    pass


class InsufficientFundsError(InfrastructureError):
    pass


class UnknownModuleError(InfrastructureError):
    pass


class InfrastructureModule(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="ignore",
    )

    id: str
    type: ModuleType
    name: str
    cost: int
    maintenance: int
    description: str
    stats_effect: dict[str, int]


@dataclass(frozen=True)
class ModuleDefinition:
    type: str
    name: str
    cost: int
    maintenance: int
    description: str
    stats_effect: dict[str, int] = field(default_factory=dict)

    def build(self) -> InfrastructureModule:
        return InfrastructureModule(
            id=f"{self.type}-{uuid.uuid4().hex[:12]}",
            type=self.type,
            name=self.name,
            cost=self.cost,
            maintenance=self.maintenance,
            description=self.description,
            stats_effect=dict(self.stats_effect),
        )


# statsEffect keys follow the persisted stat names.
MODULE_CATALOG: dict[str, ModuleDefinition] = {
    "miner": ModuleDefinition(
        type="miner",
        name="ASIC Miner X1",
        cost=1500,
        maintenance=100,
        description="Generates funds via PoW.",
        stats_effect={"funds": 500, "decentralization": -2},
    ),
    "validator": ModuleDefinition(
        type="validator",
        name="Validator Node",
        cost=2000,
        maintenance=50,
        description="Secures transactions.",
        stats_effect={"security": 5, "decentralization": 2},
    ),
    "rpc": ModuleDefinition(
        type="rpc",
        name="RPC Cluster",
        cost=3000,
        maintenance=200,
        description="Boosts network speed.",
        stats_effect={"hype": 4, "techLevel": 2},
    ),
    "firewall": ModuleDefinition(
        type="firewall",
        name="Quantum Firewall",
        cost=5000,
        maintenance=300,
        description="Hardened security layer.",
        stats_effect={"security": 10},
    ),
}

# Firewalls have no stat contribution; the oracle sees them in the hardware summary.
PASSIVE_EFFECTS: dict[str, StatsDelta] = {
    "miner": StatsDelta(funds=150),
    "validator": StatsDelta(security=1),
    "rpc": StatsDelta(hype=1),
    "firewall": StatsDelta(),
}


def module_definition(module_type: str) -> ModuleDefinition:
    key = (module_type or "").strip().lower()
    definition = MODULE_CATALOG.get(key)
    if definition is None:
        raise UnknownModuleError(f"Unknown module type: {module_type}")
    return definition


class GridSlot(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    id: int
    module: InfrastructureModule | None = None


def _empty_slots() -> list[GridSlot]:
    return [GridSlot(id=index) for index in range(GRID_SIZE)]


class InfrastructureGrid(RootModel[list[GridSlot]]):
    @field_validator("root", mode="before")
    @classmethod
    def _default_when_missing(cls, value):
        if value is None:
            return _empty_slots()
        return value

    @field_validator("root")
    @classmethod
    def _normalize_slots(cls, slots: list[GridSlot]) -> list[GridSlot]:
        if len(slots) > GRID_SIZE:
            raise ValueError(f"Grid holds at most {GRID_SIZE} slots.")
        normalized: list[GridSlot | None] = [None] * GRID_SIZE
        for slot in slots:
            if not 0 <= slot.id < GRID_SIZE:
                raise ValueError(f"Slot id out of range: {slot.id}")
            if normalized[slot.id] is not None:
                raise ValueError(f"Duplicate slot id: {slot.id}")
            normalized[slot.id] = slot
        return [
            slot if slot is not None else GridSlot(id=index)
            for index, slot in enumerate(normalized)
        ]

    @classmethod
    def empty(cls) -> InfrastructureGrid:
        return cls(_empty_slots())

    def __iter__(self) -> Iterator[GridSlot]:
        return iter(self.root)

    def __len__(self) -> int:
        return len(self.root)

    def slot(self, slot_id: int) -> GridSlot:
        if isinstance(slot_id, bool) or not isinstance(slot_id, int):
            raise InvalidSlotError(f"Invalid slot id: {slot_id!r}")
        if not 0 <= slot_id < GRID_SIZE:
            raise InvalidSlotError(f"Slot id must be between 0 and {GRID_SIZE - 1}.")
        return self.root[slot_id]

    def purchase(
        self,
        slot_id: int,
        module_type: str,
        stats: StatVector,
    ) -> tuple[GridSlot, StatVector]:
        slot = self.slot(slot_id)
        definition = module_definition(module_type)
        if slot.module is not None:
            raise SlotOccupiedError(f"Slot {slot_id} is already occupied.")
        if stats.funds < definition.cost:
            raise InsufficientFundsError(
                f"{definition.name} costs {definition.cost}, only {stats.funds} available."
            )
        installed = GridSlot(id=slot_id, module=definition.build())
        self.root[slot_id] = installed
        return installed, stats.model_copy(update={"funds": stats.funds - definition.cost})

    def remove(self, slot_id: int) -> InfrastructureModule:
        slot = self.slot(slot_id)
        if slot.module is None:
            raise SlotEmptyError(f"Slot {slot_id} is empty.")
        self.root[slot_id] = GridSlot(id=slot_id)
        return slot.module

    def installed_modules(self) -> list[InfrastructureModule]:
        return [slot.module for slot in self.root if slot.module is not None]

    def occupancy_count(self) -> int:
        return len(self.installed_modules())

    def maintenance_total(self) -> int:
        return sum(module.maintenance for module in self.installed_modules())

    def passive_effects_for_turn(self) -> StatsDelta:
        return combine_deltas(
            *(PASSIVE_EFFECTS.get(module.type) for module in self.installed_modules())
        )
