import itertools

import pytest

from rules.infrastructure import (
    GRID_SIZE,
    MODULE_CATALOG,
    GridSlot,
    InfrastructureGrid,
    InsufficientFundsError,
    InvalidSlotError,
    SlotEmptyError,
    SlotOccupiedError,
    UnknownModuleError,
)
from rules.stats import BASELINE_STATS, StatsDelta


def _stats(funds: int):
    return BASELINE_STATS.model_copy(update={"funds": funds})


def test_purchase_rejected_when_funds_too_low() -> None:
    grid = InfrastructureGrid.empty()
    stats = _stats(1000)
    with pytest.raises(InsufficientFundsError):
        grid.purchase(0, "miner", stats)
    assert stats.funds == 1000
    assert grid.occupancy_count() == 0


def test_purchase_deducts_exact_cost() -> None:
    grid = InfrastructureGrid.empty()
    slot, stats = grid.purchase(0, "miner", _stats(10000))
    assert stats.funds == 8500
    assert slot.module is not None
    assert slot.module.type == "miner"
    assert slot.module.name == "ASIC Miner X1"
    assert grid.slot(0).module == slot.module


def test_purchase_does_not_apply_one_time_stats_effect() -> None:
    grid = InfrastructureGrid.empty()
    before = _stats(10000)
    _, after = grid.purchase(3, "firewall", before)
    assert after.security == before.security
    assert after.funds == before.funds - MODULE_CATALOG["firewall"].cost


def test_purchase_into_occupied_slot_fails_without_charge() -> None:
    grid = InfrastructureGrid.empty()
    _, stats = grid.purchase(1, "validator", _stats(10000))
    with pytest.raises(SlotOccupiedError):
        grid.purchase(1, "rpc", stats)
    assert grid.slot(1).module.type == "validator"


@pytest.mark.parametrize("slot_id", [-1, GRID_SIZE, 99])
def test_purchase_rejects_invalid_slot(slot_id: int) -> None:
    grid = InfrastructureGrid.empty()
    with pytest.raises(InvalidSlotError):
        grid.purchase(slot_id, "miner", _stats(10000))


def test_purchase_rejects_unknown_module() -> None:
    grid = InfrastructureGrid.empty()
    with pytest.raises(UnknownModuleError):
        grid.purchase(0, "quantum_computer", _stats(10000))


def test_module_ids_are_unique() -> None:
    grid = InfrastructureGrid.empty()
    stats = _stats(100000)
    for slot_id in range(4):
        _, stats = grid.purchase(slot_id, "miner", stats)
    ids = {module.id for module in grid.installed_modules()}
    assert len(ids) == 4


def test_remove_frees_slot_without_refund() -> None:
    grid = InfrastructureGrid.empty()
    _, stats = grid.purchase(5, "rpc", _stats(10000))
    removed = grid.remove(5)
    assert removed.type == "rpc"
    assert grid.slot(5).module is None
    assert stats.funds == 7000
    with pytest.raises(SlotEmptyError):
        grid.remove(5)
    with pytest.raises(InvalidSlotError):
        grid.remove(12)


def test_occupancy_tracks_purchase_and_remove_sequences() -> None:
    grid = InfrastructureGrid.empty()
    stats = _stats(10**7)
    operations = [("buy", 0), ("buy", 1), ("buy", 0), ("remove", 1), ("remove", 1)]
    operations += [("buy", index) for index in range(GRID_SIZE)]
    for action, slot_id in operations:
        try:
            if action == "buy":
                _, stats = grid.purchase(slot_id, "validator", stats)
            else:
                grid.remove(slot_id)
        except (SlotOccupiedError, SlotEmptyError):
            pass
        occupied = sum(1 for slot in grid if slot.module is not None)
        assert grid.occupancy_count() == occupied
        assert grid.occupancy_count() <= GRID_SIZE
    assert grid.occupancy_count() == GRID_SIZE


def test_passive_effects_are_order_independent() -> None:
    expected = StatsDelta(funds=300, security=1)
    for order in itertools.permutations(["miner", "miner", "validator"]):
        grid = InfrastructureGrid.empty()
        stats = _stats(10**6)
        for slot_id, module_type in zip((7, 2, 11), order):
            _, stats = grid.purchase(slot_id, module_type, stats)
        assert grid.passive_effects_for_turn() == expected


def test_firewall_and_rpc_passive_effects() -> None:
    grid = InfrastructureGrid.empty()
    stats = _stats(10**6)
    _, stats = grid.purchase(0, "firewall", stats)
    assert grid.passive_effects_for_turn().is_empty()
    grid.purchase(1, "rpc", stats)
    assert grid.passive_effects_for_turn() == StatsDelta(hype=1)
    assert grid.maintenance_total() == 500


def test_grid_pads_short_slot_lists() -> None:
    grid = InfrastructureGrid.model_validate([{"id": 4, "module": None}])
    assert len(grid) == GRID_SIZE
    assert [slot.id for slot in grid] == list(range(GRID_SIZE))
    assert InfrastructureGrid.model_validate(None) == InfrastructureGrid.empty()


def test_grid_rejects_too_many_slots() -> None:
    with pytest.raises(ValueError):
        InfrastructureGrid([GridSlot(id=index % GRID_SIZE) for index in range(13)])


def test_grid_dump_uses_persisted_layout() -> None:
    grid = InfrastructureGrid.empty()
    grid.purchase(0, "miner", _stats(10000))
    payload = grid.model_dump(mode="json", by_alias=True)
    assert len(payload) == GRID_SIZE
    assert payload[0]["module"]["statsEffect"] == {"funds": 500, "decentralization": -2}
    assert payload[1] == {"id": 1, "module": None}
