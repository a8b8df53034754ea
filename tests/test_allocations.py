import pytest

from allocations import Allocation, AllocationSet
from errors import AllocationError, ValidationError


def test_empty_set_is_valid_for_obligations():
    AllocationSet([]).validate(150_000)
    assert AllocationSet([]).total() == 0


def test_exact_sum_is_accepted():
    allocations = AllocationSet.from_pairs([(1, 100_000), (2, 50_000)])
    allocations.validate(150_000)
    assert allocations.total() == 150_000


@pytest.mark.parametrize("total", [149_999, 150_001])
def test_off_by_one_cent_is_rejected(total):
    allocations = AllocationSet.from_pairs([(1, 100_000), (2, 50_000)])
    with pytest.raises(AllocationError):
        allocations.validate(total)


def test_duplicate_category_is_rejected():
    allocations = AllocationSet.from_pairs([(1, 500), (1, 500)])
    with pytest.raises(AllocationError, match="more than once"):
        allocations.validate(1_000)


@pytest.mark.parametrize("amount", [0, -100])
def test_non_positive_amount_is_rejected(amount):
    allocations = AllocationSet.from_pairs([(1, 1_000 - amount), (2, amount)])
    with pytest.raises(AllocationError, match="greater than zero"):
        allocations.validate(1_000)


def test_fractional_amount_is_rejected():
    allocations = AllocationSet([Allocation(1, 999.5), Allocation(2, 0.5)])
    with pytest.raises(AllocationError):
        allocations.validate(1_000)


def test_required_set_rejects_empty():
    with pytest.raises(AllocationError, match="At least one"):
        AllocationSet([], required=True).validate(1_000)


def test_allocation_errors_are_validation_errors():
    assert issubclass(AllocationError, ValidationError)
    assert issubclass(AllocationError, ValueError)


def test_signature_ignores_order():
    first = AllocationSet.from_pairs([(1, 300), (2, 700)])
    second = AllocationSet.from_pairs([(2, 700), (1, 300)])
    assert first.signature() == second.signature()
