from hybrid_qa.search.budget import SearchBudget


class FakeClock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms / 1000.0


def test_remaining_decreases_with_clock() -> None:
    clock = FakeClock()
    budget = SearchBudget.create(8000, clock=clock)

    assert budget.remaining_ms() == 8000
    clock.advance(1250)
    assert budget.elapsed_ms() == 1250
    assert budget.remaining_ms() == 6750


def test_remaining_never_negative() -> None:
    clock = FakeClock()
    budget = SearchBudget.create(100, clock=clock)

    clock.advance(5000)

    assert budget.remaining_ms() == 0
    assert not budget.allows(1)
    assert budget.allows(0)


def test_allows_checks_remaining_budget() -> None:
    clock = FakeClock()
    budget = SearchBudget.create(3000, clock=clock)

    assert budget.allows(2500)
    clock.advance(600)
    assert not budget.allows(2500)


def test_negative_total_is_clamped() -> None:
    assert SearchBudget.create(-50, clock=FakeClock()).remaining_ms() == 0
