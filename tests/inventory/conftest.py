import pytest
from protean.integrations.pytest import DomainFixture


@pytest.fixture(scope="session")
def inventory_bed():
    from inventory.domain import inventory

    bed = DomainFixture(inventory)
    bed.setup()
    yield bed
    bed.teardown()


@pytest.fixture(autouse=True)
def _ctx(inventory_bed):
    with inventory_bed.domain_context():
        yield


@pytest.fixture(autouse=True)
def _fresh_cache_and_limiters():
    """Cache and rate limiters are process-wide singletons; start every test empty."""
    from inventory.utils.cache import reset_cache
    from inventory.utils.rate_limit import reset_rate_limiters

    reset_cache()
    reset_rate_limiters()
    yield
    reset_cache()
    reset_rate_limiters()


@pytest.fixture()
def stock_token(monkeypatch):
    monkeypatch.setenv("STOCK_MODIFICATION_TOKEN", "stock-secret")
    return "stock-secret"
