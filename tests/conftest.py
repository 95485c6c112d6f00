import pytest

from pydkgbeacon import db, util
from pydkgbeacon.committee import Committee


def pytest_addoption(parser):
    parser.addoption("--num-nodes", action="store", default=5, type=int,
        help="number of dkg nodes %(default)s")
    parser.addoption("--threshold", action="store", default=3, type=int,
        help="dkg threshold %(default)s")


@pytest.fixture
def num_nodes(request):
    return request.config.getoption("--num-nodes")


@pytest.fixture
def threshold(request):
    return request.config.getoption("--threshold")


@pytest.fixture
def database():
    db.init()
    yield
    db.Session.remove()


@pytest.fixture
def private_keys(num_nodes):
    return tuple(util.random_private_value() for _ in range(num_nodes))


@pytest.fixture
def committee(private_keys, threshold):
    return Committee.from_private_keys(private_keys, threshold)
