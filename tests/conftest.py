import pytest

from aawallet.blockchain.core.events import EventBus
from aawallet.blockchain.core.host import ExecutionHost
from aawallet.blockchain.core.state import WorldState
from aawallet.blockchain.contracts import SimpleAccount, EntryPoint
from aawallet.protocol.config.params import NETWORKS
from aawallet.protocol.crypto.keys import address_from_private

# Well-known test keys
OWNER_KEY = bytes.fromhex("4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318")
OTHER_KEY = (1).to_bytes(32, "big")

OWNER = address_from_private(OWNER_KEY)
OTHER = address_from_private(OTHER_KEY)
COORDINATOR = "0x" + "c0" * 20
DEPLOYER = "0x" + "de" * 20
BUNDLER = "0x" + "b0" * 20
STRANGER = "0x" + "55" * 20

ETHER = 10**18


@pytest.fixture
def state():
    state = WorldState.empty()
    yield state
    state.db.close()


@pytest.fixture
def host(state):
    """Devnet host with its own event bus."""
    return ExecutionHost(state, NETWORKS["devnet"], bus=EventBus())


def fund(host, address, amount):
    host.state.add_balance(address, amount)
    host.state.persist()


@pytest.fixture
def account(host):
    """SimpleAccount owned by OWNER, bound to the externally-owned COORDINATOR, holding 10 ether."""
    acc = host.deploy(DEPLOYER, SimpleAccount, COORDINATOR, OWNER)
    fund(host, acc.address, 10 * ETHER)
    return acc


@pytest.fixture
def entry_point(host):
    return host.deploy(DEPLOYER, EntryPoint, address=host.config.entry_point_address)


@pytest.fixture
def ep_account(host, entry_point):
    """SimpleAccount owned by OWNER, bound to the deployed EntryPoint, holding 1 ether."""
    acc = host.deploy(DEPLOYER, SimpleAccount, entry_point.address, OWNER)
    fund(host, acc.address, ETHER)
    return acc
