"""
Tests for Transaction Lifecycle Tracking

Tests:
- EventBus pub/sub mechanism
- TxReceipt storage, persistence and lookup
- Host receipts and events for committed and reverted transactions
- Gas metering and Prometheus metrics integration
"""
import pytest

from aawallet.blockchain.core.events import EventBus, TX_CONFIRMED, TX_FAILED, LOG
from aawallet.blockchain.core.host import ExecutionHost
from aawallet.blockchain.core.tx_receipt import TxReceipt, TxReceiptStore, STATUS_SUCCESS, STATUS_REVERTED
from aawallet.blockchain.core.state import WorldState
from aawallet.blockchain.storage.db import StorageDB
from aawallet.blockchain.observability.metrics import metrics_registry
from aawallet.protocol.abi import encode_call
from aawallet.protocol.config.params import NETWORKS, GAS_COSTS
from aawallet.protocol.types.common import ContractRevert, ExecutionError, OutOfGas, ValidationError

from tests.conftest import OWNER, OTHER, DEPLOYER, ETHER, fund
from tests.mock_contracts import MockToken, Reverter


# ═══════════════════════════════════════════════════════════════════
# FIXTURES
# ═══════════════════════════════════════════════════════════════════

@pytest.fixture
def clean_event_bus():
    """Provide a clean EventBus for each test."""
    bus = EventBus()
    yield bus
    bus.clear()


@pytest.fixture
def clean_receipt_store():
    """Provide a clean TxReceiptStore backed by an in-memory DB."""
    db = StorageDB(":memory:")
    store = TxReceiptStore(db)
    yield store
    store.clear()
    db.close()


@pytest.fixture
def tracked_host(clean_event_bus):
    state = WorldState.empty()
    host = ExecutionHost(state, NETWORKS["devnet"], bus=clean_event_bus)
    yield host
    state.db.close()


# ═══════════════════════════════════════════════════════════════════
# EVENTBUS TESTS
# ═══════════════════════════════════════════════════════════════════

def test_eventbus_subscribe_and_emit(clean_event_bus):
    """Test basic subscribe and emit functionality."""
    bus = clean_event_bus
    callback_data = []

    def callback(**data):
        callback_data.append(data)

    bus.subscribe('test_event', callback)
    bus.emit('test_event', value=42, name='test')

    assert callback_data == [{'value': 42, 'name': 'test'}]


def test_eventbus_unsubscribe(clean_event_bus):
    """Test unsubscribe functionality."""
    bus = clean_event_bus
    called = []

    def callback(**data):
        called.append(True)

    bus.subscribe('test_event', callback)
    bus.emit('test_event')
    bus.unsubscribe('test_event', callback)
    bus.emit('test_event')

    assert len(called) == 1


def test_eventbus_error_handling(clean_event_bus):
    """Test that errors in callbacks don't break event emission."""
    bus = clean_event_bus
    good_callback_called = []

    def bad_callback(**data):
        raise ValueError("Test error")

    def good_callback(**data):
        good_callback_called.append(True)

    bus.subscribe('test_event', bad_callback)
    bus.subscribe('test_event', good_callback)

    bus.emit('test_event')
    assert len(good_callback_called) == 1


# ═══════════════════════════════════════════════════════════════════
# TX RECEIPT STORE TESTS
# ═══════════════════════════════════════════════════════════════════

def test_receipt_store_roundtrip_through_db(clean_receipt_store):
    store = clean_receipt_store
    receipt = TxReceipt(
        tx_hash="0xabc",
        status=STATUS_SUCCESS,
        sender=OWNER,
        to=OTHER,
        gas_used=21000,
        logs=[{"address": OTHER, "event": "Ping", "args": {"n": 1}}],
    )
    store.add(receipt)
    assert store.get("0xabc") is receipt

    # Drop the memory copy, the DB copy is still there
    store.clear()
    loaded = store.get("0xabc")
    assert loaded == receipt
    assert loaded.events("Ping") == [{"n": 1}]
    assert store.get("0xmissing") is None


def test_receipt_store_bounded():
    store = TxReceiptStore(max_receipts=10)
    for i in range(11):
        store.add(TxReceipt(tx_hash=f"0x{i}", status=STATUS_SUCCESS, sender=OWNER, to=OTHER, timestamp=1000 + i))

    assert len(store.receipts) == 10
    assert store.get("0x0") is None
    assert store.get("0x10") is not None


# ═══════════════════════════════════════════════════════════════════
# HOST LIFECYCLE
# ═══════════════════════════════════════════════════════════════════

def test_committed_tx_receipt_and_events(tracked_host, clean_event_bus):
    host = tracked_host
    confirmed, logs = [], []
    clean_event_bus.subscribe(TX_CONFIRMED, lambda receipt: confirmed.append(receipt))
    clean_event_bus.subscribe(LOG, lambda **log: logs.append(log))

    token = host.deploy(DEPLOYER, MockToken)
    receipt = host.transact_function(OWNER, token.address, "mint(address,uint256)", OTHER, 5)

    assert receipt.status == STATUS_SUCCESS
    assert receipt.gas_used > GAS_COSTS["tx_base"]
    assert receipt.events("Transfer") == [{"sender": "0x" + "00" * 20, "to": OTHER, "value": 5}]
    assert confirmed == [receipt]
    assert logs[0]["tx_hash"] == receipt.tx_hash
    assert logs[0]["event"] == "Transfer"
    assert host.receipts.get(receipt.tx_hash) is receipt
    assert host.state.get_account(OWNER).nonce == 1


def test_reverted_tx_receipt_and_rollback(tracked_host, clean_event_bus):
    host = tracked_host
    failed = []
    clean_event_bus.subscribe(TX_FAILED, lambda receipt: failed.append(receipt))
    reverter = host.deploy(DEPLOYER, Reverter)
    fund(host, OWNER, ETHER)
    reverted_before = metrics_registry.get_sample_value("aawallet_transactions_total", {"status": STATUS_REVERTED}) or 0

    with pytest.raises(ContractRevert):
        host.transact(OWNER, reverter.address, encode_call("fail()"), value=ETHER)

    [receipt] = failed
    assert receipt.status == STATUS_REVERTED
    assert receipt.revert_reason == "Reverter: always fails"
    assert receipt.logs == []
    # Value returned, nonce still consumed
    assert host.state.get_balance(OWNER) == ETHER
    assert host.state.get_account(OWNER).nonce == 1
    assert metrics_registry.get_sample_value("aawallet_transactions_total", {"status": STATUS_REVERTED}) == reverted_before + 1


def test_tx_hash_unique_per_nonce(tracked_host):
    host = tracked_host
    first = host.transfer(OWNER, OTHER, 0)
    second = host.transfer(OWNER, OTHER, 0)
    assert first.tx_hash != second.tx_hash
    assert host.tx_count == 2


def test_out_of_gas_reverts(tracked_host):
    host = tracked_host
    token = host.deploy(DEPLOYER, MockToken)

    with pytest.raises(OutOfGas):
        host.transact_function(OWNER, token.address, "mint(address,uint256)", OTHER, 5,
                               gas_limit=GAS_COSTS["tx_base"] + 1000)
    assert host.view(token.address, "balanceOf(address)", OTHER, returns="uint256") == 0


def test_gas_limit_below_base_cost_rejected(tracked_host):
    with pytest.raises(ValidationError):
        tracked_host.transact(OWNER, OTHER, b"", gas_limit=100)


def test_unknown_selector_and_non_payable(tracked_host):
    host = tracked_host
    token = host.deploy(DEPLOYER, MockToken)
    fund(host, OWNER, 10)

    with pytest.raises(ExecutionError) as exc:
        host.transact(OWNER, token.address, b"\xde\xad\xbe\xef")
    assert "unknown selector" in str(exc.value)

    with pytest.raises(ExecutionError) as exc:
        host.transact_function(OWNER, token.address, "mint(address,uint256)", OTHER, 1, value=10)
    assert "not payable" in str(exc.value)

    with pytest.raises(ExecutionError) as exc:
        host.transfer(OWNER, token.address, 10)
    assert "no receive function" in str(exc.value)
    assert host.state.get_balance(OWNER) == 10


def test_static_call_leaves_no_trace(tracked_host):
    host = tracked_host
    token = host.deploy(DEPLOYER, MockToken)
    root = host.state.compute_state_root()

    host.static_call(token.address, "mint(address,uint256)", OTHER, 5)
    assert host.state.compute_state_root() == root
    assert host.tx_count == 0
