"""
Tests for the EntryPoint coordinator and the full validate-then-execute flow.
"""
import pytest

from aawallet.blockchain.contracts import SimpleAccount, FailedOp
from aawallet.blockchain.observability.metrics import metrics_registry
from aawallet.protocol.abi import encode_call, encode_custom_error
from aawallet.protocol.crypto.keys import sign_message_hash
from aawallet.protocol.types.common import AccessDenied, ContractRevert
from aawallet.protocol.types.user_op import UserOperation, USER_OP_ABI_TYPE

from tests.conftest import OWNER_KEY, OTHER_KEY, OWNER, OTHER, COORDINATOR, DEPLOYER, BUNDLER, ETHER, fund
from tests.mock_contracts import MockToken, Reverter

HANDLE_OPS = f"handleOps({USER_OP_ABI_TYPE}[],address)"
EXECUTE = "execute(address,uint256,bytes)"
BENEFICIARY = "0x" + "be" * 20


def build_op(host, entry_point, sender, call_data=b"", nonce=0, key=OWNER_KEY, **fields):
    op = UserOperation(sender=sender, nonce=nonce, call_data=call_data, **fields)
    op_hash = op.hash(entry_point.address, host.chain_id)
    return op.with_signature(sign_message_hash(op_hash, key))


def handle_ops(host, entry_point, ops, beneficiary=BENEFICIARY):
    return host.transact_function(BUNDLER, entry_point.address, HANDLE_OPS,
                                  [op.as_abi_tuple() for op in ops], beneficiary)


def deposit_of(host, entry_point, address):
    return host.view(entry_point.address, "balanceOf(address)", address, returns="uint256")


def nonce_of(host, entry_point, address):
    return host.view(entry_point.address, "getNonce(address,uint192)", address, 0, returns="uint256")


def mint_call(token, to, amount):
    return encode_call(EXECUTE, token.address, 0, encode_call("mint(address,uint256)", to, amount))


# ═══════════════════════════════════════════════════════════════════
# HASHES, NONCES, DEPOSITS
# ═══════════════════════════════════════════════════════════════════

def test_get_user_op_hash_matches_local_hash(host, entry_point, ep_account):
    op = build_op(host, entry_point, ep_account.address, call_data=b"\x01\x02")
    remote = host.view(entry_point.address, f"getUserOpHash({USER_OP_ABI_TYPE})", op.as_abi_tuple(),
                       returns="bytes32")
    assert remote == op.hash(entry_point.address, host.chain_id)


def test_nonce_starts_at_zero(host, entry_point, ep_account):
    assert nonce_of(host, entry_point, ep_account.address) == 0
    assert host.view(entry_point.address, "getNonce(address,uint192)", ep_account.address, 5,
                     returns="uint256") == 5 << 64


def test_deposit_and_withdraw(host, entry_point):
    fund(host, OTHER, ETHER)
    receipt = host.transact_function(OTHER, entry_point.address, "depositTo(address)", OTHER, value=ETHER // 2)
    assert receipt.events("Deposited") == [{"account": OTHER, "totalDeposit": ETHER // 2}]

    # Plain transfers are credited to the sender
    host.transfer(OTHER, entry_point.address, ETHER // 4)
    assert deposit_of(host, entry_point, OTHER) == 3 * ETHER // 4

    host.transact_function(OTHER, entry_point.address, "withdrawTo(address,uint256)", BENEFICIARY, ETHER // 4)
    assert deposit_of(host, entry_point, OTHER) == ETHER // 2
    assert host.state.get_balance(BENEFICIARY) == ETHER // 4

    with pytest.raises(ContractRevert) as exc:
        host.transact_function(OTHER, entry_point.address, "withdrawTo(address,uint256)", OTHER, ETHER)
    assert exc.value.reason == "Withdraw amount too large"


def test_account_deposit_helpers(host, entry_point, ep_account):
    fund(host, OWNER, ETHER)
    host.transact_function(OWNER, ep_account.address, "addDeposit()", value=ETHER // 10)
    assert host.view(ep_account.address, "getDeposit()", returns="uint256") == ETHER // 10

    host.transact_function(OWNER, ep_account.address, "withdrawDepositTo(address,uint256)", OTHER, ETHER // 20)
    assert deposit_of(host, entry_point, ep_account.address) == ETHER // 20
    assert host.state.get_balance(OTHER) == ETHER // 20

    with pytest.raises(AccessDenied):
        host.transact_function(OTHER, ep_account.address, "withdrawDepositTo(address,uint256)", OTHER, 1)


# ═══════════════════════════════════════════════════════════════════
# HANDLE OPS
# ═══════════════════════════════════════════════════════════════════

def test_handle_ops_mints_token_end_to_end(host, entry_point, ep_account):
    token = host.deploy(DEPLOYER, MockToken)
    op = build_op(host, entry_point, ep_account.address, call_data=mint_call(token, ep_account.address, ETHER))
    succeeded = metrics_registry.get_sample_value("aawallet_user_ops_total", {"outcome": "success"}) or 0

    receipt = handle_ops(host, entry_point, [op])

    assert host.view(token.address, "balanceOf(address)", ep_account.address, returns="uint256") == ETHER
    assert nonce_of(host, entry_point, ep_account.address) == 1

    [event] = receipt.events("UserOperationEvent")
    assert event["success"] is True
    assert event["sender"] == ep_account.address
    assert event["userOpHash"] == "0x" + op.hash(entry_point.address, host.chain_id).hex()

    # Account paid the full prefund, the unused part stays deposited
    cost = event["actualGasCost"]
    prefund = op.required_prefund()
    assert 0 < cost <= prefund
    assert host.state.get_balance(ep_account.address) == ETHER - prefund
    assert deposit_of(host, entry_point, ep_account.address) == prefund - cost
    assert host.state.get_balance(BENEFICIARY) == cost
    assert host.state.get_balance(entry_point.address) == prefund - cost
    assert metrics_registry.get_sample_value("aawallet_user_ops_total", {"outcome": "success"}) == succeeded + 1


def test_handle_ops_uses_existing_deposit(host, entry_point, ep_account):
    fund(host, OWNER, ETHER)
    host.transact_function(OWNER, entry_point.address, "depositTo(address)", ep_account.address, value=ETHER // 10)
    op = build_op(host, entry_point, ep_account.address)

    handle_ops(host, entry_point, [op])

    # Nothing missing, so the account balance is untouched
    assert host.state.get_balance(ep_account.address) == ETHER
    assert deposit_of(host, entry_point, ep_account.address) < ETHER // 10


def test_handle_ops_sequential_nonces(host, entry_point, ep_account):
    token = host.deploy(DEPLOYER, MockToken)
    ops = [
        build_op(host, entry_point, ep_account.address, call_data=mint_call(token, OTHER, 1), nonce=n)
        for n in range(3)
    ]
    handle_ops(host, entry_point, ops)

    assert nonce_of(host, entry_point, ep_account.address) == 3
    assert host.view(token.address, "balanceOf(address)", OTHER, returns="uint256") == 3


def test_handle_ops_bad_signature_rejects_batch(host, entry_point, ep_account):
    token = host.deploy(DEPLOYER, MockToken)
    op = build_op(host, entry_point, ep_account.address, call_data=mint_call(token, OTHER, 1), key=OTHER_KEY)
    failures = metrics_registry.get_sample_value("aawallet_signature_validations_total", {"status": "failure"}) or 0
    executed = metrics_registry.get_sample_value("aawallet_user_ops_total", {"outcome": "success"}) or 0

    with pytest.raises(FailedOp) as exc:
        handle_ops(host, entry_point, [op])
    # Attempts are counted even though the batch reverted; executions are not
    assert metrics_registry.get_sample_value("aawallet_signature_validations_total", {"status": "failure"}) == failures + 1
    assert (metrics_registry.get_sample_value("aawallet_user_ops_total", {"outcome": "success"}) or 0) == executed
    assert exc.value.op_index == 0
    assert exc.value.reason == "AA24 signature error"
    assert exc.value.data == encode_custom_error("FailedOp(uint256,string)", 0, "AA24 signature error")

    assert nonce_of(host, entry_point, ep_account.address) == 0
    assert host.state.get_balance(ep_account.address) == ETHER
    assert host.view(token.address, "balanceOf(address)", OTHER, returns="uint256") == 0


def test_handle_ops_reports_failing_index(host, entry_point, ep_account):
    good = build_op(host, entry_point, ep_account.address, nonce=0)
    replay = build_op(host, entry_point, ep_account.address, nonce=0)

    with pytest.raises(FailedOp) as exc:
        handle_ops(host, entry_point, [good, replay])
    assert exc.value.op_index == 1
    assert exc.value.reason == "AA25 invalid account nonce"


def test_handle_ops_account_bound_elsewhere(host, entry_point):
    account = host.deploy(DEPLOYER, SimpleAccount, COORDINATOR, OWNER)
    fund(host, account.address, ETHER)
    op = build_op(host, entry_point, account.address)

    with pytest.raises(FailedOp) as exc:
        handle_ops(host, entry_point, [op])
    assert exc.value.reason == "AA23 reverted: account: not from EntryPoint"


def test_handle_ops_unfunded_account(host, entry_point):
    account = host.deploy(DEPLOYER, SimpleAccount, entry_point.address, OWNER)
    op = build_op(host, entry_point, account.address)

    # The prefund transfer fails inside the account and is swallowed there
    with pytest.raises(FailedOp) as exc:
        handle_ops(host, entry_point, [op])
    assert exc.value.reason == "AA21 didn't pay prefund"


def test_handle_ops_undeployed_sender(host, entry_point):
    op = build_op(host, entry_point, OTHER)
    with pytest.raises(FailedOp) as exc:
        handle_ops(host, entry_point, [op])
    assert exc.value.reason == "AA20 account not deployed"


@pytest.mark.parametrize("fields, reason", [
    ({"init_code": b"\x01"}, "AA10 init code not supported"),
    ({"paymaster_and_data": b"\x01" * 20}, "AA30 paymaster not supported"),
])
def test_handle_ops_unsupported_fields(host, entry_point, ep_account, fields, reason):
    op = build_op(host, entry_point, ep_account.address, **fields)
    with pytest.raises(FailedOp) as exc:
        handle_ops(host, entry_point, [op])
    assert exc.value.reason == reason


def test_handle_ops_execution_failure_is_reported_not_raised(host, entry_point, ep_account):
    reverter = host.deploy(DEPLOYER, Reverter)
    call_data = encode_call(EXECUTE, reverter.address, 0, encode_call("fail()"))
    op = build_op(host, entry_point, ep_account.address, call_data=call_data)

    receipt = handle_ops(host, entry_point, [op])

    assert receipt.success
    [revert] = receipt.events("UserOperationRevertReason")
    assert revert["sender"] == ep_account.address
    [event] = receipt.events("UserOperationEvent")
    assert event["success"] is False
    # Validation still counted: nonce used and gas paid
    assert nonce_of(host, entry_point, ep_account.address) == 1
    assert host.state.get_balance(BENEFICIARY) == event["actualGasCost"]


def test_handle_ops_invalid_beneficiary(host, entry_point, ep_account):
    op = build_op(host, entry_point, ep_account.address)
    with pytest.raises(FailedOp) as exc:
        handle_ops(host, entry_point, [op], beneficiary="0x" + "00" * 20)
    assert exc.value.reason == "AA90 invalid beneficiary"
    assert host.state.get_balance(ep_account.address) == ETHER


def test_direct_execute_by_owner_still_allowed(host, entry_point, ep_account):
    host.transact_function(OWNER, ep_account.address, EXECUTE, OTHER, 1, b"")
    assert host.state.get_balance(OTHER) == 1
