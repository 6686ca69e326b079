from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel
from typing import Optional, List
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from ...protocol.crypto.addresses import normalize_address
from ...protocol.types.common import ExecutionError, ValidationError
from ...protocol.types.user_op import UserOperation, USER_OP_ABI_TYPE
from ..core.host import ExecutionHost
from ..contracts import SimpleAccount
from ..observability.metrics import metrics_registry, update_metrics
import logging

logger = logging.getLogger(__name__)

app = FastAPI(title="aawallet Node RPC")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
execution_host: Optional[ExecutionHost] = None
# Externally-owned account that submits handleOps and collects the fees
bundler: Optional[str] = None

@app.exception_handler(ExecutionError)
async def execution_error_handler(request, exc: ExecutionError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})

class HandleOpsRequest(BaseModel):
    ops: List[UserOperation]
    beneficiary: Optional[str] = None

def _require_host() -> ExecutionHost:
    if not execution_host:
        raise HTTPException(status_code=503, detail="Node not initialized")
    return execution_host

def _address(address: str) -> str:
    try:
        return normalize_address(address)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))

@app.get("/status")
async def get_status():
    node = _require_host()
    return {
        "network": node.config.network_id,
        "chain_id": node.chain_id,
        "entry_point": node.config.entry_point_address,
        "bundler": bundler,
        "tx_count": node.tx_count,
        "state_root": node.state.compute_state_root(),
    }

@app.get("/balance/{address}")
async def get_balance(address: str):
    node = _require_host()
    acc = node.state.get_account(_address(address))
    return {
        "address": acc.address,
        "balance": str(acc.balance),
        "nonce": acc.nonce
    }

@app.get("/account/{address}")
async def get_account(address: str):
    """Balance and code of an address; owner, coordinator and deposit for smart accounts."""
    node = _require_host()
    acc = node.state.get_account(_address(address))
    info = {
        "address": acc.address,
        "balance": str(acc.balance),
        "nonce": acc.nonce,
        "code": acc.code,
    }
    if acc.code == SimpleAccount.__name__:
        info["owner"] = node.view(acc.address, "owner()", returns="address")
        info["entry_point"] = entry_point = node.view(acc.address, "entryPoint()", returns="address")
        info["deposit"] = str(node.view(entry_point, "balanceOf(address)", acc.address, returns="uint256"))
        info["op_nonce"] = node.view(entry_point, "getNonce(address,uint192)", acc.address, 0, returns="uint256")
    return info

@app.post("/user_op/hash")
async def get_user_op_hash(op: UserOperation):
    node = _require_host()
    op_hash = node.view(
        node.config.entry_point_address,
        f"getUserOpHash({USER_OP_ABI_TYPE})",
        op.as_abi_tuple(),
        returns="bytes32",
    )
    return {"user_op_hash": "0x" + op_hash.hex()}

@app.get("/user_op/nonce/{address}")
async def get_user_op_nonce(address: str):
    node = _require_host()
    nonce = node.view(node.config.entry_point_address, "getNonce(address,uint192)",
                      _address(address), 0, returns="uint256")
    return {"address": _address(address), "nonce": nonce}

@app.post("/handle_ops")
async def handle_ops(req: HandleOpsRequest):
    node = _require_host()
    if not bundler:
        raise HTTPException(status_code=503, detail="No bundler account configured")
    beneficiary = _address(req.beneficiary) if req.beneficiary else bundler

    try:
        receipt = node.transact_function(
            bundler,
            node.config.entry_point_address,
            f"handleOps({USER_OP_ABI_TYPE}[],address)",
            [op.as_abi_tuple() for op in req.ops],
            beneficiary,
        )
    except ExecutionError as e:
        logger.warning(f"handleOps rejected: {e}")
        raise HTTPException(status_code=400, detail=str(e))

    return receipt.to_dict()

@app.get("/receipt/{tx_hash}")
async def get_tx_receipt(tx_hash: str):
    node = _require_host()
    receipt = node.receipts.get(tx_hash)
    if not receipt:
        raise HTTPException(status_code=404, detail="Transaction not found")
    return receipt.to_dict()

@app.get("/metrics")
async def get_metrics():
    """Prometheus metrics in text format."""
    if execution_host:
        update_metrics(execution_host.state)
    return Response(
        content=generate_latest(metrics_registry),
        media_type=CONTENT_TYPE_LATEST
    )

def start_rpc_server(host_instance: ExecutionHost, bundler_address: str, host: str = "0.0.0.0", port: int = 8000):
    global execution_host, bundler
    execution_host = host_instance
    bundler = normalize_address(bundler_address)
    import uvicorn
    uvicorn.run(app, host=host, port=port)
