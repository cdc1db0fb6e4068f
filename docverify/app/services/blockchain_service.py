"""Client for the DocVerify registry contract over JSON-RPC."""

import json
import time
from datetime import datetime
from typing import Any, Dict, List, Optional

from web3 import Web3

from ..config import settings
from ..utils.logging import logger
from .merkle import MerkleTree, normalize_hash, to_hex

RETRY_INTERVAL_SECONDS = 30
PLACEHOLDER_HASH = "0x" + "0" * 64


class BlockchainUnavailableError(RuntimeError):
    """Raised by write operations when no contract connection exists."""


def _unavailable(**extra) -> Dict[str, Any]:
    result = {"success": False, "message": "Blockchain service not available"}
    result.update(extra)
    return result


class BlockchainService:
    def __init__(self):
        self.w3: Optional[Web3] = None
        self.contract = None
        self.account = None
        self.sender: Optional[str] = None
        self.network: Optional[str] = None
        self.contract_address: Optional[str] = None
        self.is_connected = False
        self._last_attempt = 0.0

    def initialize(self) -> bool:
        """Connect to the RPC node and bind the deployed contract."""
        self._last_attempt = time.time()
        contract_path = settings.contract_file_path
        if not contract_path.is_file():
            logger.log_step("blockchain_contract_missing", {"contract_file": str(contract_path)})
            return False

        try:
            contract_config = json.loads(contract_path.read_text(encoding="utf-8"))
            if not contract_config.get("address"):
                logger.log_step("blockchain_contract_not_deployed", {"contract_file": str(contract_path)})
                return False

            w3 = Web3(Web3.HTTPProvider(settings.BLOCKCHAIN_RPC_URL, request_kwargs={"timeout": 5}))
            if not w3.is_connected():
                logger.log_error("blockchain_rpc_unreachable", {"rpc_url": settings.BLOCKCHAIN_RPC_URL})
                return False

            if settings.BLOCKCHAIN_PRIVATE_KEY:
                self.account = w3.eth.account.from_key(settings.BLOCKCHAIN_PRIVATE_KEY)
                self.sender = self.account.address
            else:
                # Local development nodes expose unlocked accounts
                accounts = w3.eth.accounts
                if not accounts:
                    logger.log_error("blockchain_no_signer", {"rpc_url": settings.BLOCKCHAIN_RPC_URL})
                    return False
                self.sender = accounts[0]

            self.contract_address = Web3.to_checksum_address(contract_config["address"])
            self.contract = w3.eth.contract(address=self.contract_address, abi=contract_config["abi"])
            self.network = contract_config.get("network")
            self.w3 = w3
            self.is_connected = True

            logger.log_step("blockchain_connected", {
                "rpc_url": settings.BLOCKCHAIN_RPC_URL,
                "contract": self.contract_address,
                "sender": self.sender
            })
            return True
        except Exception as e:
            self.is_connected = False
            logger.log_error("blockchain_connection_failed", {"error": str(e)})
            return False

    def is_available(self) -> bool:
        if not self.is_connected and time.time() - self._last_attempt > RETRY_INTERVAL_SECONDS:
            self.initialize()
        return self.is_connected and self.contract is not None

    @staticmethod
    def format_hash(document_hash: str) -> str:
        return to_hex(normalize_hash(document_hash))

    @staticmethod
    def batch_id_hash(batch_id: str) -> bytes:
        return bytes(Web3.keccak(text=batch_id))

    def _decode(self, function_name: str, result: Any) -> Dict[str, Any]:
        """Name a call result using the ABI output definitions."""
        entry = next(
            item for item in self.contract.abi
            if item.get("type") == "function" and item.get("name") == function_name
        )
        outputs = entry.get("outputs", [])
        if len(outputs) == 1 and outputs[0].get("components"):
            return dict(zip([c["name"] for c in outputs[0]["components"]], result))
        if len(outputs) == 1:
            return {outputs[0].get("name") or "value": result}
        return dict(zip([o.get("name") or f"value{i}" for i, o in enumerate(outputs)], result))

    def _transact(self, contract_function) -> Dict[str, Any]:
        if self.account is not None:
            transaction = contract_function.build_transaction({
                "from": self.sender,
                "nonce": self.w3.eth.get_transaction_count(self.sender),
                "gasPrice": self.w3.eth.gas_price,
            })
            signed = self.w3.eth.account.sign_transaction(transaction, private_key=settings.BLOCKCHAIN_PRIVATE_KEY)
            tx_hash = self.w3.eth.send_raw_transaction(signed.raw_transaction)
        else:
            tx_hash = contract_function.transact({"from": self.sender})

        receipt = self.w3.eth.wait_for_transaction_receipt(tx_hash)
        return {
            "transactionHash": to_hex(receipt["transactionHash"]),
            "blockNumber": receipt["blockNumber"],
            "gasUsed": str(receipt["gasUsed"]),
        }

    def _require(self):
        if not self.is_available():
            raise BlockchainUnavailableError("Blockchain service not available")

    def register_document(self, document_hash: str, document_id: str) -> Dict[str, Any]:
        self._require()
        leaf = normalize_hash(document_hash)
        try:
            existing = self._decode("getDocument", self.contract.functions.getDocument(leaf).call())
            if existing.get("timestamp", 0) > 0:
                return {
                    "success": False,
                    "message": "Document already registered on blockchain",
                    "existingTimestamp": int(existing["timestamp"]),
                }

            receipt = self._transact(self.contract.functions.registerDocument(leaf, document_id))
            logger.log_step("blockchain_document_registered", {
                "document_id": document_id,
                "transaction_hash": receipt["transactionHash"]
            })
            return {
                "success": True,
                **receipt,
                "documentHash": to_hex(leaf),
                "documentId": document_id,
                "timestamp": int(time.time() * 1000),
            }
        except Exception as e:
            logger.log_error("blockchain_register_failed", {"error": str(e), "document_id": document_id})
            raise RuntimeError(f"Failed to register on blockchain: {e}")

    def verify_document(self, document_hash: str) -> Dict[str, Any]:
        if not self.is_available():
            return {"verified": False, "onChain": False, "message": "Blockchain service not available"}

        try:
            leaf = normalize_hash(document_hash)
            doc = self._decode("getDocument", self.contract.functions.getDocument(leaf).call())
            timestamp = int(doc.get("timestamp", 0))
            if timestamp == 0:
                return {"verified": False, "onChain": False, "message": "Document not found on blockchain"}

            return {
                "verified": not doc.get("isRevoked"),
                "onChain": True,
                "issuer": doc.get("issuer"),
                "timestamp": timestamp,
                "registeredAt": datetime.utcfromtimestamp(timestamp).isoformat() + "Z",
                "isRevoked": doc.get("isRevoked"),
                "documentId": doc.get("documentId"),
                "documentHash": to_hex(leaf),
            }
        except Exception as e:
            logger.log_error("blockchain_verify_failed", {"error": str(e)})
            return {"verified": False, "onChain": False, "error": str(e)}

    def verify_by_document_id(self, document_id: str) -> Dict[str, Any]:
        if not self.is_available():
            return {"verified": False, "onChain": False, "message": "Blockchain service not available"}

        try:
            result = self._decode(
                "verifyByDocumentId",
                self.contract.functions.verifyByDocumentId(document_id).call(),
            )
            timestamp = int(result.get("timestamp", 0))
            if not result.get("isValid") and timestamp == 0:
                return {"verified": False, "onChain": False, "message": "Document not found on blockchain"}

            return {
                "verified": bool(result.get("isValid")),
                "onChain": True,
                "documentHash": to_hex(result["documentHash"]) if result.get("documentHash") else None,
                "issuer": result.get("issuer"),
                "timestamp": timestamp,
                "registeredAt": datetime.utcfromtimestamp(timestamp).isoformat() + "Z",
                "isRevoked": result.get("isRevoked"),
            }
        except Exception as e:
            logger.log_error("blockchain_verify_by_id_failed", {"error": str(e), "document_id": document_id})
            return {"verified": False, "onChain": False, "error": str(e)}

    def revoke_document(self, document_hash: str) -> Dict[str, Any]:
        self._require()
        try:
            receipt = self._transact(self.contract.functions.revokeDocument(normalize_hash(document_hash)))
            return {"success": True, **receipt}
        except Exception as e:
            logger.log_error("blockchain_revoke_failed", {"error": str(e)})
            raise RuntimeError(f"Failed to revoke on blockchain: {e}")

    def register_batch(self, document_hashes: List[str], batch_id: str) -> Dict[str, Any]:
        """Anchor the Merkle root of a batch in one transaction."""
        self._require()
        tree = MerkleTree(document_hashes)
        try:
            receipt = self._transact(self.contract.functions.registerBatch(
                normalize_hash(tree.root),
                len(tree),
                self.batch_id_hash(batch_id),
            ))
            logger.log_step("blockchain_batch_registered", {
                "batch_id": batch_id,
                "merkle_root": tree.root,
                "transaction_hash": receipt["transactionHash"]
            })
            return {
                "success": True,
                **receipt,
                "merkleRoot": tree.root,
                "batchId": batch_id,
                "documentCount": len(tree),
            }
        except Exception as e:
            logger.log_error("blockchain_batch_failed", {"error": str(e), "batch_id": batch_id})
            raise RuntimeError(f"Failed to register batch: {e}")

    def verify_batch_document(self, batch_id: str, document_hash: str, proof: List[str]) -> Dict[str, Any]:
        if not self.is_available():
            return {"verified": False, "message": "Blockchain service not available"}

        try:
            leaf = normalize_hash(document_hash)
            is_valid = self.contract.functions.verifyBatchDocument(
                self.batch_id_hash(batch_id),
                leaf,
                [normalize_hash(sibling) for sibling in proof],
            ).call()
            return {"verified": bool(is_valid), "batchId": batch_id, "documentHash": to_hex(leaf)}
        except Exception as e:
            logger.log_error("blockchain_batch_verify_failed", {"error": str(e), "batch_id": batch_id})
            return {"verified": False, "error": str(e)}

    def _fee_data(self) -> Dict[str, Optional[int]]:
        gas_price = self.w3.eth.gas_price
        block = self.w3.eth.get_block("latest")
        base_fee = block.get("baseFeePerGas")
        try:
            priority_fee = self.w3.eth.max_priority_fee
        except Exception:
            priority_fee = None
        max_fee = base_fee * 2 + (priority_fee or 0) if base_fee is not None else None
        return {
            "gasPrice": gas_price,
            "maxFeePerGas": max_fee,
            "maxPriorityFeePerGas": priority_fee,
            "baseFee": base_fee,
            "block": block,
        }

    def estimate_gas_for_registration(self, document_hash: str, document_id: str) -> Dict[str, Any]:
        if not self.is_available():
            return _unavailable()

        try:
            gas_estimate = self.contract.functions.registerDocument(
                normalize_hash(document_hash), document_id
            ).estimate_gas({"from": self.sender})
            fees = self._fee_data()
            max_fee = fees["maxFeePerGas"] or fees["gasPrice"]
            return {
                "success": True,
                "gasEstimate": str(gas_estimate),
                "gasPrice": str(fees["gasPrice"]),
                "maxFeePerGas": str(max_fee),
                "maxPriorityFeePerGas": str(fees["maxPriorityFeePerGas"] or 0),
                "estimatedCost": str(Web3.from_wei(gas_estimate * fees["gasPrice"], "ether")),
                "maxCost": str(Web3.from_wei(gas_estimate * max_fee, "ether")),
                "estimatedCostUSD": None,
                "unit": "ETH",
            }
        except Exception as e:
            logger.log_error("gas_estimation_failed", {"error": str(e), "operation": "register"})
            return {"success": False, "error": str(e)}

    def estimate_gas_for_batch(self, document_hashes: List[str], batch_id: str) -> Dict[str, Any]:
        if not self.is_available():
            return _unavailable()

        try:
            tree = MerkleTree(document_hashes)
            gas_estimate = self.contract.functions.registerBatch(
                normalize_hash(tree.root), len(tree), self.batch_id_hash(batch_id)
            ).estimate_gas({"from": self.sender})
            fees = self._fee_data()
            max_fee = fees["maxFeePerGas"] or fees["gasPrice"]
            estimated_cost = gas_estimate * fees["gasPrice"]
            count = len(tree)
            return {
                "success": True,
                "documentCount": count,
                "gasEstimate": str(gas_estimate),
                "gasPrice": str(fees["gasPrice"]),
                "estimatedCost": str(Web3.from_wei(estimated_cost, "ether")),
                "maxCost": str(Web3.from_wei(gas_estimate * max_fee, "ether")),
                "costPerDocument": str(Web3.from_wei(estimated_cost // max(count, 1), "ether")),
                "savings": f"~{round((1 - 1 / count) * 100)}% vs individual" if count > 1 else "N/A",
                "unit": "ETH",
            }
        except Exception as e:
            logger.log_error("gas_estimation_failed", {"error": str(e), "operation": "batch"})
            return {"success": False, "error": str(e)}

    def estimate_gas_for_revocation(self, document_hash: str) -> Dict[str, Any]:
        if not self.is_available():
            return _unavailable()

        try:
            gas_estimate = self.contract.functions.revokeDocument(
                normalize_hash(document_hash)
            ).estimate_gas({"from": self.sender})
            gas_price = self.w3.eth.gas_price
            return {
                "success": True,
                "gasEstimate": str(gas_estimate),
                "gasPrice": str(gas_price),
                "estimatedCost": str(Web3.from_wei(gas_estimate * gas_price, "ether")),
                "unit": "ETH",
            }
        except Exception as e:
            logger.log_error("gas_estimation_failed", {"error": str(e), "operation": "revoke"})
            return {"success": False, "error": str(e)}

    def get_gas_prices(self) -> Dict[str, Any]:
        if not self.is_available():
            return _unavailable()

        try:
            fees = self._fee_data()
            block = fees["block"]

            def gwei(value):
                return str(Web3.from_wei(value, "gwei")) if value is not None else None

            return {
                "success": True,
                "gasPrice": gwei(fees["gasPrice"]),
                "maxFeePerGas": gwei(fees["maxFeePerGas"]),
                "maxPriorityFeePerGas": gwei(fees["maxPriorityFeePerGas"]),
                "baseFee": gwei(fees["baseFee"]),
                "unit": "gwei",
                "blockNumber": block["number"],
                "timestamp": datetime.utcfromtimestamp(block["timestamp"]).isoformat() + "Z",
            }
        except Exception as e:
            logger.log_error("gas_price_fetch_failed", {"error": str(e)})
            return {"success": False, "error": str(e)}

    def get_wallet_balance(self) -> Dict[str, Any]:
        if not self.is_available():
            return _unavailable()

        try:
            balance = self.w3.eth.get_balance(self.sender)
            return {
                "success": True,
                "address": self.sender,
                "balance": str(Web3.from_wei(balance, "ether")),
                "balanceWei": str(balance),
                "unit": "ETH",
            }
        except Exception as e:
            logger.log_error("balance_fetch_failed", {"error": str(e)})
            return {"success": False, "error": str(e)}

    def get_gas_estimation_report(self, operation: str, params: Dict[str, Any] = None) -> Dict[str, Any]:
        params = params or {}
        if operation == "register":
            estimate = self.estimate_gas_for_registration(
                params.get("documentHash") or PLACEHOLDER_HASH,
                params.get("documentId") or "TEST-DOC-ID",
            )
        elif operation == "batch":
            estimate = self.estimate_gas_for_batch(
                params.get("documentHashes") or [PLACEHOLDER_HASH],
                params.get("batchId") or "TEST-BATCH-ID",
            )
        elif operation == "revoke":
            estimate = self.estimate_gas_for_revocation(params.get("documentHash") or PLACEHOLDER_HASH)
        else:
            estimate = {"success": False, "message": "Unknown operation"}

        return {
            "operation": operation,
            "gasPrices": self.get_gas_prices(),
            "operationEstimate": estimate,
            "walletBalance": self.get_wallet_balance(),
            "timestamp": datetime.utcnow().isoformat() + "Z",
        }

    def get_stats(self) -> Dict[str, Any]:
        if not self.is_available():
            return {"available": False, "message": "Blockchain service not available"}

        try:
            total_documents, total_batches, total_verifications = self.contract.functions.getStats().call()[:3]
            return {
                "available": True,
                "totalDocuments": int(total_documents),
                "totalBatches": int(total_batches),
                "totalVerifications": int(total_verifications),
                "contractAddress": self.contract_address,
                "network": self.network,
            }
        except Exception as e:
            logger.log_error("blockchain_stats_failed", {"error": str(e)})
            return {"available": False, "error": str(e)}

    def status(self) -> Dict[str, Any]:
        available = self.is_available()
        return {
            "available": available,
            "rpcUrl": settings.BLOCKCHAIN_RPC_URL,
            "contractAddress": self.contract_address,
            "network": self.network,
            "sender": self.sender if available else None,
        }


blockchain_service = BlockchainService()
