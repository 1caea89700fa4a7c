"""
Chain client for the upgrader.
Handles contract reads (with bounded retries), transaction submission and deployments.
"""

import asyncio
from typing import Any, Dict, List, Optional, Union

from eth_account import Account
from eth_utils import encode_hex, to_checksum_address
from web3 import AsyncWeb3
from web3.contract import AsyncContract
from web3.exceptions import ContractLogicError, TimeExhausted

from diamond_upgrader.core.config import Settings
from diamond_upgrader.core.exceptions import ChainCallError, ConfigError, SubmissionError
from diamond_upgrader.core.logging import get_logger, log_blockchain_transaction

logger = get_logger(__name__)


class ChainClient:
    """Client owning one web3 connection and the deployer account."""

    def __init__(self, settings: Settings, w3: Optional[AsyncWeb3] = None):
        """
        Initialize chain client.

        Args:
            settings: Upgrader settings (RPC URL, key, retry and fee controls)
            w3: Optional pre-built AsyncWeb3 instance
        """
        self.settings = settings
        self.w3 = w3 or AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(settings.RPC_URL))
        logger.info(f"Using RPC: {settings.RPC_URL}")

        self.account = None
        if settings.DEPLOYER_PRIVATE_KEY:
            self.account = Account.from_key(settings.DEPLOYER_PRIVATE_KEY)

        self._chain_id: Optional[int] = settings.CHAIN_ID

    @property
    def signer_address(self) -> str:
        if not self.account:
            raise ConfigError("DEPLOYER_PRIVATE_KEY not configured")
        return self.account.address

    def contract(self, address: str, abi: List[Dict]) -> AsyncContract:
        return self.w3.eth.contract(address=to_checksum_address(address), abi=abi)

    async def chain_id(self) -> int:
        if self._chain_id is None:
            self._chain_id = await self._with_retries("eth_chainId", lambda: self.w3.eth.chain_id)
        return self._chain_id

    async def _with_retries(self, method: str, make_call) -> Any:
        """
        Run a read, retrying node/network failures a bounded number of times.
        Reverts are not retried.
        """
        attempts = self.settings.CHAIN_READ_MAX_RETRIES
        last_error: Optional[Exception] = None
        for attempt in range(1, attempts + 1):
            try:
                return await make_call()
            except ContractLogicError as e:
                raise ChainCallError(method, details={"reason": str(e)})
            except Exception as e:
                last_error = e
                logger.warning(f"Chain read {method} failed (attempt {attempt}/{attempts}): {e}")
                if attempt < attempts:
                    await asyncio.sleep(self.settings.CHAIN_READ_RETRY_DELAY * attempt)
        raise ChainCallError(method, details={"attempts": attempts, "error": str(last_error)})

    async def call_function(
        self, address: str, abi: List[Dict], function_name: str, args: Optional[List[Any]] = None
    ) -> Any:
        """
        Call a read-only contract function.

        Args:
            address: Contract address
            abi: Contract ABI containing the function
            function_name: Name of the contract function to call
            args: List of arguments for the function

        Returns:
            Function return value
        """
        contract_function = getattr(self.contract(address, abi).functions, function_name)
        args = args or []
        result = await self._with_retries(
            function_name, lambda: contract_function(*args).call()
        )
        logger.debug(f"Called function: {function_name}({args}) = {result}")
        return result

    async def get_code(self, address: str) -> bytes:
        return await self._with_retries(
            "eth_getCode", lambda: self.w3.eth.get_code(to_checksum_address(address))
        )

    async def _fees(self) -> Dict[str, int]:
        block = await self._with_retries("eth_getBlockByNumber", lambda: self.w3.eth.get_block("latest"))
        priority_fee = self.settings.max_priority_fee_per_gas
        base_fee = block.get("baseFeePerGas", 0)
        return {
            "maxPriorityFeePerGas": priority_fee,
            "maxFeePerGas": base_fee * 2 + priority_fee,
        }

    async def send_transaction(
        self, to: Optional[str], data: Union[bytes, str], method: str, gas_limit: Optional[int] = None
    ) -> Dict[str, Any]:
        """
        Sign and send a transaction, then wait for confirmation.

        Args:
            to: Recipient contract, None for contract creation
            data: Calldata (or init code for deployments)
            method: Name used in logs and errors
            gas_limit: Gas limit, estimated when omitted

        Returns:
            Transaction receipt

        Raises:
            SubmissionError: on revert, rejection or missing confirmation
        """
        from_address = self.signer_address
        transaction: Dict[str, Any] = {
            "from": from_address,
            "data": data if isinstance(data, str) else "0x" + data.hex(),
            "chainId": await self.chain_id(),
        }
        if to is not None:
            transaction["to"] = to_checksum_address(to)

        try:
            if not gas_limit:
                gas_limit = await self.w3.eth.estimate_gas(transaction)
                # Add 20% buffer
                gas_limit = int(gas_limit * 1.2)
        except ContractLogicError as e:
            raise SubmissionError(
                f"{method} would revert: {e}", details={"method": method, "revert_reason": str(e)}
            )
        except Exception as e:
            logger.warning(f"Gas estimation failed: {e}, using default")
            gas_limit = self.settings.DEFAULT_GAS_LIMIT

        transaction["gas"] = gas_limit
        transaction["nonce"] = await self.w3.eth.get_transaction_count(from_address)
        transaction.update(await self._fees())

        signed_txn = self.account.sign_transaction(transaction)

        try:
            tx_hash = await self.w3.eth.send_raw_transaction(signed_txn.raw_transaction)
        except Exception as e:
            raise SubmissionError(f"{method} rejected by node: {e}", details={"method": method})

        tx_hex = encode_hex(tx_hash)
        logger.info(f"Transaction sent: {tx_hex}")

        try:
            receipt = await self.w3.eth.wait_for_transaction_receipt(
                tx_hash, timeout=self.settings.TX_TIMEOUT_SECONDS
            )
        except TimeExhausted:
            # Submitted but unconfirmed: the caller must re-check chain state, not resubmit.
            raise SubmissionError(
                f"{method} not confirmed within {self.settings.TX_TIMEOUT_SECONDS}s",
                details={"method": method, "tx_hash": tx_hex, "submitted": True},
            )

        if receipt["status"] != 1:
            raise SubmissionError(
                f"{method} reverted on chain",
                details={"method": method, "tx_hash": tx_hex, "submitted": True},
            )

        await self._wait_for_confirmations(receipt["blockNumber"], method, tx_hex)

        log_blockchain_transaction(
            tx_hash=tx_hex,
            chain_id=await self.chain_id(),
            contract_address=to or receipt.get("contractAddress"),
            method=method,
            block_number=receipt["blockNumber"],
        )
        result = dict(receipt)
        result["transactionHash"] = tx_hex
        return result

    async def _wait_for_confirmations(self, block_number: int, method: str, tx_hex: str) -> None:
        target = block_number + self.settings.CONFIRMATIONS - 1
        deadline = asyncio.get_running_loop().time() + self.settings.TX_TIMEOUT_SECONDS
        while await self.w3.eth.block_number < target:
            if asyncio.get_running_loop().time() >= deadline:
                raise SubmissionError(
                    f"{method} did not reach {self.settings.CONFIRMATIONS} confirmations "
                    f"within {self.settings.TX_TIMEOUT_SECONDS}s",
                    details={"method": method, "tx_hash": tx_hex, "submitted": True},
                )
            await asyncio.sleep(1)

    async def deploy(
        self, name: str, abi: List[Dict], bytecode: str, constructor_args: Optional[List[Any]] = None
    ) -> str:
        """
        Deploy a contract and return its address.

        Args:
            name: Contract name (for logs)
            abi: Contract ABI
            bytecode: Creation bytecode
            constructor_args: Constructor arguments

        Returns:
            Checksummed deployment address
        """
        factory = self.w3.eth.contract(abi=abi, bytecode=bytecode)
        init_code = factory.constructor(*(constructor_args or [])).data_in_transaction
        receipt = await self.send_transaction(None, init_code, f"deploy {name}")
        address = to_checksum_address(receipt["contractAddress"])
        logger.info(f"Deployed {name} at {address}")
        return address
