"""
ChainAdapter implementation on top of web3.py's AsyncWeb3.

Writes are signed locally with an eth_account key and sent one at a time, so
every transaction of the signer gets the next pending nonce. In dry-run mode
writes are simulated with eth_call and never broadcast.
"""

import asyncio
import logging
import os
import shutil
import subprocess
from typing import Dict, List, Optional, Sequence, Tuple

from eth_account import Account
from web3 import AsyncWeb3
from web3.exceptions import ContractLogicError, TransactionNotFound

from config import Config
from config.abis import (
    DISTRIBUTOR_ABI,
    ERC20_ABI,
    MINTER_ABI,
    PAIR_ABI,
    REWARD_ABI,
    VE_ABI,
    VOTER_ABI,
)
from config.settings import GOVERNANCE_TOKEN, MAX_REWARD_TOKENS, WEEK, ZERO_ADDRESS

from .chain import ChainAdapter, CompletedTx, EarnedReward, TargetInfo, TxHandle
from .errors import TransactionFailed
from .models import RewardAmount, Target, TxStatus, VoterAccount
from .utils import async_retry

logger = logging.getLogger(__name__)

RECEIPT_POLL_INTERVAL = 2.0
REBASE_CLAIM_GAS = 500000


def load_wallet(private_key_source: str) -> Account:
    """Load wallet from private key source: raw key, file path, or 1Password op:// reference."""
    if private_key_source.startswith("op://"):
        if shutil.which("op") is None:
            raise RuntimeError("1Password CLI 'op' not found in PATH")
        result = subprocess.run(["op", "read", private_key_source], capture_output=True, text=True)
        if result.returncode != 0:
            stderr = (result.stderr or "").strip()
            raise RuntimeError(f"Failed to read secret from 1Password: {stderr or 'unknown error'}")
        private_key = (result.stdout or "").strip()
        if not private_key:
            raise RuntimeError("1Password secret value is empty")
    elif os.path.isfile(private_key_source):
        with open(private_key_source, "r") as f:
            private_key = f.read().strip()
    else:
        private_key = private_key_source

    if private_key.startswith("0x"):
        private_key = private_key[2:]

    return Account.from_key(private_key)


class Web3TxHandle(TxHandle):
    """Polls for the receipt of a broadcast transaction; no client-side timeout."""

    def __init__(self, w3: AsyncWeb3, tx_hash: str):
        self.w3 = w3
        self.tx_hash = tx_hash

    async def wait(self) -> TxStatus:
        while True:
            try:
                receipt = await self.w3.eth.get_transaction_receipt(self.tx_hash)
            except TransactionNotFound:
                await asyncio.sleep(RECEIPT_POLL_INTERVAL)
                continue
            status = TxStatus.CONFIRMED if receipt["status"] == 1 else TxStatus.FAILED
            logger.info(f"Transaction {self.tx_hash} final: {status.value}")
            return status


class Web3ChainAdapter(ChainAdapter):
    """Voter / voting-escrow / reward contracts of a Velodrome-style protocol."""

    def __init__(
        self,
        rpc_url: str = Config.RPC_URL,
        wallet: Optional[Account] = None,
        dry_run: bool = Config.DRY_RUN,
    ):
        self.w3 = AsyncWeb3(
            AsyncWeb3.AsyncHTTPProvider(rpc_url, request_kwargs={"timeout": Config.RPC_TIMEOUT})
        )
        self.wallet = wallet
        self.dry_run = dry_run
        self.voter = self._contract(Config.VOTER_ADDRESS, VOTER_ABI)
        self.minter = self._contract(Config.MINTER_ADDRESS, MINTER_ABI)
        self.ve = self._contract(Config.VE_ADDRESS, VE_ABI)
        self.distributor = self._contract(Config.DISTRIBUTOR_ADDRESS, DISTRIBUTOR_ABI)
        self._token_info: Dict[str, Tuple[str, int]] = {}
        self._send_lock: Optional[asyncio.Lock] = None  # created on the running loop
        logger.info(f"Chain adapter initialized: {rpc_url} (dry_run={dry_run})")

    def _contract(self, address: str, abi):
        return self.w3.eth.contract(address=AsyncWeb3.to_checksum_address(address), abi=abi)

    @property
    def signer_address(self) -> str:
        return self.wallet.address if self.wallet else ZERO_ADDRESS

    # ═══ Reads ═══

    async def current_epoch_close(self, now: int) -> int:
        return int(await self.voter.functions.epochVoteEnd(int(now)).call())

    async def total_weight(self) -> int:
        return int(await self.voter.functions.totalWeight().call())

    async def weekly_emission(self) -> int:
        return int(await self.minter.functions.weekly().call())

    async def target_count(self) -> int:
        return int(await self.voter.functions.length().call())

    async def target_at(self, index: int) -> str:
        return str(await self.voter.functions.pools(int(index)).call())

    async def weight(self, target: str) -> int:
        return int(await self.voter.functions.weights(AsyncWeb3.to_checksum_address(target)).call())

    def governance_token(self) -> str:
        return GOVERNANCE_TOKEN

    async def voting_power_at(self, account: VoterAccount, timestamp: int) -> int:
        return int(await self.ve.functions.balanceOfNFTAt(account.token_id, int(timestamp)).call())

    async def token_balance(self, token: str, owner: Optional[str] = None) -> int:
        contract = self._contract(token, ERC20_ABI)
        holder = AsyncWeb3.to_checksum_address(owner or self.signer_address)
        return int(await contract.functions.balanceOf(holder).call())

    @async_retry(max_attempts=3, delay=1.0)
    async def _fetch_token_info(self, token: str) -> Tuple[str, int]:
        contract = self._contract(token, ERC20_ABI)
        symbol, decimals = await asyncio.gather(
            contract.functions.symbol().call(),
            contract.functions.decimals().call(),
        )
        return str(symbol), int(decimals)

    async def token_info(self, token: str) -> Tuple[str, int]:
        token = token.lower()
        if token in self._token_info:
            return self._token_info[token]
        try:
            info = await self._fetch_token_info(token)
        except Exception:
            logger.error(f"All attempts failed to get token info for {token}")
            return "UNKNOWN", 18
        self._token_info[token] = info
        return info

    @async_retry(max_attempts=3, delay=1.0)
    async def _fetch_pool_name(self, pool: str) -> str:
        pair = self._contract(pool, PAIR_ABI)
        token0, token1 = await asyncio.gather(
            pair.functions.token0().call(),
            pair.functions.token1().call(),
        )
        (sym0, _), (sym1, _) = await asyncio.gather(self.token_info(token0), self.token_info(token1))
        return f"{sym0}/{sym1}"

    async def pool_name(self, pool: str) -> str:
        try:
            return await self._fetch_pool_name(pool)
        except Exception:
            logger.error(f"All attempts failed to get pool name for {pool}")
            return "Unknown Pool"

    async def _reward_amounts(
        self, reward_contract: str, epoch_start: int, keep_zero: bool
    ) -> Dict[str, RewardAmount]:
        rewards: Dict[str, RewardAmount] = {}
        if reward_contract == ZERO_ADDRESS:
            return rewards
        contract = self._contract(reward_contract, REWARD_ABI)
        try:
            count = int(await contract.functions.rewardsListLength().call())
            for index in range(min(count, MAX_REWARD_TOKENS)):
                token = str(await contract.functions.rewards(index).call())
                current, previous = await asyncio.gather(
                    contract.functions.tokenRewardsPerEpoch(token, epoch_start).call(),
                    contract.functions.tokenRewardsPerEpoch(token, epoch_start - WEEK).call(),
                )
                amount = int(current) + int(previous)
                if amount > 0 or keep_zero:
                    symbol, decimals = await self.token_info(token)
                    rewards[token.lower()] = RewardAmount(amount=amount, decimals=decimals, symbol=symbol)
        except Exception as e:
            logger.warning(f"Skipping rewards of {reward_contract}: {e}")
        return rewards

    async def target_info(self, target: str, epoch_start: int) -> Optional[TargetInfo]:
        pool = AsyncWeb3.to_checksum_address(target)
        gauge = str(await self.voter.functions.gauges(pool).call())
        if gauge == ZERO_ADDRESS:
            return None
        if not await self.voter.functions.isAlive(gauge).call():
            return None

        weight = await self.weight(pool)
        name = await self.pool_name(pool)
        fee_contract, incentive_contract = await asyncio.gather(
            self.voter.functions.gaugeToFees(gauge).call(),
            self.voter.functions.gaugeToBribe(gauge).call(),
        )
        fees, incentives = await asyncio.gather(
            self._reward_amounts(str(fee_contract), epoch_start, keep_zero=True),
            self._reward_amounts(str(incentive_contract), epoch_start, keep_zero=False),
        )
        return TargetInfo(
            address=pool,
            name=name,
            weight=weight,
            fee_contract=str(fee_contract),
            incentive_contract=str(incentive_contract),
            fees=fees,
            incentives=incentives,
        )

    async def earned_rewards(self, account: VoterAccount, targets: Sequence[Target]) -> List[EarnedReward]:
        earned: List[EarnedReward] = []
        for target in targets:
            for reward_contract, tokens, incentive in (
                (target.fee_contract, target.fees, False),
                (target.incentive_contract, target.incentives, True),
            ):
                if not reward_contract or reward_contract == ZERO_ADDRESS:
                    continue
                contract = self._contract(reward_contract, REWARD_ABI)
                for token in tokens:
                    try:
                        amount = int(
                            await contract.functions.earned(
                                AsyncWeb3.to_checksum_address(token), account.token_id
                            ).call()
                        )
                    except Exception as e:
                        logger.debug(f"earned() failed on {reward_contract} for {token}: {e}")
                        continue
                    if amount > 0:
                        earned.append(EarnedReward(reward_contract, token, amount, incentive))
        return earned

    async def claimable_rebase(self, account: VoterAccount) -> int:
        return int(await self.distributor.functions.claimable(account.token_id).call())

    # ═══ Writes ═══

    async def _send(self, fn, gas: Optional[int] = None) -> TxHandle:
        """Simulate, then sign and broadcast a contract call."""
        sender = self.signer_address
        try:
            await fn.call({"from": sender})
        except ContractLogicError as e:
            raise TransactionFailed(f"Simulation reverted: {e}")

        if self.dry_run:
            logger.info(f"Dry run: {fn.fn_name} simulated successfully, not broadcast")
            return CompletedTx(tx_hash=f"dry-run-{fn.fn_name}")
        if self.wallet is None:
            raise TransactionFailed("No signer configured")

        if self._send_lock is None:
            self._send_lock = asyncio.Lock()
        async with self._send_lock:
            nonce = await self.w3.eth.get_transaction_count(sender, "pending")
            params = {"from": sender, "nonce": nonce}
            if gas is not None:
                params["gas"] = gas
            tx = await fn.build_transaction(params)
            signed = self.wallet.sign_transaction(tx)
            try:
                tx_hash = await self.w3.eth.send_raw_transaction(signed.raw_transaction)
            except Exception as e:
                raise TransactionFailed(f"Submission failed: {e}")
        tx_hash_hex = AsyncWeb3.to_hex(tx_hash)
        logger.info(f"Sent {fn.fn_name}: {tx_hash_hex}")
        return Web3TxHandle(self.w3, tx_hash_hex)

    async def _send_and_confirm(self, fn, gas: Optional[int] = None) -> TxHandle:
        handle = await self._send(fn, gas)
        if await handle.wait() != TxStatus.CONFIRMED:
            raise TransactionFailed(f"{fn.fn_name} reverted", tx_hash=handle.tx_hash)
        return handle

    async def submit_vote(self, account: VoterAccount, targets: Sequence[str], weights: Sequence[int]) -> TxHandle:
        pools = [AsyncWeb3.to_checksum_address(t) for t in targets]
        return await self._send(self.voter.functions.vote(account.token_id, pools, [int(w) for w in weights]))

    async def submit_claim(self, account: VoterAccount, rewards: Sequence[EarnedReward]) -> TxHandle:
        grouped: Dict[str, List[str]] = {}
        for reward in rewards:
            grouped.setdefault(reward.reward_contract, []).append(AsyncWeb3.to_checksum_address(reward.token))
        contracts = [AsyncWeb3.to_checksum_address(c) for c in grouped]
        tokens = list(grouped.values())
        if rewards and rewards[0].incentive:
            fn = self.voter.functions.claimBribes(contracts, tokens, account.token_id)
        else:
            fn = self.voter.functions.claimFees(contracts, tokens, account.token_id)
        return await self._send(fn)

    async def submit_rebase_claim(self, account: VoterAccount) -> TxHandle:
        return await self._send(self.distributor.functions.claim(account.token_id), gas=REBASE_CLAIM_GAS)

    async def submit_reward_lock(self, account: VoterAccount, amount: int) -> TxHandle:
        token = self._contract(self.governance_token(), ERC20_ABI)
        await self._send_and_confirm(
            token.functions.approve(AsyncWeb3.to_checksum_address(Config.VE_ADDRESS), int(amount))
        )
        return await self._send(self.ve.functions.increaseAmount(account.token_id, int(amount)))
