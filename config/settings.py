"""
Configuration constants and settings for the auto-voter.

Centralizes:
- Contract addresses
- RPC endpoints
- Database paths
- Scheduler and optimizer parameters
"""

import os
from dotenv import load_dotenv

load_dotenv()

# ═══ Contract Addresses ═══
VOTER_ADDRESS = os.getenv("VOTER_ADDRESS", "0x16613524e02ad97eDfeF371bC883F2F5d6C480A5")
MINTER_ADDRESS = os.getenv("MINTER_ADDRESS", "0xeB018363F0a9Af8f91F06FEe6613a751b2A33FE5")
VE_ADDRESS = os.getenv("VE_ADDRESS", "0xeBf418Fe2512e7E6bd9b87a8F0f294aCDC67e6B4")
DISTRIBUTOR_ADDRESS = os.getenv("DISTRIBUTOR_ADDRESS", "0x227f65131A261548b057215bB1D5Ab2997964C7d")
GOVERNANCE_TOKEN = os.getenv("GOVERNANCE_TOKEN", "0x940181a94A35A4569E4529A3CDfB74e38FD98631").lower()
GOVERNANCE_SYMBOL = os.getenv("GOVERNANCE_SYMBOL", "AERO")
STABLE_TOKEN = os.getenv("STABLE_TOKEN", "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913").lower()

# ═══ RPC Configuration ═══
RPC_URL = os.getenv("RPC_URL", "https://mainnet.base.org")

# ═══ Database ═══
DATABASE_PATH = os.getenv("DATABASE_PATH", "autovoter.db")

# ═══ Constants ═══
ONE_E18 = 10**18
WEEK = 604800  # 7 days in seconds
EPOCH_ORIGIN = 1693353600  # first epoch start of the protocol (Thursday 00:00 UTC)
ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

# ═══ Scanner ═══
WAKE_UP_WINDOW = 900  # scheduled mode wakes this many seconds before epoch close
PRIORITY_POOL_COUNT = 60
SCAN_BATCH_SIZE = 7
SCAN_BATCH_DELAY = 1.2
SCHEDULED_TICK = 5.0
RECOVER_PAUSE = 5.0
MAX_REWARD_TOKENS = 10

# ═══ Sniper ═══
SNIPER_TICK = 5.0
VOTE_LEAD_TIME = int(os.getenv("VOTE_LEAD_TIME", "60"))

# ═══ Optimizer ═══
MAX_OPTIMIZED_POOLS = 10
BASIS_POINTS = 10000
WEEKS_PER_YEAR = 52

# ═══ Ledger ═══
LEDGER_CAP = 100
INDEX_MIN_LIQUIDITY_USD = 100000.0
INDEX_TOP_POOLS = 3

# ═══ Wallet ═══
BALANCE_MIN_USD = 0.10  # holdings worth less are left out of balance reports

# ═══ Market Data ═══
DEXSCREENER_URL = os.getenv("DEXSCREENER_URL", "https://api.dexscreener.com/latest/dex")
DEXSCREENER_CHAIN = os.getenv("DEXSCREENER_CHAIN", "base")
COINGECKO_PLATFORM = os.getenv("COINGECKO_PLATFORM", "base")
MARKET_CHUNK_SIZE = 30
MARKET_CHUNK_DELAY = 0.2
MARKET_TIMEOUT = 10
