"""
Shared constants for the DEX volume-spike scalper.

Chain identifiers, numeric constants, and default values used across all modules.
"""

from decimal import Decimal

# ---------------------------------------------------------------------------
# Chains
# ---------------------------------------------------------------------------

CHAIN_BSC = "bsc"
CHAIN_BASE = "base"
CHAIN_SOLANA = "solana"
SUPPORTED_CHAINS = (CHAIN_BSC, CHAIN_BASE, CHAIN_SOLANA)

SOL_MINT = "So11111111111111111111111111111111111111112"
LAMPORTS_PER_SOL = 1_000_000_000
WEI_PER_ETHER = Decimal("1_000_000_000_000_000_000")

# ---------------------------------------------------------------------------
# Market Data (DexScreener)
# ---------------------------------------------------------------------------

DEXSCREENER_BASE_URL = "https://api.dexscreener.com/latest/dex"
DEFAULT_MIN_REQUEST_INTERVAL_MS = 200
DEFAULT_SNAPSHOT_CACHE_TTL_SECONDS = 10
DEFAULT_MIN_DISCOVERY_LIQUIDITY_USD = Decimal("500")
DEFAULT_MAX_DISCOVERED_PAIRS = 50

# Base tokens searched per chain when seeding the watch list
DEFAULT_DISCOVERY_TOKENS = {
    CHAIN_BSC: ["WBNB", "BUSD", "USDT"],
    CHAIN_BASE: ["WETH", "USDbC", "USDC"],
    CHAIN_SOLANA: ["SOL", "USDC", "USDT"],
}

# ---------------------------------------------------------------------------
# Candles / Strategy
# ---------------------------------------------------------------------------

DEFAULT_CANDLE_INTERVAL_SECONDS = 300
DEFAULT_MAX_CANDLES = 100
DEFAULT_LOOKBACK_PERIODS = 12
DEFAULT_VOLUME_MULTIPLIER = Decimal("3")
DEFAULT_MIN_PRICE_CHANGE_PERCENT = Decimal("2")
DEFAULT_MIN_LIQUIDITY_USD = Decimal("5000")
DEFAULT_MIN_VOLUME_24H_USD = Decimal("10000")
DEFAULT_TAKE_PROFIT_MULTIPLIER = Decimal("5")

# ---------------------------------------------------------------------------
# Default Risk Values
# ---------------------------------------------------------------------------

DEFAULT_MAX_TRADES_PER_DAY = 15
DEFAULT_RISK_PER_TRADE_PERCENT = Decimal("5")
DEFAULT_MAX_DAILY_DRAWDOWN_PERCENT = Decimal("15")
DEFAULT_STOP_LOSS_PERCENT = Decimal("5")
DEFAULT_MAX_HOLD_MINUTES = 30
DEFAULT_MAX_POSITION_BALANCE_FRACTION = Decimal("0.25")
DEFAULT_MIN_SIGNAL_STRENGTH = 20
DEFAULT_MIN_POSITION_USD = Decimal("10")
DEFAULT_MAX_LIQUIDITY_FRACTION = Decimal("0.05")

# ---------------------------------------------------------------------------
# Default Execution Values
# ---------------------------------------------------------------------------

DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAY_MS = 2000
RETRY_BACKOFF_FACTOR = Decimal("1.5")
DEFAULT_SLIPPAGE_TOLERANCE_PERCENT = Decimal("5")
DEFAULT_SWAP_DEADLINE_SECONDS = 300
DEFAULT_PAPER_FAILURE_RATE = Decimal("0.05")
DEFAULT_PAPER_MIN_SLIPPAGE_PERCENT = Decimal("0.1")
DEFAULT_PAPER_MAX_SLIPPAGE_PERCENT = Decimal("0.5")
DEFAULT_PAPER_MIN_LATENCY_MS = 100
DEFAULT_PAPER_MAX_LATENCY_MS = 500

# ---------------------------------------------------------------------------
# Default State Values
# ---------------------------------------------------------------------------

DEFAULT_STARTING_BALANCE_USD = Decimal("1000")
DEFAULT_MAX_WATCHLIST_SIZE = 50
DEFAULT_MAX_TRADE_HISTORY = 1000
DEFAULT_SCAN_INTERVAL_SECONDS = 30
DEFAULT_MONITOR_INTERVAL_SECONDS = 10
DEFAULT_PAIRS_PER_CHAIN = 5
