"""
lending - Collateralized Lending Ledger

Pooled supply and borrow markets with index-based interest accrual,
oracle-priced health factors and third-party liquidation.

Usage:
    from lending import LendingLedger, MarketParams, OraclePrice, WAD

    ledger = LendingLedger("main")
    ledger.create_market(MarketParams("USDC"), caller="authority")
    ledger.create_market(MarketParams("SOL"), caller="authority")

    ledger.supply("USDC", "alice", 1_000, now=100)
    ledger.supply("SOL", "bob", 150, now=100)

    prices = {"USDC": OraclePrice(WAD, 100), "SOL": OraclePrice(WAD, 100)}
    ledger.borrow("USDC", "bob", 100, now=100, prices=prices)
    ledger.health_factor("bob", prices)   # 1.275 * WAD

    # Pure functions build transactions without touching state
    pending, claims = compute_supply(ledger, "USDC", "carol", 500, 100, ledger.config)
    ledger.execute(pending)
"""

# Core types
from .core import (
    LendingView,
    Move,
    CustodyTransfer,
    StateChange,
    Transaction,
    PendingTransaction,
    TransactionOrigin,
    OriginType,
    ExecuteResult,
    build_transaction,
    empty_pending_transaction,
    reserve_account,
    market_key,
    borrow_key,
    SYSTEM_WALLET,
    EVENT_CREATE_MARKET,
    EVENT_SET_PAUSED,
    EVENT_ACCRUE,
    EVENT_SUPPLY,
    EVENT_WITHDRAW,
    EVENT_BORROW,
    EVENT_REPAY,
    EVENT_LIQUIDATE,
    LendingError,
    ArithmeticOverflow,
    ArithmeticUnderflow,
    InvalidParameters,
    InvalidAmount,
    ZeroAmount,
    InsufficientLiquidity,
    InsufficientBalance,
    InsufficientCollateral,
    HealthFactorTooLow,
    PositionHealthy,
    StaleOracle,
    NoBorrowPosition,
    MarketNotFound,
    MarketAlreadyExists,
    MarketPaused,
    Unauthorized,
    SlippageExceeded,
    StaleState,
)

# Fixed-point kernel
from .fixed_point import (
    WAD, BPS_SCALE, SECONDS_PER_YEAR, U64_MAX, U128_MAX,
    mul_div, checked_add, checked_sub, checked_mul, saturating_sub,
    pow1p, to_decimal, bps_to_wad,
)

# Configuration
from .config import ProtocolConfig

# Rate model
from .rate_model import RateModelParams, utilization, borrow_rate, supply_rate

# Markets
from .market import (
    MarketParams,
    Market,
    BorrowPosition,
    validate_market_params,
    create_market,
    compute_create_market,
    compute_set_paused,
    exchange_rate,
)

# Accrual
from .accrual import (
    AccrualResult,
    calculate_accrual,
    accrue,
    compute_accrue,
    owed_amount,
    position_owed,
    claims_to_amount,
    amount_to_claims,
    current_rates,
)

# Risk
from .risk import (
    OraclePrice,
    PriceMap,
    AccountSnapshot,
    AccountHealth,
    INFINITE_HEALTH_FACTOR,
    validate_price,
    is_liquidatable,
    snapshot_account,
    calculate_account_health,
    require_healthy,
    compute_account_health,
)

# Positions
from .positions import (
    apply_repayment,
    compute_supply,
    compute_withdraw,
    compute_borrow,
    compute_repay,
    current_debt,
)

# Liquidation
from .liquidation import (
    LiquidationReceipt,
    calculate_seizure,
    max_repayable,
    compute_liquidation,
)

# Pricing
from .pricing_source import PriceFeed, StaticPriceFeed, TimeSeriesPriceFeed

# Ledger
from .ledger import LendingLedger

# Reporting analytics
from .analytics import (
    annualize,
    rate_curve,
    market_rate_table,
    linear_compounding_error,
    max_accrual_interval,
)


__all__ = [
    # Core
    'LendingView', 'Move', 'CustodyTransfer', 'StateChange', 'Transaction',
    'PendingTransaction', 'TransactionOrigin', 'OriginType', 'ExecuteResult',
    'build_transaction', 'empty_pending_transaction',
    'reserve_account', 'market_key', 'borrow_key', 'SYSTEM_WALLET',
    'EVENT_CREATE_MARKET', 'EVENT_SET_PAUSED', 'EVENT_ACCRUE', 'EVENT_SUPPLY',
    'EVENT_WITHDRAW', 'EVENT_BORROW', 'EVENT_REPAY', 'EVENT_LIQUIDATE',
    # Exceptions
    'LendingError', 'ArithmeticOverflow', 'ArithmeticUnderflow', 'InvalidParameters',
    'InvalidAmount', 'ZeroAmount', 'InsufficientLiquidity', 'InsufficientBalance',
    'InsufficientCollateral', 'HealthFactorTooLow', 'PositionHealthy', 'StaleOracle',
    'NoBorrowPosition', 'MarketNotFound', 'MarketAlreadyExists', 'MarketPaused',
    'Unauthorized', 'SlippageExceeded', 'StaleState',
    # Fixed point
    'WAD', 'BPS_SCALE', 'SECONDS_PER_YEAR', 'U64_MAX', 'U128_MAX',
    'mul_div', 'checked_add', 'checked_sub', 'checked_mul', 'saturating_sub',
    'pow1p', 'to_decimal', 'bps_to_wad',
    # Config
    'ProtocolConfig',
    # Rate model
    'RateModelParams', 'utilization', 'borrow_rate', 'supply_rate',
    # Markets
    'MarketParams', 'Market', 'BorrowPosition', 'validate_market_params',
    'create_market', 'compute_create_market', 'compute_set_paused', 'exchange_rate',
    # Accrual
    'AccrualResult', 'calculate_accrual', 'accrue', 'compute_accrue', 'owed_amount',
    'position_owed', 'claims_to_amount', 'amount_to_claims', 'current_rates',
    # Risk
    'OraclePrice', 'PriceMap', 'AccountSnapshot', 'AccountHealth',
    'INFINITE_HEALTH_FACTOR', 'validate_price', 'is_liquidatable', 'snapshot_account',
    'calculate_account_health', 'require_healthy', 'compute_account_health',
    # Positions
    'apply_repayment', 'compute_supply', 'compute_withdraw', 'compute_borrow',
    'compute_repay', 'current_debt',
    # Liquidation
    'LiquidationReceipt', 'calculate_seizure', 'max_repayable', 'compute_liquidation',
    # Pricing
    'PriceFeed', 'StaticPriceFeed', 'TimeSeriesPriceFeed',
    # Ledger
    'LendingLedger',
    # Analytics
    'annualize', 'rate_curve', 'market_rate_table', 'linear_compounding_error',
    'max_accrual_interval',
]

__version__ = '1.0.0'
