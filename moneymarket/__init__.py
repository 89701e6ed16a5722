"""
moneymarket - Epoch-driven money-market policy engine

Lending market, overseer and rebasing custody contracts running on an
in-process transactional host, with 18-decimal fixed-point arithmetic.

Usage:
    from moneymarket import Host, Coin, deploy_protocol

    host = Host("localnet", verbose=False, test_mode=True)
    protocol = deploy_protocol(host)
    host.set_balance("alice", "uusd", 1_000_000)
    host.execute(protocol.market, "alice", "deposit_stable",
                 funds=(Coin("uusd", 1_000_000),))

    host.advance_blocks(protocol.epoch_period)
    result = host.execute(protocol.overseer, "keeper", "execute_epoch_operations")
"""

# Core types
from .core import (
    Address,
    Coin,
    Env,
    MessageInfo,
    ExecutionContext,
    BankSend,
    ContractCall,
    Instruction,
    Response,
    Contract,
    ExecuteResult,
    bank_send,
    contract_call,
    build_response,
    require_sender,
    FEE_POOL,
    HOOK_DEPOSIT_COLLATERAL,
    HOOK_REDEEM_STABLE,
    MoneyMarketError,
    Unauthorized,
    EpochNotPassed,
    TokenAlreadyRegistered,
    TokenNotRegistered,
    NotFound,
    QueryError,
    PriceTooOld,
    InsufficientFunds,
    InvalidRequest,
    BorrowExceedsLimit,
    NoStableAvailable,
    UnlockTooLarge,
    WithdrawTooLarge,
    RewardDistributionNotSupported,
    MissingDepositCollateralHook,
    UnknownMessage,
    CallDepthExceeded,
    FixedPointError,
    FixedPointOverflow,
    DivideByZero,
)

# Fixed point
from .fixed_point import (
    RATIO_ZERO, RATIO_ONE, MAX_UINT256,
    to_ratio, ratio_from_uint, permille, percent,
    ratio_add, ratio_sub, ratio_mul, ratio_div,
    uint_add, uint_sub, uint_mul, uint_mul_ratio, uint_div_ratio,
)

# Storage
from .store import (
    Storage, StagedStorage, PrefixedStorage, ReadOnlyStorage,
    Singleton, Bucket, paginate, DEFAULT_LIMIT, MAX_LIMIT,
)

# Host
from .host import Host, TransactionResult

# Queries and tax
from .querier import (
    PriceResponse, EpochStateResponse, BorrowLimitResponse, TokenInfo,
    TaxPolicy, compute_tax, deduct_tax, transfer_tax,
    query_price, query_epoch_state, query_borrow_limit,
)

# Interest accrual
from .interest import (
    MarketConfig, MarketState, Liability,
    calculate_interest, project_liability, compute_loan, compute_interest,
    calculate_exchange_rate,
)

# Dynamic rates
from .dynrate import (
    DynrateConfig, DynrateState, RateAdjustment,
    update_rate, adjust, is_window_open, seed_state,
)

# Epoch operations
from .epoch import (
    OverseerConfig, EpochState, EpochPlan,
    plan_epoch, next_epoch_state, calculate_deposit_rate, check_epoch_passed,
)

# Contracts
from .overseer import overseer_contract, apply_config_update, WhitelistElem
from .market import market_contract, EpochRates, LiabilityResponse
from .custody import (
    custody_contract, calculate_rebase_reward, accrue_rebase_rewards,
    BAssetInfo, BorrowerInfo, CustodyConfig,
)
from .interest_model import interest_model_contract, calculate_borrow_rate
from .oracle import oracle_contract
from .token import token_contract

# Deployment
from .deploy import Protocol, ProtocolParams, deploy_protocol

__all__ = [
    # Core
    'Address', 'Coin', 'Env', 'MessageInfo', 'ExecutionContext',
    'BankSend', 'ContractCall', 'Instruction', 'Response', 'Contract', 'ExecuteResult',
    'bank_send', 'contract_call', 'build_response', 'require_sender',
    'FEE_POOL', 'HOOK_DEPOSIT_COLLATERAL', 'HOOK_REDEEM_STABLE',
    # Errors
    'MoneyMarketError', 'Unauthorized', 'EpochNotPassed', 'TokenAlreadyRegistered',
    'TokenNotRegistered', 'NotFound', 'QueryError', 'PriceTooOld', 'InsufficientFunds',
    'InvalidRequest', 'BorrowExceedsLimit', 'NoStableAvailable', 'UnlockTooLarge',
    'WithdrawTooLarge', 'RewardDistributionNotSupported', 'MissingDepositCollateralHook',
    'UnknownMessage', 'CallDepthExceeded', 'FixedPointError', 'FixedPointOverflow',
    'DivideByZero',
    # Fixed point
    'RATIO_ZERO', 'RATIO_ONE', 'MAX_UINT256',
    'to_ratio', 'ratio_from_uint', 'permille', 'percent',
    'ratio_add', 'ratio_sub', 'ratio_mul', 'ratio_div',
    'uint_add', 'uint_sub', 'uint_mul', 'uint_mul_ratio', 'uint_div_ratio',
    # Storage
    'Storage', 'StagedStorage', 'PrefixedStorage', 'ReadOnlyStorage',
    'Singleton', 'Bucket', 'paginate', 'DEFAULT_LIMIT', 'MAX_LIMIT',
    # Host
    'Host', 'TransactionResult',
    # Queries
    'PriceResponse', 'EpochStateResponse', 'BorrowLimitResponse', 'TokenInfo',
    'TaxPolicy', 'compute_tax', 'deduct_tax', 'transfer_tax',
    'query_price', 'query_epoch_state', 'query_borrow_limit',
    # Interest
    'MarketConfig', 'MarketState', 'Liability',
    'calculate_interest', 'project_liability', 'compute_loan', 'compute_interest',
    'calculate_exchange_rate',
    # Dynamic rates
    'DynrateConfig', 'DynrateState', 'RateAdjustment',
    'update_rate', 'adjust', 'is_window_open', 'seed_state',
    # Epochs
    'OverseerConfig', 'EpochState', 'EpochPlan',
    'plan_epoch', 'next_epoch_state', 'calculate_deposit_rate', 'check_epoch_passed',
    # Contracts
    'overseer_contract', 'apply_config_update', 'WhitelistElem',
    'market_contract', 'EpochRates', 'LiabilityResponse',
    'custody_contract', 'calculate_rebase_reward', 'accrue_rebase_rewards',
    'BAssetInfo', 'BorrowerInfo', 'CustodyConfig',
    'interest_model_contract', 'calculate_borrow_rate',
    'oracle_contract', 'token_contract',
    # Deployment
    'Protocol', 'ProtocolParams', 'deploy_protocol',
]

__version__ = '1.0.0'
