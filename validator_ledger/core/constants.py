"""
Solana chain constants and provider settings used across the ledger.
"""

# Epoch geometry
SLOTS_PER_EPOCH = 432_000
EPOCH_DURATION_SECONDS = 172_800  # ~2 days at 400ms slots
LAMPORTS_PER_SOL = 1_000_000_000

# Calibration point for epoch -> calendar date (epoch 896 began 2025-12-16 UTC)
REFERENCE_EPOCH = 896
REFERENCE_EPOCH_TIMESTAMP = 1_765_843_200

# Transfers below this are dust and ignored (0.001 SOL)
MIN_TRANSFER_LAMPORTS = 1_000_000

# Vote cost estimate: ~one vote per slot, 5000 lamports each
ESTIMATED_VOTES_PER_EPOCH = 431_000
VOTE_FEE_LAMPORTS = 5_000

# Courtesy delays between calls to the same upstream (seconds)
EPOCH_REWARD_DELAY_SEC = 0.1
BLOCK_FETCH_DELAY_SEC = 0.05
SIGNATURE_PAGE_DELAY_SEC = 0.2
TRANSACTION_FETCH_DELAY_SEC = 0.1

# Transaction history paging
SIGNATURE_PAGE_SIZE = 100
MAX_SIGNATURES_PER_ACCOUNT = 2_000

# Solana Foundation address that pays vote cost reimbursements
SFDP_REIMBURSEMENT = "DtZWL3BPKa5hw7yQYvaFR29PcXThpLHVU2XAAZrcLiSe"

# Account tags for cursor and transfer partitioning
TAG_WITHDRAW_AUTHORITY = "withdraw_authority"
TAG_PERSONAL_WALLET = "personal_wallet"
TAG_SFDP_REIMBURSEMENT = "sfdp_reimbursement"
TAG_SECONDARY = "dune"

# Providers
JITO_API_BASE = "https://kobe.mainnet.jito.network/api/v1"
DUNE_API_BASE = "https://api.dune.com/api/v1"
WRAPPED_SOL_MINT = "So11111111111111111111111111111111111111111"

# Secondary bulk query polling (seconds)
DUNE_INITIAL_DELAY_SEC = 5.0
DUNE_POLL_INTERVAL_SEC = 3.0
DUNE_TIMEOUT_SEC = 300.0

# Jito publishes an epoch's claims about one epoch after it closes
MEV_PUBLICATION_LAG_EPOCHS = 1
