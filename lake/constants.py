# Buckets written by the NEAR Lake indexers, one per network, with their regions.
MAINNET_BUCKET = 'near-lake-data-mainnet'
TESTNET_BUCKET = 'near-lake-data-testnet'
BETANET_BUCKET = 'near-lake-data-betanet'

NETWORK_BUCKETS = {
    'mainnet': (MAINNET_BUCKET, 'eu-central-1'),
    'testnet': (TESTNET_BUCKET, 'eu-central-1'),
    'betanet': (BETANET_BUCKET, 'us-east-1'),
}

# Every block lives under a "directory" named after its height, zero padded so that the
# lexicographic order of the keys equals the numeric order of the heights.
HEIGHT_KEY_WIDTH = 12
BLOCK_KEY_TEMPLATE = '{height:012d}/block.json'
SHARD_KEY_TEMPLATE = '{height:012d}/shard_{shard_id}.json'

# How many block heights may be reserved in the preload pool at once: being fetched, or
# fetched and waiting for the consumer. Bounds the memory held for a slow consumer.
DEFAULT_PRELOAD_POOL_SIZE = 100

# How many GET requests may be in flight at once, across all the heights being fetched.
DEFAULT_FETCH_CONCURRENCY = 32

# S3 returns at most 1000 keys per LIST request, which is also the cheapest setting
# when catching up on history: one LIST request per 1000 blocks.
DEFAULT_LIST_PAGE_SIZE = 1000

# When the listing comes back empty we are at the tip of the chain; blocks are produced
# roughly once per second, so look again after this many seconds.
DEFAULT_TIP_POLL_INTERVAL = 2.0

# Storage errors while listing heights are retried this many times before giving up
DEFAULT_LIST_MAX_ATTEMPTS = 10

# Transient storage errors while fetching a single object are retried this many times
DEFAULT_FETCH_MAX_ATTEMPTS = 5

# Exponential backoff between retries: min(initial * 2 ** attempt, max)
DEFAULT_RETRY_INITIAL_DELAY = 0.5
DEFAULT_RETRY_MAX_DELAY = 16.0

# A listed block whose objects are not readable yet is re-requested after this delay.
# The lake writer may list a height a moment before all of its shard files are uploaded.
DEFAULT_NOT_FOUND_RETRY_DELAY = 0.2

# After a block fails the prev_hash check, wait this long before restarting the stream
DEFAULT_CONTINUITY_RETRY_DELAY = 0.2
