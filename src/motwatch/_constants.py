"""Internal constants shared across the library."""

API_BASE_URL = "https://history.mot.api.gov.uk"
HISTORY_ENDPOINT = "/v1/trade/vehicles/registration/{registration}"
API_KEY_HEADER = "X-API-Key"
USER_AGENT = "motwatch/1"

#: Upstream calls (token exchange, history fetch) are bounded by this.
REQUEST_TIMEOUT_S: float = 10.0

#: Lifetime assumed when the token endpoint omits ``expires_in``.
DEFAULT_TOKEN_LIFETIME_S: float = 60 * 60
#: Cached token is dropped this long before the issued expiry.
TOKEN_REFRESH_MARGIN_S: float = 5 * 60
#: How long a caller waits on another caller's in-flight renewal.
TOKEN_RENEWAL_WAIT_S: float = 30.0

BATCH_SIZE = 3
BATCH_DELAY_S: float = 3.0
SCHEDULER_INTERVAL_S: float = 60 * 60

PUSH_TTL_S = 3600
#: Push service statuses that mean the endpoint will never accept delivery again.
PUSH_GONE_STATUSES: frozenset[int] = frozenset({404, 410})

#: Connection-layer retry policy for the persistent store.
STORE_CONNECT_RETRIES = 3
STORE_CONNECT_BASE_DELAY_S: float = 1.0
