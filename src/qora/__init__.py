"""qora - Async data fetching and caching with stale-while-revalidate."""

# Client
from qora.client import QueryClient

# Duration parsing
from qora.duration import parse_duration

# Errors
from qora.exceptions import (
    DisabledQueryError,
    InvalidKeyError,
    QoraError,
    UseAfterDisposeError,
)

# Keys
from qora.key import (
    FrozenMap,
    QueryKey,
    define_keys,
    key_hash,
    keys_equal,
    normalize_key,
    stringify_key,
)

# Mutations
from qora.mutation import MutationController, MutationEvent, MutationOptions
from qora.mutation_state import (
    MutationFailure,
    MutationIdle,
    MutationPending,
    MutationState,
    MutationStatus,
    MutationSuccess,
    where_mutation_error,
    where_mutation_success,
)

# Configuration
from qora.options import ClientConfig, QueryOptions

# Query states
from qora.state import (
    Failure,
    Initial,
    Loading,
    QueryState,
    QueryStatus,
    Success,
    combine_list,
    combine_states,
    data_stream,
    map_data,
    where_has_data,
    where_success,
)

# Streams
from qora.channel import Subscription

# Observability
from qora.tracking import LoggingTracker, MutationTracker, NoOpTracker, QueryTracker

# Core types
from qora.types import Duration, Fetcher, Mutator, NormalizedKey

__version__ = "0.1.0"

__all__ = [
    "ClientConfig",
    "DisabledQueryError",
    "Duration",
    "Failure",
    "Fetcher",
    "FrozenMap",
    "Initial",
    "InvalidKeyError",
    "Loading",
    "LoggingTracker",
    "MutationController",
    "MutationEvent",
    "MutationFailure",
    "MutationIdle",
    "MutationOptions",
    "MutationPending",
    "MutationState",
    "MutationStatus",
    "MutationSuccess",
    "MutationTracker",
    "Mutator",
    "NoOpTracker",
    "NormalizedKey",
    "QoraError",
    "QueryClient",
    "QueryKey",
    "QueryOptions",
    "QueryState",
    "QueryStatus",
    "QueryTracker",
    "Subscription",
    "Success",
    "UseAfterDisposeError",
    "combine_list",
    "combine_states",
    "data_stream",
    "define_keys",
    "key_hash",
    "keys_equal",
    "map_data",
    "normalize_key",
    "parse_duration",
    "stringify_key",
    "where_has_data",
    "where_mutation_error",
    "where_mutation_success",
    "where_success",
]
