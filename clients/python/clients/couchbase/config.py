import os
import asyncio
import logging
from datetime import timedelta
from couchbase.auth import PasswordAuthenticator
from acouchbase.cluster import Cluster as AsyncCluster
from couchbase.options import ClusterOptions

logger = logging.getLogger(__name__)

# Environment variables
USERNAME = os.environ.get('COUCHBASE_USERNAME', '')
PASSWORD = os.environ.get('COUCHBASE_PASSWORD', '')
DEFAULT_BUCKET_NAME = os.environ.get('COUCHBASE_BUCKET', '')
HOST = os.environ.get('COUCHBASE_HOST', '')
PROTOCOL = os.environ.get('COUCHBASE_PROTOCOL', 'couchbase')
READY_TIMEOUT_SECONDS = int(os.environ.get('COUCHBASE_READY_TIMEOUT_SECONDS', '50'))

_REQUIRED = {
    'COUCHBASE_USERNAME': USERNAME,
    'COUCHBASE_PASSWORD': PASSWORD,
    'COUCHBASE_HOST': HOST,
    'COUCHBASE_BUCKET': DEFAULT_BUCKET_NAME,
}

errors = [f"{name} is missing or empty" for name, value in _REQUIRED.items() if not value]

valid_protocols = ('couchbase', 'couchbases')
if PROTOCOL not in valid_protocols:
    errors.append(f"COUCHBASE_PROTOCOL '{PROTOCOL}' is invalid. Must be one of {valid_protocols}")

if errors:
    raise ValueError("Invalid Couchbase Configuration:\n" + "\n".join(errors))

auth = PasswordAuthenticator(USERNAME, PASSWORD)

_cluster = None

async def get_cluster(max_retries: int = 10, initial_delay: float = 1.0, max_delay: float = 30.0):
    """
    Returns a cached Couchbase cluster connection.
    Retries the initial connect with exponential backoff, since the API may
    start before the cluster accepts connections.
    """
    global _cluster
    if _cluster is None:
        url = f"{PROTOCOL}://{HOST}"
        delay = initial_delay
        for attempt in range(1, max_retries + 1):
            try:
                cluster = await AsyncCluster.connect(url, ClusterOptions(auth))
                break
            except Exception as e:
                if attempt == max_retries:
                    raise
                logger.warning(f"Couchbase connect attempt {attempt} failed: {e}; retrying in {delay:.0f}s")
                await asyncio.sleep(delay)
                delay = min(delay * 2, max_delay)

        await cluster.wait_until_ready(timedelta(seconds=READY_TIMEOUT_SECONDS))
        _cluster = cluster
    return _cluster

async def get_default_bucket():
    cluster = await get_cluster()
    return cluster.bucket(DEFAULT_BUCKET_NAME)

async def check_connection():
    """Ping the cluster; used by the API at startup."""
    cluster = await get_cluster()
    await cluster.ping()
