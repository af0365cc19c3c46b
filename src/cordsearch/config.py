"""Configuration for cordsearch clients and table repositories."""

import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from .retry import RetryPolicy

ENV_PREFIX = "CORDSEARCH_"


def normalize_host(address: str) -> str:
    """Turn a host:port address into a URL the Elasticsearch client accepts."""
    address = address.strip()
    if "://" in address:
        return address
    return f"http://{address}"


@dataclass
class IndexConfig:
    """Connection, retry and throttling settings."""

    addresses: List[str] = field(default_factory=lambda: ["localhost:9200"])
    cluster_name: str = ""
    api_key: Optional[str] = None
    basic_auth: Optional[Tuple[str, str]] = None
    verify_certs: bool = True

    # retry of cluster operations after a transient failure
    retry_initial_delay: float = 1.0
    retry_multiplier: float = 2.0
    retry_max_delay: float = 30.0
    retry_max_attempts: Optional[int] = None
    query_max_attempts: int = 10

    # retry of handle construction
    connect_initial_delay: float = 10.0
    connect_multiplier: float = 1.5
    connect_max_delay: float = 60.0
    connect_max_attempts: Optional[int] = None

    # bulk write backpressure
    throttling_time_threshold_ms: int = 2000
    throttling_ops_threshold: int = 1000
    throttling_factor: float = 1.0

    table_peer_url: Optional[str] = None
    table_peer_timeout: float = 10.0
    store_path: Optional[str] = None

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None) -> "IndexConfig":
        """
        Build a configuration from CORDSEARCH_* environment variables.

        Recognized variables: ADDRESSES (comma-separated), CLUSTER_NAME,
        API_KEY, USERNAME/PASSWORD, VERIFY_CERTS, RETRY_MAX_ATTEMPTS,
        QUERY_MAX_ATTEMPTS, THROTTLING_FACTOR, TABLE_PEER_URL, STORE_PATH.
        Unset variables keep their defaults.
        """
        env = os.environ if environ is None else environ

        def get(name: str) -> Optional[str]:
            value = env.get(ENV_PREFIX + name)
            return value if value else None

        kwargs: Dict[str, Any] = {}
        if get("ADDRESSES"):
            kwargs["addresses"] = [a.strip() for a in get("ADDRESSES").split(",") if a.strip()]
        if get("CLUSTER_NAME"):
            kwargs["cluster_name"] = get("CLUSTER_NAME")
        if get("API_KEY"):
            kwargs["api_key"] = get("API_KEY")
        if get("USERNAME") and get("PASSWORD"):
            kwargs["basic_auth"] = (get("USERNAME"), get("PASSWORD"))
        if get("VERIFY_CERTS"):
            kwargs["verify_certs"] = get("VERIFY_CERTS").lower() not in ("0", "false", "no")
        if get("RETRY_MAX_ATTEMPTS"):
            kwargs["retry_max_attempts"] = int(get("RETRY_MAX_ATTEMPTS"))
        if get("QUERY_MAX_ATTEMPTS"):
            kwargs["query_max_attempts"] = int(get("QUERY_MAX_ATTEMPTS"))
        if get("THROTTLING_FACTOR"):
            kwargs["throttling_factor"] = float(get("THROTTLING_FACTOR"))
        if get("TABLE_PEER_URL"):
            kwargs["table_peer_url"] = get("TABLE_PEER_URL")
        if get("STORE_PATH"):
            kwargs["store_path"] = get("STORE_PATH")
        return cls(**kwargs)

    def hosts(self) -> List[str]:
        return [normalize_host(a) for a in self.addresses if a.strip()]

    def connection_kwargs(self) -> Dict[str, Any]:
        """Keyword arguments for the Elasticsearch client constructor."""
        conn_kwargs: Dict[str, Any] = {
            "hosts": self.hosts(),
            "verify_certs": self.verify_certs
        }

        if self.api_key:
            conn_kwargs["api_key"] = self.api_key
        elif self.basic_auth:
            conn_kwargs["basic_auth"] = self.basic_auth

        return conn_kwargs

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            initial_delay=self.retry_initial_delay,
            multiplier=self.retry_multiplier,
            max_delay=self.retry_max_delay,
            max_attempts=self.retry_max_attempts
        )

    def connect_policy(self) -> RetryPolicy:
        return RetryPolicy(
            initial_delay=self.connect_initial_delay,
            multiplier=self.connect_multiplier,
            max_delay=self.connect_max_delay,
            max_attempts=self.connect_max_attempts
        )
