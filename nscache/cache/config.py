"""
Connection and namespace settings for a CacheManager.

Both Valkey connections of a cache (commands and subscriptions) are built
from one ValkeyConfig. Connection options go to the valkey client as they
are; the cache itself only reads ``namespace``.
"""

import os
import logging
from typing import Optional, Dict, Any
from dataclasses import dataclass
from dotenv import load_dotenv

from .errors import ValidationError

load_dotenv()

logger = logging.getLogger(__name__)

DEFAULT_NAMESPACE = "RedisCacheManager"
ENV_PREFIX = "VALKEY_"


def _env(name: str, default: Optional[str] = None) -> Optional[str]:
    return os.getenv(f"{ENV_PREFIX}{name}", default)


def _env_flag(name: str, default: bool) -> bool:
    value = _env(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class ValkeyConfig:
    """
    Valkey connection options plus the key namespace.

    The namespace becomes the first segment of every store key, so it must
    be a non-empty string without the ``:`` separator.
    """

    host: str = "localhost"
    port: int = 6379
    password: Optional[str] = None
    database: int = 0
    socket_timeout: Optional[float] = 5.0
    socket_connect_timeout: float = 5.0
    retry_on_timeout: bool = True
    decode_responses: bool = True
    namespace: str = DEFAULT_NAMESPACE

    def __post_init__(self):
        check_namespace(self.namespace)

    @classmethod
    def from_env(cls) -> "ValkeyConfig":
        """
        Build a config from ``VALKEY_*`` environment variables.

        Unset or empty variables keep the dataclass defaults.
        """
        config = cls(
            host=_env("HOST") or cls.host,
            port=int(_env("PORT") or cls.port),
            password=_env("PASSWORD") or None,
            database=int(_env("DATABASE") or cls.database),
            socket_timeout=float(_env("SOCKET_TIMEOUT") or cls.socket_timeout),
            socket_connect_timeout=float(_env("SOCKET_CONNECT_TIMEOUT") or cls.socket_connect_timeout),
            retry_on_timeout=_env_flag("RETRY_ON_TIMEOUT", cls.retry_on_timeout),
            decode_responses=_env_flag("DECODE_RESPONSES", cls.decode_responses),
            namespace=_env("NAMESPACE") or DEFAULT_NAMESPACE,
        )
        logger.debug(f"Loaded {config} from environment")
        return config

    def to_connection_kwargs(self) -> Dict[str, Any]:
        """
        Keyword arguments for ``valkey.asyncio.Valkey``.

        Returns:
            Dict[str, Any]: Everything except the namespace; password only when set
        """
        kwargs = dict(
            host=self.host,
            port=self.port,
            db=self.database,
            socket_timeout=self.socket_timeout,
            socket_connect_timeout=self.socket_connect_timeout,
            retry_on_timeout=self.retry_on_timeout,
            decode_responses=self.decode_responses,
        )
        if self.password:
            kwargs["password"] = self.password
        return kwargs

    def __str__(self) -> str:
        """String representation hiding sensitive information."""
        secret = "***" if self.password else "None"
        return (
            f"ValkeyConfig({self.host}:{self.port}/{self.database}, "
            f"password={secret}, namespace={self.namespace})"
        )


def check_namespace(namespace: Any) -> str:
    """Raise ValidationError unless namespace is a usable first key segment."""
    if not isinstance(namespace, str) or not namespace:
        raise ValidationError(f"namespace must be a non-empty string, got {namespace!r}")
    if ":" in namespace:
        raise ValidationError(f"namespace must not contain ':', got {namespace!r}")
    return namespace
