from typing import Literal

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    pricing_ws_url: str = "ws://localhost:4000/graphql"
    pricing_graphql_url: str = "http://localhost:4000/graphql"
    pricing_transport: Literal["websocket", "http"] = "websocket"
    pricing_auth_token: str = ""
    bundle_group: str = "Standard Unlimited Essential"
    default_max_days: int = 30
    request_timeout: float = 30.0
    stall_timeout_seconds: float = 0.0
    invalidate_on_payment_change: bool = False
    max_sessions: int = 1000
    log_level: str = "INFO"
