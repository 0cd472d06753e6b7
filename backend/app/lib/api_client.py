import os
from dataclasses import dataclass
from typing import Any, Callable, Optional

from supabase import Client, create_client


@dataclass(frozen=True)
class SupabaseSettings:
    """
    Supabase 连接参数。

    中文注释:
    - anon key 与前端共用；SUPABASE_KEY 为旧变量名，缺省时回退。
    - service_role key 只给需要绕过 RLS 的服务端写操作（原子分配、通知、日志）。
    """

    url: str
    anon_key: str
    service_role_key: str

    @staticmethod
    def from_env() -> "SupabaseSettings":
        return SupabaseSettings(
            url=(os.environ.get("SUPABASE_URL") or "").strip(),
            anon_key=(os.environ.get("SUPABASE_ANON_KEY") or os.environ.get("SUPABASE_KEY") or "").strip(),
            service_role_key=(os.environ.get("SUPABASE_SERVICE_ROLE_KEY") or "").strip(),
        )

    def require_url(self) -> str:
        if not self.url:
            raise RuntimeError("SUPABASE_URL is required")
        return self.url

    def require_anon_key(self) -> str:
        if not self.anon_key:
            raise RuntimeError("SUPABASE_ANON_KEY or SUPABASE_KEY is required")
        return self.anon_key

    def require_admin_key(self) -> str:
        key = self.service_role_key or self.anon_key
        if not key:
            raise RuntimeError("SUPABASE_SERVICE_ROLE_KEY (or SUPABASE_KEY) is required")
        return key


class _LazySupabaseClient:
    """
    首次访问属性时才创建 Client，缺少环境变量也能 import 本模块。
    """

    def __init__(self, factory: Callable[[SupabaseSettings], Client], *, name: str):
        self._factory = factory
        self._name = name
        self._client: Optional[Client] = None

    def _get(self) -> Client:
        if self._client is None:
            self._client = self._factory(SupabaseSettings.from_env())
        return self._client

    def reset(self) -> None:
        self._client = None

    def __getattr__(self, item: str) -> Any:
        return getattr(self._get(), item)

    def __repr__(self) -> str:
        state = "ready" if self._client is not None else "lazy"
        return f"<{self._name} ({state})>"


def _anon_client(settings: SupabaseSettings) -> Client:
    return create_client(settings.require_url(), settings.require_anon_key())


def _admin_client(settings: SupabaseSettings) -> Client:
    return create_client(settings.require_url(), settings.require_admin_key())


supabase: Client = _LazySupabaseClient(_anon_client, name="supabase")  # type: ignore[assignment]

supabase_admin: Client = _LazySupabaseClient(_admin_client, name="supabase_admin")  # type: ignore[assignment]


def create_user_supabase_client(access_token: str) -> Client:
    """
    以调用者身份访问 PostgREST，让 RLS 按当前账户生效。

    中文注释: 每个请求单独建 client，共享实例上切换 token 会在并发请求间串号。
    """
    client = _anon_client(SupabaseSettings.from_env())
    client.postgrest.auth(access_token)
    return client


def rows(response: Any) -> list[dict]:
    data = getattr(response, "data", None)
    if data is None:
        return []
    if isinstance(data, dict):
        return [data]
    return list(data)
