"""SpecWizardサーバーの設定管理。"""

from pathlib import Path

from pydantic_settings import BaseSettings

_PACKAGE_ROOT = Path(__file__).parent
_REPO_ROOT = _PACKAGE_ROOT.parent.parent


class ServerConfig(BaseSettings):
    """サーバー設定。環境変数から読み込み可能。"""

    model_config = {"env_prefix": "SPECWIZARD_"}

    data_dir: Path = _REPO_ROOT / ".specwizard"
    config_dir: Path = _REPO_ROOT / "config"
    host: str = "0.0.0.0"
    port: int = 8000
    url_token: str = ""
    log_level: str = "INFO"

    # セッション有効期限
    session_ttl_days: int = 30
    magic_link_ttl_days: int = 30

    # 生成器呼び出しのレート制限（呼び出し元ごとの固定ウィンドウ）
    rate_limit_window_seconds: float = 60.0
    rate_limit_max_requests: int = 60
    rate_limit_max_tokens: int = 100_000
    rate_limit_max_attempts: int = 5

    # HTTPリクエスト単位のレート制限
    http_rate_limit_max_requests: int = 100

    # 生成器（OpenAI互換エンドポイント）
    openai_api_key: str = ""
    openai_base_url: str | None = None
    openai_model: str = "gpt-4o-mini"
    generator_timeout_seconds: float = 60.0

    # 仕様書マージに渡す直近の発言数
    merge_window_messages: int = 6

    # クライアント同期のバックストップ間隔
    sync_interval_seconds: float = 30.0
