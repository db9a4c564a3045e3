"""FastMCPベースのMCPサーバーエントリポイント。"""

from fastmcp import FastMCP
from starlette.requests import Request
from starlette.responses import JSONResponse

from specwizard.config import ServerConfig
from specwizard.generator.base import TextGenerator
from specwizard.generator.openai_client import OpenAIGenerator
from specwizard.prompts.interview import register_interview_prompts
from specwizard.resources.progress import register_progress_resources
from specwizard.services.conversation import ConversationService
from specwizard.services.merge import SpecificationMergeEngine
from specwizard.services.progress import ProgressTracker
from specwizard.services.rate_limit import RateLimitedGenerator, RateLimiter
from specwizard.services.session import SessionManager
from specwizard.services.submission import SubmissionService
from specwizard.storage.base import RecordStore
from specwizard.storage.service import FileRecordStore
from specwizard.tools.conversation import register_conversation_tools
from specwizard.tools.session import register_session_tools
from specwizard.tools.submission import register_submission_tools


def create_server(
    config: ServerConfig | None = None,
    *,
    generator: TextGenerator | None = None,
    store: RecordStore | None = None,
) -> FastMCP:
    """SpecWizard MCPサーバーを作成し、ツール・リソース・プロンプトを登録する。

    Args:
        config: サーバー設定。Noneの場合はデフォルト設定を使用。
        generator: テキスト生成器。Noneの場合はOpenAI互換エンドポイントを使用。
        store: レコードストア。Noneの場合はdata_dir配下のファイルストアを使用。

    Returns:
        設定済みのFastMCPインスタンス。
    """
    if config is None:
        config = ServerConfig()

    mcp = FastMCP("specwizard")

    # データアクセス層
    if store is None:
        store = FileRecordStore(data_dir=config.data_dir)

    # 生成器（全呼び出しにレート制限とバックオフを適用）
    if generator is None:
        generator = OpenAIGenerator(
            api_key=config.openai_api_key,
            model=config.openai_model,
            base_url=config.openai_base_url,
            timeout=config.generator_timeout_seconds,
        )
    limiter = RateLimiter(
        window_seconds=config.rate_limit_window_seconds,
        max_requests=config.rate_limit_max_requests,
        max_tokens=config.rate_limit_max_tokens,
    )
    limited_generator = RateLimitedGenerator(generator, limiter, max_attempts=config.rate_limit_max_attempts)

    # サービス層
    progress_tracker = ProgressTracker(config_dir=config.config_dir)
    session_manager = SessionManager(
        store,
        session_ttl_days=config.session_ttl_days,
        magic_link_ttl_days=config.magic_link_ttl_days,
    )
    merge_engine = SpecificationMergeEngine(limited_generator, progress_tracker)
    conversation_service = ConversationService(
        session_manager,
        merge_engine,
        progress_tracker,
        limited_generator,
        merge_window=config.merge_window_messages,
    )
    submission_service = SubmissionService(store, session_manager, progress_tracker)

    # MCPインターフェース登録
    register_session_tools(mcp, session_manager, progress_tracker)
    register_conversation_tools(mcp, conversation_service)
    register_submission_tools(mcp, submission_service)
    register_progress_resources(mcp, config.config_dir)
    register_interview_prompts(mcp)

    # ヘルスチェックエンドポイント
    @mcp.custom_route("/health", methods=["GET"])
    async def health_check(request: Request) -> JSONResponse:
        return JSONResponse({"status": "ok"})

    return mcp
