"""テスト共通フィクスチャ。"""

from pathlib import Path

import pytest
from helpers import FakeClock, ScriptedGenerator

from specwizard.config import ServerConfig
from specwizard.services.conversation import ConversationService
from specwizard.services.merge import SpecificationMergeEngine
from specwizard.services.progress import ProgressTracker
from specwizard.services.session import SessionManager
from specwizard.services.submission import SubmissionService
from specwizard.storage.service import FileRecordStore


@pytest.fixture
def tmp_data_dir(tmp_path: Path) -> Path:
    """テスト用の一時データディレクトリ。"""
    return tmp_path / "specwizard-test"


@pytest.fixture
def config_dir() -> Path:
    """設定ファイルディレクトリ。"""
    return Path(__file__).parent.parent / "config"


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(tmp_data_dir: Path, clock: FakeClock) -> FileRecordStore:
    """テスト用FileRecordStore。"""
    return FileRecordStore(data_dir=tmp_data_dir, clock=clock)


@pytest.fixture
def progress_tracker(config_dir: Path) -> ProgressTracker:
    """テスト用ProgressTracker。"""
    return ProgressTracker(config_dir=config_dir)


@pytest.fixture
def session_manager(store: FileRecordStore, clock: FakeClock) -> SessionManager:
    """テスト用SessionManager。"""
    return SessionManager(store, clock=clock)


@pytest.fixture
def generator() -> ScriptedGenerator:
    return ScriptedGenerator()


@pytest.fixture
def merge_engine(
    generator: ScriptedGenerator,
    progress_tracker: ProgressTracker,
    clock: FakeClock,
) -> SpecificationMergeEngine:
    """テスト用SpecificationMergeEngine。"""
    return SpecificationMergeEngine(generator, progress_tracker, clock)


@pytest.fixture
def conversation_service(
    session_manager: SessionManager,
    merge_engine: SpecificationMergeEngine,
    progress_tracker: ProgressTracker,
    generator: ScriptedGenerator,
) -> ConversationService:
    """テスト用ConversationService。"""
    return ConversationService(session_manager, merge_engine, progress_tracker, generator)


@pytest.fixture
def submission_service(
    store: FileRecordStore,
    session_manager: SessionManager,
    progress_tracker: ProgressTracker,
    clock: FakeClock,
) -> SubmissionService:
    """テスト用SubmissionService。"""
    return SubmissionService(store, session_manager, progress_tracker, clock)


@pytest.fixture
def server_config(tmp_data_dir: Path, config_dir: Path) -> ServerConfig:
    """テスト用ServerConfig。"""
    return ServerConfig(data_dir=tmp_data_dir, config_dir=config_dir)
