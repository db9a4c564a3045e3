"""SpecWizardのカスタム例外クラス。"""


class SpecWizardError(Exception):
    """SpecWizardの基底例外クラス。"""


class SessionNotFoundError(SpecWizardError):
    """セッションが存在しない、または有効期限切れの場合の例外。"""

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session not found: {session_id}")
        self.session_id = session_id


class SubmissionNotFoundError(SpecWizardError):
    """提出記録が見つからない場合の例外。"""

    def __init__(self, key: str) -> None:
        super().__init__(f"Submission not found: {key}")
        self.key = key


class InvalidTokenError(SpecWizardError):
    """復元トークンが存在しない、または有効期限切れの場合の例外。"""

    def __init__(self, token: str) -> None:
        super().__init__("Invalid or expired magic link token")
        self.token = token


class InputValidationError(SpecWizardError):
    """連絡先情報や仕様書の必須セクションが不正な場合の例外。"""

    def __init__(self, message: str, errors: list[str]) -> None:
        super().__init__(f"{message}: {'; '.join(errors)}")
        self.errors = errors


class SessionClosedError(SpecWizardError):
    """アクティブでないセッションへの発言を拒否する例外。"""

    def __init__(self, session_id: str, status: str) -> None:
        super().__init__(f"Session {session_id} is {status} and no longer accepts messages")
        self.session_id = session_id
        self.status = status


class SessionAlreadySubmittedError(SpecWizardError):
    """同一セッションで二重提出しようとした場合の例外。"""

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session already submitted: {session_id}")
        self.session_id = session_id


class StorageError(SpecWizardError):
    """ストレージ操作のエラー。"""


class StorageUnavailableError(StorageError):
    """ストレージに到達できない場合の例外。"""


class GeneratorError(SpecWizardError):
    """外部生成器（LLM）の呼び出し失敗、または利用不能な出力。"""


class RateLimitedError(SpecWizardError):
    """レート制限の予算を超過した場合の例外。"""

    def __init__(self, identity: str, budget: str, retry_after: float) -> None:
        super().__init__(f"Rate limit exceeded for {identity} ({budget} budget); retry after {retry_after:.1f}s")
        self.identity = identity
        self.budget = budget
        self.retry_after = retry_after
