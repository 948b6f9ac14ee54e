"""Error taxonomy and user-facing messages.

Every failure raised by the services is a ``StudioError`` subclass carrying
an ``ErrorType``, a retryable flag and the HTTP status the API answers with.
Raw provider text stays on the exception for logging; users only ever see
one of the fixed strings in ``USER_MESSAGES``.
"""
import enum
from dataclasses import dataclass

import httpx


class ErrorType(str, enum.Enum):
    NETWORK = "NETWORK"
    API = "API"
    VALIDATION = "VALIDATION"
    AUTH = "AUTH"
    QUOTA = "QUOTA"
    UNKNOWN = "UNKNOWN"


class StudioError(Exception):
    """Base exception for all studio errors."""

    error_type = ErrorType.UNKNOWN
    retryable = False
    status_code = 500
    message_key = None

    def __init__(self, message=None):
        self.message = message or self.__class__.__name__
        super().__init__(self.message)


# -- validation --------------------------------------------------------------

class ValidationError(StudioError):
    """Raised when user input is rejected at the form boundary."""

    error_type = ErrorType.VALIDATION
    status_code = 400

    def __init__(self, message, errors=None):
        self.errors = errors or {}
        super().__init__(message)


class UnsupportedAspectRatioError(ValidationError):
    message_key = "unsupported_aspect"

    def __init__(self, aspect_ratio, supported):
        self.aspect_ratio = aspect_ratio
        self.supported = tuple(supported)
        super().__init__(
            f"Aspect ratio {aspect_ratio} is not supported for animation "
            f"(supported: {', '.join(self.supported)})"
        )


# -- auth / quota ------------------------------------------------------------

AUTH_ERROR_CODES = (
    "auth/invalid-email",
    "auth/user-disabled",
    "auth/user-not-found",
    "auth/wrong-password",
    "auth/invalid-credential",
    "auth/email-already-in-use",
    "auth/weak-password",
    "auth/generic",
)


class AuthenticationError(StudioError):
    """Raised when the auth provider rejects a request or no user is signed in."""

    error_type = ErrorType.AUTH
    status_code = 401

    def __init__(self, code="auth/generic", message=None):
        self.code = code
        if code in AUTH_ERROR_CODES:
            self.message_key = code
        super().__init__(message or code)


class MissingCredentialError(StudioError):
    error_type = ErrorType.AUTH
    status_code = 503
    message_key = "missing_api_key"

    def __init__(self):
        super().__init__(
            "API key is not available. Set GEMINI_API_KEY, GEMINI_API_KEY_FILE "
            "or send an X-Goog-Api-Key header."
        )


class NoCreditsError(StudioError):
    error_type = ErrorType.QUOTA
    status_code = 402

    def __init__(self, account_id):
        self.account_id = account_id
        super().__init__(f"NO_CREDITS for account {account_id}")


# -- provider ----------------------------------------------------------------

class ProviderError(StudioError):
    """Raised when the image or video provider rejects a call."""

    error_type = ErrorType.API
    status_code = 502

    def __init__(self, message, status=None):
        self.status = status
        super().__init__(message)

    @property
    def retryable(self):
        return self.status is not None and (self.status >= 500 or self.status == 429)


class ContentBlockedError(ProviderError):
    message_key = "content_blocked"

    def __init__(self, reason):
        self.reason = reason
        super().__init__(f"Request blocked by provider safety filter: {reason}")


class MalformedResponseError(ProviderError):
    pass


class OperationFailedError(ProviderError):
    pass


class VideoTimeoutError(ProviderError):
    error_type = ErrorType.NETWORK
    status_code = 504

    def __init__(self, timeout):
        self.timeout = timeout
        super().__init__(f"Video generation did not finish within {timeout:.0f}s")


# -- network -----------------------------------------------------------------

class DownloadError(StudioError):
    """Raised when generated media (image file URI or video) cannot be fetched."""

    error_type = ErrorType.NETWORK
    status_code = 502

    def __init__(self, message, status=None):
        self.status = status
        super().__init__(message)

    @property
    def retryable(self):
        return self.status is None or self.status >= 500 or self.status == 429


class ResourceFetchError(StudioError):
    """Raised when every fetch strategy for a remote resource failed."""

    error_type = ErrorType.NETWORK
    status_code = 502
    message_key = "resource_fetch"

    def __init__(self, url, failures):
        self.url = url
        self.failures = list(failures)
        root = self.failures[0][1] if self.failures else "unknown error"
        tried = "; ".join(f"{name}: {err}" for name, err in self.failures)
        super().__init__(
            f"Unable to load {url}: {root}. Tried {tried}. "
            "Check the storage server's cross-origin (CORS) configuration."
        )


class RequestCancelledError(StudioError):
    status_code = 409
    message_key = "cancelled"

    def __init__(self):
        super().__init__("Request cancelled")


# -- resources ---------------------------------------------------------------

class NotFoundError(StudioError):
    status_code = 404
    message_key = "not_found"


class HistoryNotFoundError(NotFoundError):
    def __init__(self, record_id):
        self.record_id = record_id
        super().__init__(f"History record {record_id} not found")


USER_MESSAGES = {
    "en": {
        ErrorType.NETWORK: "Network connection failed. Check your connection and try again.",
        ErrorType.API: "The image service could not complete the request. Please try again later.",
        ErrorType.VALIDATION: "Some fields are invalid. Please review the form.",
        ErrorType.AUTH: "Please sign in again to continue.",
        ErrorType.QUOTA: "You have used all of your free generations.",
        ErrorType.UNKNOWN: "An unknown error occurred. Please try again later.",
        "missing_api_key": "API key verification failed. Please select your API key and try again.",
        "content_blocked": "The request was blocked by the safety filter. Adjust the description and try again.",
        "unsupported_aspect": "Video animation only supports 16:9 and 9:16 images.",
        "resource_fetch": "The image could not be loaded. The storage server may be blocking cross-origin access.",
        "cancelled": "The request was cancelled.",
        "not_found": "The requested item was not found.",
        "auth/invalid-email": "The email address format is invalid.",
        "auth/user-disabled": "This account has been disabled. Please contact support.",
        "auth/user-not-found": "No account found. Please sign up first.",
        "auth/wrong-password": "Incorrect email or password. Please try again.",
        "auth/invalid-credential": "Incorrect email or password. Please try again.",
        "auth/email-already-in-use": "This email is already registered. Please sign in.",
        "auth/weak-password": "Password is too weak. Please use at least six characters.",
        "auth/generic": "The request failed. Please try again later.",
    },
    "zh-TW": {
        ErrorType.NETWORK: "網路連線失敗，請檢查您的網路連線後重試",
        ErrorType.API: "伺服器暫時無法回應，請稍後再試",
        ErrorType.VALIDATION: "部分欄位不正確，請檢查表單",
        ErrorType.AUTH: "請先登入後再使用",
        ErrorType.QUOTA: "您的免費生成次數已用完",
        ErrorType.UNKNOWN: "發生未知錯誤，請稍後再試",
        "missing_api_key": "API 金鑰驗證失敗，請重新選擇您的 API 金鑰後再試一次。",
        "content_blocked": "請求被安全過濾器阻擋，請調整描述後再試",
        "unsupported_aspect": "影片生成僅支援 16:9 與 9:16 的圖片",
        "resource_fetch": "無法載入圖片，這可能是 CORS 設定問題",
        "cancelled": "請求已取消",
        "not_found": "找不到指定的項目",
        "auth/invalid-email": "電子郵件格式不正確，請重新輸入。",
        "auth/user-disabled": "此帳號已被停用，請聯絡管理員。",
        "auth/user-not-found": "找不到相符的帳號，請確認是否已註冊。",
        "auth/wrong-password": "帳號或密碼錯誤，請重新確認。",
        "auth/invalid-credential": "帳號或密碼錯誤，請重新確認。",
        "auth/email-already-in-use": "此電子郵件已被註冊，請直接登入或使用其他信箱。",
        "auth/weak-password": "密碼強度不足，請至少輸入六個字元。",
        "auth/generic": "操作失敗，請稍後再試。",
    },
}
SUPPORTED_LOCALES = tuple(USER_MESSAGES)
DEFAULT_LOCALE = "en"


@dataclass
class AppError:
    type: ErrorType
    message: str
    retryable: bool
    user_message: str
    status_code: int = 500


def user_message(key, locale=DEFAULT_LOCALE):
    table = USER_MESSAGES.get(locale) or USER_MESSAGES[DEFAULT_LOCALE]
    return table.get(key) or USER_MESSAGES[DEFAULT_LOCALE][key]


def classify_error(exc, locale=DEFAULT_LOCALE):
    """Map any exception onto an AppError with a fixed user-facing message."""
    if isinstance(exc, StudioError):
        key = exc.message_key or exc.error_type
        text = user_message(key, locale)
        if isinstance(exc, ValidationError) and not exc.message_key:
            # Validation messages are written for users already
            text = exc.message
        return AppError(
            type=exc.error_type,
            message=exc.message,
            retryable=exc.retryable,
            user_message=text,
            status_code=exc.status_code,
        )
    if isinstance(exc, httpx.TransportError):
        return AppError(
            type=ErrorType.NETWORK,
            message=str(exc),
            retryable=True,
            user_message=user_message(ErrorType.NETWORK, locale),
            status_code=502,
        )
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        if status in (401, 403):
            error_type = ErrorType.AUTH
        else:
            error_type = ErrorType.API
        return AppError(
            type=error_type,
            message=str(exc),
            retryable=status >= 500,
            user_message=user_message(error_type, locale),
            status_code=502,
        )
    return AppError(
        type=ErrorType.UNKNOWN,
        message=str(exc) or exc.__class__.__name__,
        retryable=False,
        user_message=user_message(ErrorType.UNKNOWN, locale),
    )
