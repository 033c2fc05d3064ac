from __future__ import annotations

"""Error taxonomy for the assistant engine.

Each error carries the HTTP status the API layer maps it to. Messages are
user-facing (Vietnamese) and never include request content.
"""


class AssistantError(Exception):
    """Base class for errors surfaced to the caller."""

    status_code = 500
    default_message = "Đã có lỗi xảy ra. Vui lòng thử lại."

    def __init__(self, message: str = "") -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class ConfigurationError(AssistantError):
    """LLM credentials are missing; the assistant is disabled."""

    status_code = 503
    default_message = "AI chưa được cấu hình (thiếu GEMINI_API_KEY)"


class UpstreamError(AssistantError):
    """The LLM provider returned a non-success response."""

    status_code = 502
    default_message = "Không thể gọi Gemini. Vui lòng thử lại."


class MalformedResponseError(AssistantError):
    """The LLM returned text that could not be parsed as the expected JSON shape.

    Always recovered locally by the caller; never reaches the API layer.
    """

    status_code = 502
    default_message = "Phản hồi AI không đúng định dạng"


class ImageFetchError(AssistantError):
    status_code = 400
    default_message = "Không tải được ảnh để phân tích"


class NotFoundError(AssistantError):
    status_code = 404
    default_message = "Hành động đã hết hạn hoặc không tồn tại"


class AuthorizationError(AssistantError):
    status_code = 403
    default_message = "Hành động không thuộc về người dùng này"


class ExpiredError(AssistantError):
    status_code = 400
    default_message = "Hành động đã hết hạn"


class UnsupportedActionError(AssistantError):
    status_code = 400
    default_message = "Loại hành động không được hỗ trợ"


class CartError(AssistantError):
    """Cart mutation rejected by the cart collaborator (missing product, no stock)."""

    status_code = 400
    default_message = "Không thể thêm sản phẩm vào giỏ hàng"
