"""Custom exceptions for tracker2notion."""


class Tracker2NotionError(Exception):
    """Base exception for all tracker2notion errors."""


class ConfigurationError(Tracker2NotionError):
    """Configuration or environment variable error."""


class UnauthenticatedError(Tracker2NotionError):
    """Caller identity is missing or no longer valid."""

    def __init__(self, message: str = "User must be authenticated"):
        super().__init__(message)


class InvalidArgumentError(Tracker2NotionError):
    """A required argument is missing or malformed."""


class InvalidParentError(InvalidArgumentError):
    """Parent page for a new database is missing or not shared with the integration."""

    def __init__(self, parent_id: str | None, message: str | None = None):
        self.parent_id = parent_id
        super().__init__(
            message
            or "A parent page ID is required. Create a Notion page and share it "
            "with your integration first."
        )


class TemplateNotFoundError(InvalidArgumentError):
    """No schema template with the requested id."""

    def __init__(self, template_id: str):
        self.template_id = template_id
        super().__init__(f"Template not found: {template_id}")


class RecordNotFoundError(InvalidArgumentError):
    """No local record with the requested id for this user."""

    def __init__(self, record_id: str):
        self.record_id = record_id
        super().__init__(f"Record not found: {record_id}")


class NotionAPIError(Tracker2NotionError):
    """Notion rejected a request (any non-2xx response)."""

    def __init__(self, status_code: int | None, message: str, page_id: str | None = None):
        self.status_code = status_code
        self.message = message
        self.page_id = page_id
        if status_code is None:
            super().__init__(f"Notion API request failed: {message}")
        else:
            super().__init__(f"Notion API error ({status_code}): {message}")


class RateLimitError(NotionAPIError):
    """Rate limit exceeded error."""

    def __init__(self, retry_after: int | None = None, message: str | None = None):
        self.retry_after = retry_after
        if not message:
            message = f"Rate limited (retry after {retry_after}s)" if retry_after else "Rate limited"
        super().__init__(429, message)


class DataIntegrityError(Tracker2NotionError):
    """A remote page cannot be matched or cached (it has no usable page id)."""

    def __init__(self, detail: str, page: dict | None = None):
        self.page = page
        super().__init__(f"Data integrity violation: {detail}")


class PushFailedError(Tracker2NotionError):
    """Error pushing a new record to Notion."""

    def __init__(self, record, original_error: Exception):
        self.record = record
        self.original_error = original_error
        super().__init__(f"Failed to push record {record.id}: {original_error}")


class ArchiveFailedError(Tracker2NotionError):
    """Notion page could not be archived; the local record was kept."""

    def __init__(self, record_id: str, remote_id: str, original_error: Exception):
        self.record_id = record_id
        self.remote_id = remote_id
        self.original_error = original_error
        super().__init__(
            f"Failed to archive Notion page {remote_id} for record {record_id}; "
            f"the Notion copy still exists: {original_error}"
        )
