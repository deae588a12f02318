class SigningError(Exception):
    """Base class for failures that abort a signing operation."""

    status_code = 400


class DocumentLoadError(SigningError):
    """The PDF input is empty, malformed or has no pages."""


class PageIndexError(SigningError):
    status_code = 422

    def __init__(self, page_index: int, page_count: int):
        self.page_index = page_index
        self.page_count = page_count
        super().__init__(f"page index {page_index} out of range for a {page_count}-page document")


class ImageDecodeError(SigningError):
    """The signature data is not a PNG or JPEG image."""


class GeometryUnavailableError(SigningError):
    """No rendering surface was reported and no estimate is configured."""

    status_code = 422


class QuotaExceededError(Exception):
    status_code = 403

    def __init__(self, status):
        self.status = status
        super().__init__(
            f"Signature limit exceeded. Plan: {status.plan}. "
            f"Max signatures: {status.max_signatures} per {status.period}."
        )
