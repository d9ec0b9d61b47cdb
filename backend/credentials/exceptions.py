from __future__ import annotations


class CredentialRenderError(Exception):
    def __init__(self, detail: str, *, status_code: int = 400):
        super().__init__(detail)
        self.detail = detail
        self.status_code = status_code


class PrintBatchError(Exception):
    default_status_code = 400

    def __init__(self, detail: str, *, status_code: int | None = None):
        super().__init__(detail)
        self.detail = detail
        self.status_code = status_code or self.default_status_code


class PrintBatchValidationError(PrintBatchError):
    default_status_code = 400


class StorageDriftError(PrintBatchError):
    default_status_code = 409


class RetryNotAllowedError(PrintBatchError):
    default_status_code = 409
