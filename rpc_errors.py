from typing import Any, Optional


class RpcError(Exception):
    # True when re-issuing the same request later may succeed
    temporary = False


class TransportRetryable(RpcError):
    temporary = True

    def __init__(self, method: str, status: int):
        super().__init__(f"Rate/Service error {status} on {method}")
        self.method = method
        self.status = status


class TransportFailure(RpcError):
    def __init__(
        self,
        method: str,
        status: Optional[int] = None,
        cause: Optional[BaseException] = None,
        message: Optional[str] = None,
    ):
        if message is None:
            if status is not None:
                message = f"RPC {method} failed {status}"
            else:
                message = f"RPC {method} failed: {type(cause).__name__}: {cause}"
        super().__init__(message)
        self.method = method
        self.status = status
        self.cause = cause


class RetriesExhausted(TransportFailure):
    temporary = True

    def __init__(self, method: str, attempts: int, last_error: RpcError):
        status = getattr(last_error, "status", None)
        super().__init__(
            method,
            status=status,
            cause=last_error,
            message=f"RPC {method} gave up after {attempts} attempts: {last_error}",
        )
        self.attempts = attempts
        self.last_error = last_error


class ApplicationError(RpcError):
    def __init__(self, method: str, message: str, code: Optional[int] = None, data: Any = None):
        super().__init__(message)
        self.method = method
        self.message = message
        self.code = code
        self.data = data


class ParseError(RpcError, ValueError):
    pass


class RpcCancelled(RpcError):
    def __init__(self, method: str, reason: str = "cancelled", temporary: bool = False):
        super().__init__(f"RPC {method} {reason}")
        self.method = method
        self.reason = reason
        # deadline expiry is worth retrying with a fresh budget, caller cancellation is not
        self.temporary = temporary


class DeadlineExceeded(RpcCancelled):
    def __init__(self, method: str, last_error: Optional[RpcError] = None):
        super().__init__(method, "deadline exceeded", temporary=True)
        self.last_error = last_error
