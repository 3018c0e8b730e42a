from __future__ import annotations


class FulfilmentError(RuntimeError):
    code = "FULFILMENT_ERROR"
    status_code = 400

    def __init__(self, message: str = "", **context):
        super().__init__(message or self.code)
        self.message = message or self.code
        self.context = context

    def to_dict(self) -> dict:
        payload = {
            "ok": False,
            "error": self.code,
            "message": self.message,
            "status": int(self.status_code),
        }
        if self.context:
            payload["context"] = dict(self.context)
        return payload


class NotFound(FulfilmentError):
    code = "NOT_FOUND"
    status_code = 404


class InvalidTransition(FulfilmentError):
    code = "INVALID_TRANSITION"
    status_code = 409


class InvalidAmount(FulfilmentError):
    code = "INVALID_AMOUNT"
    status_code = 400


class InsufficientFunds(FulfilmentError):
    code = "INSUFFICIENT_FUNDS"
    status_code = 409


class Unauthorized(FulfilmentError):
    code = "UNAUTHORIZED"
    status_code = 403


class InvalidCommand(FulfilmentError):
    code = "INVALID_COMMAND"
    status_code = 400
