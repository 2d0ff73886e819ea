"""
errors.py — AppError base class and error code registry.

Every error returned by the PayBack ledger API must use a code defined here.
Do not raise strings or generic exceptions from service or route code.

Rules:
  - New error codes require: add constant here + map it in ErrorCode.KIND + add test
  - Error codes are a versioned contract. They do not change once published.
  - Error messages are human-readable prose. They may be improved at any time.
  - Never conflate 401 (unauthenticated) with 403 (unauthorized).
  - Linking conflicts are surfaced as named codes (SELF_CLAIM, ALIAS_CYCLE, ...)
    rather than a generic 409 so clients and tests can branch on the cause.
"""

from __future__ import annotations


class AppError(Exception):

    def __init__(
            self,
            code: str,
            message: str,
            http_status: int,
            field: str | None = None,
    ) -> None:
        super().__init__(message)
        self.code        = code
        self.message     = message
        self.http_status = http_status
        self.field       = field  # which request field caused the error

    @property
    def kind(self) -> str:
        """Coarse error category (NotFound, Conflict, Expired, ...)."""
        return ErrorCode.kind_of(self.code)

    def to_dict(self) -> dict:
        payload = {
            "code":    self.code,
            "kind":    self.kind,
            "message": self.message,
        }
        if self.field is not None:
            payload["field"] = self.field
        return {"error": payload}

    def __repr__(self) -> str:
        return (
            f"AppError(code={self.code!r}, "
            f"http_status={self.http_status}, "
            f"message={self.message!r})"
        )


# ── Error Code Registry ────────────────────────────────────────────────────
#
# Organised by category. HTTP status is indicated in the comment.
#
# IMPORTANT: these are the string values sent in the API response.
# Do not rename them without a major version bump.
# ──────────────────────────────────────────────────────────────────────────

class ErrorCode:

    # ── Schema / Input Errors (400) ────────────────────────────────────────
    MISSING_FIELD              = "MISSING_FIELD"
    INVALID_FIELD              = "INVALID_FIELD"
    INVALID_AMOUNT_PRECISION   = "INVALID_AMOUNT_PRECISION"
    INVALID_SPLIT_MODE         = "INVALID_SPLIT_MODE"
    INVALID_DELETE_SCOPE       = "INVALID_DELETE_SCOPE"
    SPLITS_SENT_FOR_EQUAL_MODE = "SPLITS_SENT_FOR_EQUAL_MODE"
    DUPLICATE_SPLIT_MEMBER     = "DUPLICATE_SPLIT_MEMBER"

    # ── Auth Errors ────────────────────────────────────────────────────────
    # 401 = we do not know who you are (unauthenticated)
    # 403 = we know who you are, but you are not allowed
    TOKEN_MISSING              = "TOKEN_MISSING"          # 401
    TOKEN_INVALID              = "TOKEN_INVALID"          # 401
    TOKEN_EXPIRED              = "TOKEN_EXPIRED"          # 401
    FORBIDDEN                  = "FORBIDDEN"              # 403

    # ── Not Found Errors (404) ─────────────────────────────────────────────
    ACCOUNT_NOT_FOUND          = "ACCOUNT_NOT_FOUND"
    INVITE_NOT_FOUND           = "INVITE_NOT_FOUND"
    LINK_REQUEST_NOT_FOUND     = "LINK_REQUEST_NOT_FOUND"
    FRIEND_NOT_FOUND           = "FRIEND_NOT_FOUND"
    GROUP_NOT_FOUND            = "GROUP_NOT_FOUND"
    EXPENSE_NOT_FOUND          = "EXPENSE_NOT_FOUND"

    # ── Linking Conflicts (409) ────────────────────────────────────────────
    SELF_CLAIM                 = "SELF_CLAIM"
    ALIAS_CONFLICT             = "ALIAS_CONFLICT"         # re-pointing an existing alias
    ALIAS_CYCLE                = "ALIAS_CYCLE"
    ALREADY_LINKED             = "ALREADY_LINKED"         # target bound to another account
    ALREADY_CLAIMED            = "ALREADY_CLAIMED"        # token already consumed
    FRIEND_ALREADY_LINKED      = "FRIEND_ALREADY_LINKED"  # unlinked-merge touched a linked row
    LINK_REQUEST_NOT_PENDING   = "LINK_REQUEST_NOT_PENDING"
    CONCURRENT_WRITE_CONFLICT  = "CONCURRENT_WRITE_CONFLICT"

    # ── Expired (410) ──────────────────────────────────────────────────────
    INVITE_EXPIRED             = "INVITE_EXPIRED"
    LINK_REQUEST_EXPIRED       = "LINK_REQUEST_EXPIRED"

    # ── Business Rule Violations (422) ────────────────────────────────────
    PAYER_NOT_MEMBER           = "PAYER_NOT_MEMBER"
    SPLIT_MEMBER_NOT_MEMBER    = "SPLIT_MEMBER_NOT_MEMBER"
    SPLIT_SUM_MISMATCH         = "SPLIT_SUM_MISMATCH"
    NOT_DIRECT_FRIEND          = "NOT_DIRECT_FRIEND"
    EXPENSE_DELETED            = "EXPENSE_DELETED"

    # ── System Errors (500) ────────────────────────────────────────────────
    INTERNAL_ERROR             = "INTERNAL_ERROR"

    # Coarse taxonomy exposed as `error.kind`. Codes not listed (the 400
    # schema codes) are InvalidInput.
    KIND: dict[str, str] = {
        TOKEN_MISSING:             "Unauthenticated",
        TOKEN_INVALID:             "Unauthenticated",
        TOKEN_EXPIRED:             "Unauthenticated",
        FORBIDDEN:                 "Forbidden",
        ACCOUNT_NOT_FOUND:         "NotFound",
        INVITE_NOT_FOUND:          "NotFound",
        LINK_REQUEST_NOT_FOUND:    "NotFound",
        FRIEND_NOT_FOUND:          "NotFound",
        GROUP_NOT_FOUND:           "NotFound",
        EXPENSE_NOT_FOUND:         "NotFound",
        SELF_CLAIM:                "Conflict",
        ALIAS_CONFLICT:            "Conflict",
        ALIAS_CYCLE:               "Conflict",
        FRIEND_ALREADY_LINKED:     "Conflict",
        LINK_REQUEST_NOT_PENDING:  "Conflict",
        CONCURRENT_WRITE_CONFLICT: "Conflict",
        ALREADY_LINKED:            "AlreadyLinked",
        ALREADY_CLAIMED:           "AlreadyClaimed",
        INVITE_EXPIRED:            "Expired",
        LINK_REQUEST_EXPIRED:      "Expired",
        PAYER_NOT_MEMBER:          "BusinessRule",
        SPLIT_MEMBER_NOT_MEMBER:   "BusinessRule",
        SPLIT_SUM_MISMATCH:        "BusinessRule",
        NOT_DIRECT_FRIEND:         "BusinessRule",
        EXPENSE_DELETED:           "BusinessRule",
        INTERNAL_ERROR:            "Internal",
    }

    @classmethod
    def kind_of(cls, code: str) -> str:
        """Returns the taxonomy kind for `code`; unknown codes are InvalidInput."""
        return cls.KIND.get(code, "InvalidInput")

    @classmethod
    def all_codes(cls) -> set[str]:
        """Every registered code string (used to recognise codes in validation messages)."""
        return {
            value
            for name, value in vars(cls).items()
            if name.isupper() and isinstance(value, str)
        }


# ── Warning Code Registry ──────────────────────────────────────────────────
#
# Warnings are returned alongside a 2xx response in the `warnings` array.
# They do not block the request.
# ──────────────────────────────────────────────────────────────────────────

class WarningCode:

    # A linked friend row pointed at an account that no longer exists; the
    # row was returned demoted to unlinked.
    STALE_FRIEND_LINK = "STALE_FRIEND_LINK"

    # The claim pipeline left an existing link to a different account in place.
    FRIEND_LINK_PRESERVED = "FRIEND_LINK_PRESERVED"
