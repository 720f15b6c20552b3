from __future__ import annotations


class CRMError(Exception):
    """Base class for business-rule and lookup failures raised by CRM services.

    ``code`` is stable and user-facing; ``status_code`` is only consulted by the
    HTTP layer when it renders the error envelope.
    """

    code = "CRM_ERROR"
    status_code = 400

    def __init__(self, message: str, details: object | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class DisplayIdError(CRMError, ValueError):
    code = "DISPLAY_ID_INVALID"


class DisplayIdOutOfRange(DisplayIdError):
    code = "DISPLAY_ID_OUT_OF_RANGE"


class InvalidDisplayIdFormat(DisplayIdError):
    code = "DISPLAY_ID_INVALID_FORMAT"


class InvalidDisplayIdLetter(DisplayIdError):
    code = "DISPLAY_ID_INVALID_LETTER"


class InvalidDisplayIdNumber(DisplayIdError):
    code = "DISPLAY_ID_INVALID_NUMBER"


class NotFound(CRMError):
    code = "NOT_FOUND"
    status_code = 404


class AuditEntryNotFound(NotFound):
    code = "AUDIT_ENTRY_NOT_FOUND"


class HumanNotFound(NotFound):
    code = "HUMAN_NOT_FOUND"


class AccountNotFound(NotFound):
    code = "ACCOUNT_NOT_FOUND"


class OpportunityNotFound(NotFound):
    code = "OPPORTUNITY_NOT_FOUND"


class OpportunityLinkNotFound(NotFound):
    code = "OPPORTUNITY_LINK_NOT_FOUND"


class NoChangesToUndo(CRMError):
    code = "NO_CHANGES_TO_UNDO"


class UndoNotSupported(CRMError):
    code = "UNDO_NOT_SUPPORTED"


class LossReasonRequired(CRMError):
    code = "OPPORTUNITY_LOSS_REASON_REQUIRED"


class NextActionRequired(CRMError):
    code = "OPPORTUNITY_NEXT_ACTION_REQUIRED"


class PrimaryRequired(CRMError):
    code = "OPPORTUNITY_PRIMARY_REQUIRED"


class NoNextAction(CRMError):
    code = "OPPORTUNITY_NO_NEXT_ACTION"
