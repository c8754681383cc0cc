"""
Service results.

Services never raise for expected outcomes (bad input, unknown record,
provider user errors). They return an ``Outcome`` whose ``kind`` the view
maps onto an HTTP status. Exceptions are left for genuinely unexpected
failures, which views turn into ``OPERATIONAL_FAILURE``.
"""
from dataclasses import dataclass, field
from enum import Enum

from rest_framework import status
from rest_framework.response import Response


class OutcomeKind(str, Enum):
    OK = 'ok'
    CALLER_ERROR = 'caller_error'
    NOT_FOUND = 'not_found'
    IGNORED = 'ignored'  # acknowledged but discarded (webhooks)
    OPERATIONAL_FAILURE = 'operational_failure'


HTTP_STATUS = {
    OutcomeKind.OK: status.HTTP_200_OK,
    OutcomeKind.CALLER_ERROR: status.HTTP_400_BAD_REQUEST,
    OutcomeKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    OutcomeKind.IGNORED: status.HTTP_200_OK,
    OutcomeKind.OPERATIONAL_FAILURE: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


@dataclass(frozen=True)
class Outcome:
    kind: OutcomeKind
    data: dict = field(default_factory=dict)
    error: str = None
    details: list = None

    @classmethod
    def ok(cls, **data):
        return cls(OutcomeKind.OK, data=data)

    @classmethod
    def ignored(cls, reason):
        return cls(OutcomeKind.IGNORED, data={'reason': reason})

    @classmethod
    def caller_error(cls, error, details=None):
        return cls(OutcomeKind.CALLER_ERROR, error=error, details=details)

    @classmethod
    def not_found(cls, error):
        return cls(OutcomeKind.NOT_FOUND, error=error)

    @classmethod
    def failure(cls, error):
        return cls(OutcomeKind.OPERATIONAL_FAILURE, error=error)

    @property
    def is_ok(self):
        return self.kind in (OutcomeKind.OK, OutcomeKind.IGNORED)

    @property
    def http_status(self):
        return HTTP_STATUS[self.kind]

    def to_response(self):
        if self.is_ok:
            body = {'success': True}
            body.update(self.data)
        else:
            body = {'error': self.error}
            if self.details:
                body['details'] = self.details
        return Response(body, status=self.http_status)
