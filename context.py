from dataclasses import dataclass
from typing import Mapping, Optional


@dataclass(frozen=True)
class RequestContext:
    """Per-request carrier for the inbound credential.

    Built once from the transport headers and passed explicitly to each
    service call, so services never read headers themselves.
    """

    credential: Optional[str] = None

    @classmethod
    def extract(cls, headers: Mapping[str, str]) -> "RequestContext":
        value = headers.get("authorization")
        if value is None:
            value = headers.get("Authorization")
        return cls(credential=value or None)
