"""gRPC client for a lint engine.

Engines expose a single unary method::

    service LintProto {
        rpc SendLint (LintRequest) returns (LintReply) {}
    }

Both messages carry one string field numbered 1. ``StringValue`` has the same
wire layout, so no generated stubs are needed.
"""

from __future__ import annotations

import logging

import grpc
import pydantic
from google.protobuf.wrappers_pb2 import StringValue
from pydantic import TypeAdapter

from lintflow_core.errors import DecodeError, TransportError
from lintflow_core.models import Finding, LintEngineConfig

logger = logging.getLogger(__name__)

SEND_LINT_METHOD = "/lint.LintProto/SendLint"

# Per call, measured from call start; covers waiting for the connection too.
RPC_TIMEOUT = 1.0

_REPLY = TypeAdapter(dict[str, list[Finding] | None])


def parse_reply(message: str) -> list[Finding]:
    """Flatten an engine reply ``{group: [finding, ...]}`` into one list.

    Group keys are dropped. Groups and findings keep their reply order. A
    ``null`` group counts as empty.
    """
    try:
        groups = _REPLY.validate_json(message)
    except pydantic.ValidationError as e:
        raise DecodeError("failed to unmarshal lint reply") from e
    return [finding for findings in groups.values() if findings for finding in findings]


class LintClient:
    def __init__(self, engine: LintEngineConfig, timeout: float = RPC_TIMEOUT):
        self.engine = engine
        self.timeout = timeout

    def send(self, payload: str) -> list[Finding]:
        """Send one JSON payload to the engine and return its findings.

        The channel is closed on every exit path.
        """
        logger.debug("Sending %d byte(s) to %s at %s", len(payload), self.engine.name, self.engine.address)
        with grpc.insecure_channel(self.engine.address) as channel:
            send_lint = channel.unary_unary(
                SEND_LINT_METHOD,
                request_serializer=StringValue.SerializeToString,
                response_deserializer=StringValue.FromString,
            )
            try:
                reply = send_lint(StringValue(value=payload), timeout=self.timeout, wait_for_ready=True)
            except grpc.RpcError as e:
                status = e.code().name if isinstance(e, grpc.Call) else type(e).__name__
                raise TransportError(f"failed to send: {status}") from e
        return parse_reply(reply.value)
