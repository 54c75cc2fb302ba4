"""JSON-RPC contract relay client."""

import itertools
from typing import Any

import aiohttp
import msgspec
import structlog

from tokenmarket.core.config import settings
from tokenmarket.core.logging import Logger
from tokenmarket.exceptions import GatewayError

logger: Logger = structlog.get_logger()

CALL_METHOD = "contract_call"
SEND_METHOD = "contract_send"

# Larger integers (wei amounts) travel as decimal strings
MAX_JSON_INT = 2**53 - 1


class RPCError(msgspec.Struct, frozen=True):
    code: int = 0
    message: str = ""


class RPCResponse(msgspec.Struct, frozen=True):
    id: int | str | None = None
    result: Any = None
    error: RPCError | None = None


_encoder = msgspec.json.Encoder()
_decoder = msgspec.json.Decoder(RPCResponse)


class HTTPLedgerTransport:
    """
    Ledger transport talking JSON-RPC 2.0 to a contract relay node.

    The relay owns ABI encoding and signing: reads go out as
    `contract_call {to, function, args}` and writes as
    `contract_send {to, function, args, from, value}`.

    Lifecycle:
        1. Create with relay URL and contract address
        2. Calls lazily open a shared aiohttp session
        3. Call close() on teardown
    """

    __slots__ = ("_url", "_contract", "_timeout", "_session", "_ids")

    def __init__(
        self,
        url: str | None = None,
        contract_address: str | None = None,
        timeout: float | None = None,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self._url = url or settings.LEDGER_URL
        self._contract = contract_address or settings.CONTRACT_ADDRESS
        self._timeout = aiohttp.ClientTimeout(
            total=timeout if timeout is not None else settings.REQUEST_TIMEOUT
        )
        self._session = session
        self._ids = itertools.count(1)

    async def call(self, function: str, *args: Any) -> Any:
        params = {"to": self._contract, "function": function, "args": _wire_args(args)}
        return await self._request(CALL_METHOD, params, function)

    async def send(
        self, function: str, *args: Any, sender: str, value: int = 0
    ) -> str:
        params = {
            "to": self._contract,
            "function": function,
            "args": _wire_args(args),
            "from": sender,
            "value": hex(value),
        }
        result = await self._request(SEND_METHOD, params, function)

        if isinstance(result, dict):
            result = result.get("transactionHash", "")

        return str(result)

    async def close(self) -> None:
        if self._session:
            await self._session.close()
            self._session = None

    async def _request(self, method: str, params: dict[str, Any], function: str) -> Any:
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=self._timeout)

        payload = _encoder.encode(
            {
                "jsonrpc": "2.0",
                "id": next(self._ids),
                "method": method,
                "params": [params],
            }
        )

        try:
            async with self._session.post(
                self._url,
                data=payload,
                headers={"Content-Type": "application/json"},
            ) as response:
                response.raise_for_status()
                body = await response.read()

        except (aiohttp.ClientError, TimeoutError) as e:
            raise GatewayError(
                f"Relay request {method}:{function} failed: {e}", function=function
            ) from e

        try:
            decoded = _decoder.decode(body)
        except msgspec.DecodeError as e:
            raise GatewayError(
                f"Malformed relay response for {function}: {e}", function=function
            ) from e

        if decoded.error is not None:
            raise GatewayError(
                f"{function} rejected ({decoded.error.code}): {decoded.error.message}",
                function=function,
            )

        return decoded.result


def _wire_args(args: tuple[Any, ...]) -> list[Any]:
    return [
        str(arg)
        if isinstance(arg, int) and not isinstance(arg, bool) and abs(arg) > MAX_JSON_INT
        else arg
        for arg in args
    ]
