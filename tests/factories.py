"""Builders and fakes shared by the test modules."""

import asyncio
import json
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from mev_watcher.dex import DEX_PROGRAMS
from mev_watcher.models import BalanceDelta, SwapEvent, TransactionAnalysis

T0 = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)

SOL = "So11111111111111111111111111111111111111112"
USDC = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
BONK = "DezXAZ8z7PnrnRJjz3wXBoRgixCa6xjnB7YaB1pPB263"
TOKEN_PROGRAM = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"

ATTACKER = "AtkR1111111111111111111111111111111111111111"
VICTIM = "V1ct1m11111111111111111111111111111111111111"


def at(ms: int) -> datetime:
    return T0 + timedelta(milliseconds=ms)


def swap(token_in, token_out, amount_in="10", amount_out="10", dex="raydium") -> SwapEvent:
    return SwapEvent(
        dex=dex,
        token_in=token_in,
        token_out=token_out,
        amount_in=Decimal(amount_in),
        amount_out=Decimal(amount_out),
    )


def analysis(
    signature: str,
    ms: int = 0,
    slot: int = 100,
    dexes=("raydium",),
    swaps=(),
    signer: str = "",
    deltas=(),
) -> TransactionAnalysis:
    return TransactionAnalysis(
        signature=signature,
        timestamp=at(ms),
        slot=slot,
        dex_interactions=tuple(dexes),
        swap_events=tuple(swaps),
        signer=signer,
        balance_deltas=tuple(
            BalanceDelta(owner=owner, token=token, delta=Decimal(delta))
            for owner, token, delta in deltas
        ),
    )


def token_balance(index, mint, owner, amount, decimals):
    raw = str(int(Decimal(amount).scaleb(decimals)))
    return {
        "accountIndex": index,
        "mint": mint,
        "owner": owner,
        "uiTokenAmount": {
            "amount": raw,
            "decimals": decimals,
            "uiAmountString": str(amount),
        },
    }


def spl_transfer(source, destination, amount, authority="auth"):
    return {
        "program": "spl-token",
        "programId": TOKEN_PROGRAM,
        "parsed": {
            "type": "transfer",
            "info": {
                "source": source,
                "destination": destination,
                "authority": authority,
                "amount": str(amount),
            },
        },
    }


def spl_transfer_checked(source, destination, mint, ui_amount, decimals, authority="auth"):
    return {
        "program": "spl-token",
        "programId": TOKEN_PROGRAM,
        "parsed": {
            "type": "transferChecked",
            "info": {
                "source": source,
                "destination": destination,
                "authority": authority,
                "mint": mint,
                "tokenAmount": {
                    "amount": str(int(Decimal(ui_amount).scaleb(decimals))),
                    "decimals": decimals,
                    "uiAmountString": str(ui_amount),
                },
            },
        },
    }


def program_call(program):
    return {"programId": program, "accounts": [], "data": "3Bxs4h24hBtQy9rw", "stackHeight": 2}


def raydium_swap_tx(signer=ATTACKER, slot=250, block_time=1714564800):
    """A direct Raydium swap of 2 SOL for 1500 BONK."""
    user_sol, user_bonk = "UserSoLAta1111", "UserBonkAta111"
    pool_sol, pool_bonk = "PoolSoLVault11", "PoolBonkVault1"
    pool = "PoolAuthority1"
    return {
        "slot": slot,
        "blockTime": block_time,
        "transaction": {
            "signatures": ["sig"],
            "message": {
                "accountKeys": [
                    {"pubkey": signer, "signer": True, "writable": True},
                    {"pubkey": user_sol, "signer": False, "writable": True},
                    {"pubkey": user_bonk, "signer": False, "writable": True},
                    {"pubkey": pool_sol, "signer": False, "writable": True},
                    {"pubkey": pool_bonk, "signer": False, "writable": True},
                    {"pubkey": DEX_PROGRAMS["raydium"], "signer": False, "writable": False},
                    {"pubkey": TOKEN_PROGRAM, "signer": False, "writable": False},
                ],
                "instructions": [
                    {"programId": DEX_PROGRAMS["raydium"], "accounts": [], "data": "xyz"},
                ],
            },
        },
        "meta": {
            "err": None,
            "innerInstructions": [
                {
                    "index": 0,
                    "instructions": [
                        spl_transfer(user_sol, pool_sol, 2_000_000_000, authority=signer),
                        spl_transfer(pool_bonk, user_bonk, 150_000_000, authority=pool),
                    ],
                }
            ],
            "preTokenBalances": [
                token_balance(1, SOL, signer, "5", 9),
                token_balance(2, BONK, signer, "0", 5),
                token_balance(3, SOL, pool, "100", 9),
                token_balance(4, BONK, pool, "10000000", 5),
            ],
            "postTokenBalances": [
                token_balance(1, SOL, signer, "3", 9),
                token_balance(2, BONK, signer, "1500", 5),
                token_balance(3, SOL, pool, "102", 9),
                token_balance(4, BONK, pool, "9998500", 5),
            ],
        },
    }


def jupiter_cycle_tx(signer=ATTACKER, slot=300):
    """A Jupiter route: 10 USDC -> SOL on Raydium, SOL -> 10.2 USDC on Orca."""
    user_usdc, user_sol = "UserUsdcAta111", "UserSoLAta1111"
    ray_usdc, ray_sol = "RayUsdcVault11", "RaySoLVault111"
    orca_usdc, orca_sol = "OrcaUsdcVault1", "OrcaSoLVault11"
    return {
        "slot": slot,
        "blockTime": 1714564801,
        "transaction": {
            "message": {
                "accountKeys": [
                    signer,
                    user_usdc,
                    user_sol,
                    ray_usdc,
                    ray_sol,
                    orca_usdc,
                    orca_sol,
                    DEX_PROGRAMS["jupiter"],
                    DEX_PROGRAMS["raydium"],
                    DEX_PROGRAMS["orca"],
                    TOKEN_PROGRAM,
                ],
                "instructions": [
                    {"programIdIndex": 7, "accounts": [], "data": "route"},
                ],
            },
        },
        "meta": {
            "err": None,
            "innerInstructions": [
                {
                    "index": 0,
                    "instructions": [
                        program_call(DEX_PROGRAMS["raydium"]),
                        spl_transfer_checked(user_usdc, ray_usdc, USDC, "10", 6),
                        spl_transfer(ray_sol, user_sol, 70_000_000),
                        program_call(DEX_PROGRAMS["orca"]),
                        spl_transfer(user_sol, orca_sol, 70_000_000),
                        spl_transfer_checked(orca_usdc, user_usdc, USDC, "10.2", 6),
                    ],
                }
            ],
            "preTokenBalances": [
                token_balance(1, USDC, signer, "100", 6),
                token_balance(2, SOL, signer, "0", 9),
                token_balance(3, USDC, "RayPool", "5000", 6),
                token_balance(4, SOL, "RayPool", "40", 9),
                token_balance(5, USDC, "OrcaPool", "7000", 6),
                token_balance(6, SOL, "OrcaPool", "50", 9),
            ],
            "postTokenBalances": [
                token_balance(1, USDC, signer, "100.2", 6),
                token_balance(2, SOL, signer, "0", 9),
                token_balance(3, USDC, "RayPool", "5010", 6),
                token_balance(4, SOL, "RayPool", "39.93", 9),
                token_balance(5, USDC, "OrcaPool", "6989.8", 6),
                token_balance(6, SOL, "OrcaPool", "50.07", 9),
            ],
        },
    }


class FakeClock:
    """Clock that only moves when slept on or advanced."""

    def __init__(self, start: datetime = T0):
        self.current = start
        self.sleeps: list[float] = []

    def now(self) -> datetime:
        return self.current

    def advance(self, seconds: float):
        self.current += timedelta(seconds=seconds)

    async def sleep(self, seconds: float):
        self.sleeps.append(seconds)
        self.advance(seconds)
        await asyncio.sleep(0)


class FakeWebSocket:
    """Stand-in for a websockets client connection."""

    def __init__(self, frames=(), hold_open: bool = False, fail_send: bool = False):
        self.frames = [f if isinstance(f, str) else json.dumps(f) for f in frames]
        self.hold_open = hold_open
        self.fail_send = fail_send
        self.sent: list[dict] = []
        self.closed = False
        self._closed_event = asyncio.Event()

    async def send(self, data: str):
        if self.fail_send:
            raise OSError("send failed")
        self.sent.append(json.loads(data))

    async def ping(self):
        pass

    async def close(self):
        self.closed = True
        self._closed_event.set()

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for frame in self.frames:
            if self.closed:
                return
            yield frame
            await asyncio.sleep(0)
        if self.hold_open:
            await self._closed_event.wait()


class _Connection:
    def __init__(self, ws):
        self.ws = ws

    async def __aenter__(self):
        if isinstance(self.ws, BaseException):
            raise self.ws
        return self.ws

    async def __aexit__(self, *exc_info):
        await self.ws.close()
        return False


class FakeConnector:
    """websockets.connect replacement handing out prepared sockets in order."""

    def __init__(self, sockets):
        self.sockets = list(sockets)
        self.urls: list[str] = []

    @property
    def calls(self) -> int:
        return len(self.urls)

    def __call__(self, url, **kwargs):
        self.urls.append(url)
        return _Connection(self.sockets.pop(0))
