"""Transaction parser - turns a jsonParsed transaction into a TransactionAnalysis."""

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation

from ..clock import Clock, SystemClock
from ..dex import TOKEN_PROGRAMS, program_table
from ..models import BalanceDelta, SwapEvent, TokenTransfer, TransactionAnalysis

logger = logging.getLogger(__name__)

TOKEN_PROGRAM_NAMES = ("spl-token", "spl-token-2022")
TRANSFER_TYPES = ("transfer", "transferChecked")


@dataclass
class _TokenAccount:
    """Pre/post snapshot of one token account in a transaction."""

    account: str
    owner: str
    mint: str
    decimals: int
    pre: Decimal = Decimal(0)
    post: Decimal = Decimal(0)

    @property
    def delta(self) -> Decimal:
        return self.post - self.pre


@dataclass
class _Leg:
    mint: str
    amount: Decimal


def _pubkey(key) -> str:
    if isinstance(key, dict):
        return str(key.get("pubkey", ""))
    return str(key)


def _ui_amount(ui) -> tuple[Decimal, int]:
    """Decimal amount and decimals from a uiTokenAmount / tokenAmount object."""
    if not isinstance(ui, dict):
        return Decimal(0), 0
    decimals = int(ui.get("decimals") or 0)
    try:
        if ui.get("uiAmountString") is not None:
            return Decimal(str(ui["uiAmountString"])), decimals
        if ui.get("amount") is not None:
            return Decimal(str(ui["amount"])).scaleb(-decimals), decimals
    except InvalidOperation:
        pass
    return Decimal(0), decimals


def _program_id(instruction: dict, account_keys: list[str]) -> str:
    if instruction.get("programId"):
        return str(instruction["programId"])
    index = instruction.get("programIdIndex")
    if isinstance(index, int) and 0 <= index < len(account_keys):
        return account_keys[index]
    return ""


class TransactionParser:
    """
    Extracts DEX touches, token transfers and swap legs from a transaction.

    Input is a getTransaction result in jsonParsed encoding. Anything that
    cannot be extracted is left empty; parse() never fails the pipeline.
    """

    def __init__(
        self,
        extra_programs: dict[str, str] | None = None,
        clock: Clock | None = None,
    ):
        self.programs = program_table(extra_programs)  # address -> dex id
        self.clock = clock or SystemClock()

    def parse(
        self,
        signature: str,
        raw_tx: dict | None,
        timestamp: datetime | None = None,
    ) -> TransactionAnalysis:
        """
        Build the analysis for one transaction.

        Args:
            signature: Transaction signature
            raw_tx: getTransaction result, or None when it could not be fetched
            timestamp: Arrival time; defaults to blockTime, then the clock

        Returns:
            TransactionAnalysis (minimal, with slot 0, when raw_tx is None)
        """
        if not isinstance(raw_tx, dict):
            return TransactionAnalysis(
                signature=signature,
                timestamp=timestamp or self.clock.now(),
                slot=0,
            )

        try:
            return self._parse(signature, raw_tx, timestamp)
        except (AttributeError, TypeError, ValueError) as e:
            logger.warning(f"Unexpected transaction shape for {signature[:12]}...: {e}")
            return TransactionAnalysis(
                signature=signature,
                timestamp=timestamp or self.clock.now(),
                slot=self._slot(raw_tx),
            )

    def _parse(
        self,
        signature: str,
        raw_tx: dict,
        timestamp: datetime | None,
    ) -> TransactionAnalysis:
        meta = raw_tx.get("meta") or {}
        message = (raw_tx.get("transaction") or {}).get("message") or {}
        account_keys = [_pubkey(k) for k in message.get("accountKeys") or []]

        if timestamp is None:
            block_time = raw_tx.get("blockTime")
            timestamp = (
                datetime.fromtimestamp(block_time, tz=timezone.utc)
                if block_time
                else self.clock.now()
            )

        dex_interactions = tuple(
            self.programs[key] for key in account_keys if key in self.programs
        )

        accounts = self._token_accounts(meta, account_keys)

        return TransactionAnalysis(
            signature=signature,
            timestamp=timestamp,
            slot=self._slot(raw_tx),
            dex_interactions=dex_interactions,
            token_transfers=self._token_transfers(accounts),
            swap_events=self._swap_events(message, meta, account_keys, accounts),
            signer=account_keys[0] if account_keys else "",
            balance_deltas=self._balance_deltas(accounts),
        )

    @staticmethod
    def _slot(raw_tx: dict) -> int:
        try:
            return int(raw_tx.get("slot") or 0)
        except (TypeError, ValueError):
            return 0

    def _token_accounts(
        self,
        meta: dict,
        account_keys: list[str],
    ) -> list[_TokenAccount]:
        """Merge pre/post token balances by account index, in index order."""
        by_index: dict[int, _TokenAccount] = {}

        for side in ("pre", "post"):
            for entry in meta.get(f"{side}TokenBalances") or []:
                try:
                    index = int(entry["accountIndex"])
                    mint = str(entry["mint"])
                except (KeyError, TypeError, ValueError):
                    continue

                amount, decimals = _ui_amount(entry.get("uiTokenAmount"))
                account = by_index.get(index)
                if account is None:
                    account = _TokenAccount(
                        account=account_keys[index] if index < len(account_keys) else "",
                        owner=str(entry.get("owner") or ""),
                        mint=mint,
                        decimals=decimals,
                    )
                    by_index[index] = account
                setattr(account, side, amount)

        return [by_index[i] for i in sorted(by_index)]

    @staticmethod
    def _balance_deltas(accounts: list[_TokenAccount]) -> tuple[BalanceDelta, ...]:
        totals: dict[tuple[str, str], Decimal] = {}
        for account in accounts:
            key = (account.owner or account.account, account.mint)
            totals[key] = totals.get(key, Decimal(0)) + account.delta

        return tuple(
            BalanceDelta(owner=owner, token=mint, delta=delta)
            for (owner, mint), delta in totals.items()
            if delta != 0
        )

    @staticmethod
    def _token_transfers(accounts: list[_TokenAccount]) -> tuple[TokenTransfer, ...]:
        """Pair senders with receivers of the same mint, in account order."""
        senders: dict[str, list[list]] = defaultdict(list)
        receivers: dict[str, list[list]] = defaultdict(list)

        for account in accounts:
            holder = account.owner or account.account
            if account.delta < 0:
                senders[account.mint].append([holder, -account.delta])
            elif account.delta > 0:
                receivers[account.mint].append([holder, account.delta])

        transfers: list[TokenTransfer] = []
        for mint, outgoing in senders.items():
            incoming = receivers.get(mint, [])
            i = j = 0
            while i < len(outgoing) and j < len(incoming):
                amount = min(outgoing[i][1], incoming[j][1])
                transfers.append(
                    TokenTransfer(
                        from_address=outgoing[i][0],
                        to_address=incoming[j][0],
                        amount=amount,
                        token=mint,
                    )
                )
                outgoing[i][1] -= amount
                incoming[j][1] -= amount
                if outgoing[i][1] == 0:
                    i += 1
                if incoming[j][1] == 0:
                    j += 1

        return tuple(transfers)

    def _swap_events(
        self,
        message: dict,
        meta: dict,
        account_keys: list[str],
        accounts: list[_TokenAccount],
    ) -> tuple[SwapEvent, ...]:
        """
        Correlate token transfers executed under the same DEX call into swaps.

        Inner instructions are walked per top-level instruction. The DEX in
        effect is the last DEX program invoked; two consecutive transfers of
        different mints under it make one swap (first in, second out).
        """
        mints = {a.account: a.mint for a in accounts if a.account}
        decimals = {a.account: a.decimals for a in accounts if a.account}

        inner_by_index: dict[int, list] = {}
        for group in meta.get("innerInstructions") or []:
            if isinstance(group, dict) and isinstance(group.get("index"), int):
                inner_by_index[group["index"]] = group.get("instructions") or []

        swaps: list[SwapEvent] = []
        for index, instruction in enumerate(message.get("instructions") or []):
            current = self.programs.get(_program_id(instruction, account_keys))
            pending: _Leg | None = None

            for inner in inner_by_index.get(index, []):
                program = _program_id(inner, account_keys)
                if program in self.programs:
                    current = self.programs[program]
                    pending = None
                    continue

                leg = self._transfer_leg(inner, program, mints, decimals)
                if leg is None or current is None:
                    continue

                if pending is None or leg.mint == pending.mint:
                    pending = leg
                    continue

                swaps.append(
                    SwapEvent(
                        dex=current,
                        token_in=pending.mint,
                        token_out=leg.mint,
                        amount_in=pending.amount,
                        amount_out=leg.amount,
                    )
                )
                pending = None

        return tuple(swaps)

    @staticmethod
    def _transfer_leg(
        instruction: dict,
        program: str,
        mints: dict[str, str],
        decimals: dict[str, int],
    ) -> _Leg | None:
        parsed = instruction.get("parsed")
        if not isinstance(parsed, dict):
            return None
        if instruction.get("program") not in TOKEN_PROGRAM_NAMES and program not in TOKEN_PROGRAMS:
            return None
        if parsed.get("type") not in TRANSFER_TYPES:
            return None

        info = parsed.get("info") or {}
        source = info.get("source", "")
        destination = info.get("destination", "")
        mint = info.get("mint") or mints.get(source) or mints.get(destination)
        if not mint:
            return None

        if "tokenAmount" in info:
            amount, _ = _ui_amount(info["tokenAmount"])
        else:
            places = decimals.get(source, decimals.get(destination, 0))
            try:
                amount = Decimal(str(info.get("amount", 0))).scaleb(-places)
            except InvalidOperation:
                return None

        return _Leg(mint=str(mint), amount=amount)
