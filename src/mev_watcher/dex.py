"""Known DEX program identifiers on Solana."""

DEX_PROGRAMS: dict[str, str] = {
    "jupiter": "JUP6LkbZbjS1jKKwapdHNy74zcZ3tLUZoi5QNyVTaV4",
    "raydium": "675kPX9MHTjS2zt1qfr1NYHuzeLXfQM9H24wFSUt1Mp8",
    "orca": "whirLbMiicVdio4qvUfM5KAg6Ct8VwpYzGff3uctyCc",
    "phoenix": "PhoeNiXZ8ByJGLkxNfZRnkUfjvmuYqLR89jjFHGqdXY",
    "meteora": "LBUZKhRxPF3XUpBCjp4YzTKgLccjZhTSDM9YuVaPwxo",
}

TOKEN_PROGRAMS = frozenset(
    {
        "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA",
        "TokenzQdBNbLqP5VEhdkAS6EPFLC1PHnBqCXEpPxuEb",  # Token-2022
    }
)


def program_table(extra: dict[str, str] | None = None) -> dict[str, str]:
    """Map program address -> DEX id, including any extra entries."""
    table = {address: dex_id for dex_id, address in DEX_PROGRAMS.items()}
    for dex_id, address in (extra or {}).items():
        table[address] = dex_id
    return table


def resolve_program(name_or_address: str, extra: dict[str, str] | None = None) -> str:
    """Turn a DEX name into its program address; addresses pass through."""
    key = name_or_address.lower()
    if key in DEX_PROGRAMS:
        return DEX_PROGRAMS[key]
    if extra and name_or_address in extra:
        return extra[name_or_address]
    return name_or_address
