"""Name conversions between crate names and runtime identifiers."""

import re

_CRATE_NAME_RE = re.compile(r"^[A-Za-z][A-Za-z0-9_-]*$")


def module_name(crate_name: str) -> str:
    """Rust module path for a crate: `pallet-balances` -> `pallet_balances`.

    Uppercase letters start a new word, so `MyPallet` -> `my_pallet`.
    """
    parts: list[str] = []
    prev_was_delimiter = True
    for ch in crate_name:
        if ch.isascii() and ch.isalnum():
            if ch.isupper():
                if not prev_was_delimiter and parts:
                    parts.append("_")
                parts.append(ch.lower())
            else:
                parts.append(ch)
            prev_was_delimiter = False
        elif ch in " -_":
            if not prev_was_delimiter and parts:
                parts.append("_")
            prev_was_delimiter = True
    return "".join(parts)


def variant_name(crate_name: str) -> str:
    """Runtime variant for a crate: `pallet-balances` -> `Balances`.

    The conventional `pallet-` prefix is dropped, the rest is PascalCased.
    """
    module = module_name(crate_name)
    if module.startswith("pallet_") and len(module) > len("pallet_"):
        module = module[len("pallet_") :]
    return "".join(word[:1].upper() + word[1:] for word in module.split("_") if word)


def validate_crate_name(name: str) -> None:
    """Raise ValueError for names Cargo would reject."""
    if not _CRATE_NAME_RE.match(name):
        raise ValueError(f"Invalid crate name: {name!r}")
