from __future__ import annotations

import re
from typing import List

_INTEGER_RE = re.compile(r"-?[0-9]+")


def split_amount(amount: str, parts: int) -> List[str]:
    """Split a raw integer amount across ``parts`` routes.

    Every share is ``amount // parts`` except the last, which also takes the
    remainder, so the shares always sum back to ``amount``.
    """
    if parts <= 0:
        raise ValueError("Cannot split amount across zero routes.")

    if parts == 1:
        return [amount]

    text = str(amount).strip()
    if not _INTEGER_RE.fullmatch(text):
        raise ValueError("Amount must be an integer string to support route splitting.")

    total = int(text)
    if total < 0:
        raise ValueError("Amount must be non-negative.")

    base, remainder = divmod(total, parts)
    splits = [str(base)] * parts
    splits[-1] = str(base + remainder)
    return splits
