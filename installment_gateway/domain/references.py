"""Payment reference code allocation and uniqueness checks"""

import re
from typing import Callable, Dict, List, Mapping, Optional, Sequence

from installment_gateway.domain.exceptions import ValidationError
from installment_gateway.domain.models import CodeStatus, ReferenceSlot

PREFIX_PATTERN = re.compile(r"^[A-Za-z0-9]{1,10}$")
# Codes travel through the postal batch, which splits on whitespace, commas and semicolons
CODE_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,64}$")


def validate_prefix(prefix: str) -> str:
    """Branch prefixes are short alphanumeric tokens"""
    if not prefix or not PREFIX_PATTERN.match(prefix):
        raise ValidationError(f"Invalid branch reference prefix: {prefix!r}", field="branch_prefix", value=prefix)
    return prefix


def validate_code(code: str, slot: Optional[int] = None) -> str:
    """Manual codes must be readable back from a postal status batch"""
    if not code or not CODE_PATTERN.match(code):
        raise ValidationError(f"Invalid reference code: {code!r}", field="manual_codes", slot=slot, code=code)
    return code


def parse_sequence_number(code: str, prefix: str) -> Optional[int]:
    """Numeric suffix of a code issued under `prefix`, or None if it is not sequential"""
    if not code.startswith(prefix):
        return None
    suffix = code[len(prefix):]
    if not suffix.isdigit():
        return None
    return int(suffix)


def allocate_codes(
    prefix: str,
    last_number: int,
    count: int,
    manual_codes: Mapping[int, str] | None = None,
) -> List[ReferenceSlot]:
    """
    Assign a code to each of `count` reference slots.

    Slots with an operator override keep it and do not consume a number.
    The others take {prefix}{last_number + 1}, {prefix}{last_number + 2}, ...
    in slot order.

    Args:
        prefix: Branch reference prefix
        last_number: Highest number already issued (or reserved) under the prefix
        count: Number of slots
        manual_codes: Slot index -> operator-entered code

    Returns:
        One ReferenceSlot per slot, in slot order
    """
    validate_prefix(prefix)
    manual_codes = manual_codes or {}

    slots = []
    next_number = last_number
    for index in range(count):
        manual = manual_codes.get(index)
        if manual:
            slots.append(ReferenceSlot(index=index, code=manual, manual=True))
        else:
            next_number += 1
            slots.append(ReferenceSlot(index=index, code=f"{prefix}{next_number}"))
    return slots


def check_code(code: str, batch: Sequence[str], index: int, is_used: Callable[[str], bool]) -> CodeStatus:
    """Classify one code against the other slots of its batch, then against issued codes"""
    if any(other == code for position, other in enumerate(batch) if position != index):
        return CodeStatus.DUPLICATE_IN_BATCH
    if is_used(code):
        return CodeStatus.ALREADY_USED
    return CodeStatus.AVAILABLE


def classify_codes(codes: Sequence[str], is_used: Callable[[str], bool]) -> List[CodeStatus]:
    """Classify every code of a batch; all copies of a repeated code are flagged"""
    return [check_code(code, codes, index, is_used) for index, code in enumerate(codes)]


def ensure_codes_available(slots: Sequence[ReferenceSlot], is_used: Callable[[str], bool]) -> None:
    """Raise one ValidationError naming every slot whose code cannot be committed"""
    statuses = classify_codes([slot.code for slot in slots], is_used)
    rejected: Dict[int, Dict[str, str]] = {
        slot.index: {"code": slot.code, "status": status.value}
        for slot, status in zip(slots, statuses)
        if status != CodeStatus.AVAILABLE
    }
    if rejected:
        summary = ", ".join(f"slot {i + 1}: {r['code']} ({r['status']})" for i, r in rejected.items())
        raise ValidationError(f"Reference codes unavailable: {summary}", field="manual_codes", slots=rejected)
