#!/usr/bin/env python3
"""Split translation units into the batches sent to the translation API."""

import logging
from typing import List, Optional

from translate_gpt.strings_codec import TranslationUnit

logger = logging.getLogger(__name__)

Batch = List[TranslationUnit]


def needs_translation(unit: TranslationUnit, skip_translated: bool) -> bool:
    """
    Decide whether a unit has to be sent to the API.

    Non-translatable units and units with an empty source text are never
    sent; translated units are only sent when skip_translated is off.
    """
    if not unit.translatable or not unit.source_text.strip():
        return False
    if skip_translated and unit.is_translated:
        return False
    return True


def plan_batches(
    units: List[TranslationUnit],
    bunch_size: Optional[int],
    skip_translated: bool,
) -> List[Batch]:
    """
    Partition the units needing translation into ordered batches.

    Args:
        units: All units of the source file, in file order
        bunch_size: Maximum units per batch; None or < 1 means one unit per batch
        skip_translated: Exclude units that already have a translation

    Returns:
        Contiguous batches preserving the original order. Every pending unit
        appears in exactly one batch and only the last batch may be short.
    """
    pending = [unit for unit in units if needs_translation(unit, skip_translated)]

    if bunch_size is None or bunch_size < 1:
        size = 1
    else:
        size = bunch_size

    batches = [pending[i : i + size] for i in range(0, len(pending), size)]

    logger.debug(
        f"Planned {len(batches)} batches for {len(pending)} of {len(units)} units "
        f"(bunch size: {bunch_size}, skip translated: {skip_translated})"
    )
    return batches
