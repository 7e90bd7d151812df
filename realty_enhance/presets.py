"""
Preset pricing - maps an enhancement preset to its credit cost
"""
import logging
from typing import Iterable, List, Optional, Tuple, Union

from .config import get_config, Preset, PresetInfo, ProcessingStatus

logger = logging.getLogger(__name__)

PresetLike = Union[Preset, str]


def _key(preset: PresetLike) -> str:
    return preset.value if isinstance(preset, Preset) else str(preset)


def _cheapest() -> PresetInfo:
    table = get_config().presets.presets
    return min(table.values(), key=lambda info: info.credits)


def preset_info(preset: PresetLike) -> PresetInfo:
    """Display row for a preset; unknown presets get the cheapest tier's row"""
    table = get_config().presets.presets
    info = table.get(_key(preset))
    if info is None:
        logger.warning(f"Unknown preset '{_key(preset)}', pricing as cheapest tier")
        return _cheapest()
    return info


def cost(preset: PresetLike) -> int:
    """Credit cost of one image enhanced with ``preset``"""
    return max(1, int(preset_info(preset).credits))


def total_cost(records: Iterable, preset: PresetLike) -> int:
    """Cost of enhancing every pending record in ``records``"""
    pending = sum(1 for r in records if r.status == ProcessingStatus.PENDING)
    return cost(preset) * pending


def can_afford(records: Iterable, preset: PresetLike, available_credits: Optional[int]) -> bool:
    """Pre-flight gate for starting a run. An unknown balance never blocks."""
    if available_credits is None:
        return True
    return total_cost(records, preset) <= available_credits


def list_presets() -> List[Tuple[str, PresetInfo]]:
    return list(get_config().presets.presets.items())
