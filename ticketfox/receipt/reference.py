"""Bundle of the static registries the parsers consult."""

from __future__ import annotations

from dataclasses import dataclass

from ticketfox.receipt.chain_templates import ChainRegistry
from ticketfox.receipt.regional_presets import PresetRegistry, RegionalPreset
from ticketfox.receipt.tax_regions import TaxRegionRegistry


@dataclass(frozen=True)
class ReferenceData:
    chains: ChainRegistry
    presets: PresetRegistry
    tax_regions: TaxRegionRegistry
    default_preset_id: str = "spain"

    @property
    def preset(self) -> RegionalPreset | None:
        """Preset used by the generic parser when the caller picks none."""
        return self.presets.get(self.default_preset_id) or self.presets.default
