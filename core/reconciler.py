"""
ResoCtrl -- Reconciler

The in-memory composition the UI renders and commands are validated against.

Two writers:
    apply_snapshot()  poll result, replaces everything
    apply_opacity()   optimistic fader move, replaces one layer's opacity

Optimistic values are not pinned. If a poll lands before the mixer has
applied the PUT, the fader snaps back until the next poll. At a 500ms poll
interval the mixer has normally caught up by then.
"""

import logging

from core.models import Composition

logger = logging.getLogger(__name__)


class Reconciler:
    def __init__(self):
        self.composition: Composition | None = None
        self.revision = 0

    def apply_snapshot(self, composition: Composition):
        self.composition = composition
        self.revision += 1

    def apply_opacity(self, layer_index: int, value: float):
        """Set one layer's opacity ahead of the mixer confirming it.

        The layer is resolved by position now and tracked by id from here on.
        Returns the layer id, or None if there is no layer at that index.
        """
        comp = self.composition
        if comp is None or not 0 <= layer_index < len(comp.layers):
            return None
        target = comp.layers[layer_index]
        value = max(0.0, min(1.0, float(value)))
        layers = list(comp.layers)
        layers[layer_index] = target.model_copy(update={"opacity": value})
        self.composition = comp.model_copy(update={"layers": layers})
        self.revision += 1
        logger.debug("Optimistic opacity %.3f on layer %s (index %d)", value, target.id, layer_index)
        return target.id

    def reset(self):
        self.composition = None
        self.revision += 1

    @property
    def layer_count(self) -> int:
        return len(self.composition.layers) if self.composition is not None else 0

    @property
    def column_count(self) -> int:
        return self.composition.column_count if self.composition is not None else 0

    def has_layer(self, layer_index: int) -> bool:
        return 0 <= layer_index < self.layer_count

    def has_clip(self, layer_index: int, clip_index: int) -> bool:
        if not self.has_layer(layer_index):
            return False
        return 0 <= clip_index < len(self.composition.layers[layer_index].clips)
