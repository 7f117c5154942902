"""
Per-layer output contracts.

Each layer variant declares which output keys it always publishes
(required) and which it may publish (optional). The driver validates a
layer's outputs against its contract before dependents can see them, so
a missing key surfaces as MissingFieldError at the producer instead of
an empty string at the consumer.
"""

import logging
from dataclasses import dataclass
from typing import Tuple

from layer_orchestrator.core.exceptions import MissingFieldError
from layer_orchestrator.core.models import LayerOutput

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OutputContract:
    """
    Named required/optional output fields of one layer variant.

    Attributes:
        required: Keys that must be present and non-empty
        optional: Keys that may be present
        optional_prefixes: Prefixes for indexed optional keys (e.g. "mpc_node_")
    """
    required: Tuple[str, ...] = ()
    optional: Tuple[str, ...] = ()
    optional_prefixes: Tuple[str, ...] = ()

    def declares(self, key: str) -> bool:
        if key in self.required or key in self.optional:
            return True
        return any(key.startswith(prefix) for prefix in self.optional_prefixes)

    def validate(self, output: LayerOutput) -> LayerOutput:
        """
        Check an output against this contract.

        Args:
            output: The LayerOutput to check

        Returns:
            The same output, unchanged

        Raises:
            MissingFieldError: For the first required key that is absent or empty
        """
        for key in self.required:
            output.require(key)

        undeclared = sorted(k for k in output.outputs if not self.declares(k))
        if undeclared:
            logger.debug(
                f"Layer '{output.layer_name}' published undeclared outputs: {undeclared}"
            )
        return output

    def missing(self, output: LayerOutput) -> list[str]:
        """Required keys that are absent or empty, without raising."""
        missing = []
        for key in self.required:
            try:
                output.require(key)
            except MissingFieldError:
                missing.append(key)
        return missing
