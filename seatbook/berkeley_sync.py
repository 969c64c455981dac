"""Berkeley-style clock synchronization across the cluster."""

import random
from typing import Dict, List, Optional

from asimpy import Environment
from loguru import logger

from seatbook.server_node import ServerNode


class ClockSynchronizer:
    """Master polls every node, averages offsets and redistributes a correction."""

    def __init__(
        self,
        env: Environment,
        poll_delay: float = 0.01,
        max_drift: float = 0.0,
        rng: Optional[random.Random] = None,
    ):
        self.env = env
        self.poll_delay = poll_delay
        self.max_drift = max_drift
        self.rng = rng or random.Random()
        self.rounds = 0

    def synchronize(
        self, nodes: List[ServerNode], reference_time: Optional[float] = None
    ) -> Dict[str, float]:
        """Apply one averaging round and return each node's adjustment.

        The master is included in the average, so a single drifted node
        moves the result by only 1/len(nodes) of its offset.
        """
        if not nodes:
            return {}
        if reference_time is None:
            reference_time = self.env.now

        offsets = {node.node_id: node.local_time - reference_time for node in nodes}
        avg_offset = sum(offsets.values()) / len(offsets)

        adjustments = {}
        for node in nodes:
            adjustments[node.node_id] = avg_offset - offsets[node.node_id]
            node.local_time = reference_time + avg_offset
            node.last_sync_at = self.env.now

        self.rounds += 1
        logger.debug(
            f"[{self.env.now:.2f}] Berkeley: round {self.rounds}, "
            f"average offset {avg_offset:+.3f}s across {len(nodes)} nodes"
        )
        return adjustments

    def drift(self, nodes: List[ServerNode]):
        """Let each clock wander by up to max_drift since the last round."""
        if self.max_drift <= 0:
            return
        for node in nodes:
            node.clock_offset += self.rng.uniform(-self.max_drift, self.max_drift)

    async def run_round(self, nodes: List[ServerNode]) -> Dict[str, float]:
        """Poll the nodes (paying the poll delay), then synchronize."""
        self.drift(nodes)
        await self.env.timeout(self.poll_delay)
        return self.synchronize(nodes)
