"""
Network step — the isolated bridge network shared by panel and DNS.
"""

from __future__ import annotations

import logging

from hoststack.core.engine.step import Step, StepContext
from hoststack.core.models.compensation import CompensationAction, RemoveNetworkObject, Tier
from hoststack.core.models.step import StepResult

logger = logging.getLogger(__name__)


class NetworkStep(Step):
    name = "network"
    title = "Container network"
    flag = "network_ready"

    def probe(self, ctx: StepContext) -> bool:
        return ctx.host.containers.network_exists(ctx.config.network.name)

    def resume_outputs(self, ctx: StepContext) -> dict:
        return {"network_name": ctx.config.network.name}

    def compensate(self, ctx: StepContext) -> CompensationAction:
        name = ctx.config.network.name
        return CompensationAction(
            description=f"Remove container network {name}",
            action=RemoveNetworkObject(name=name),
            tier=Tier.NORMAL,
        )

    def execute(self, ctx: StepContext) -> StepResult:
        net = ctx.config.network
        docker = ctx.host.containers

        if docker.network_exists(net.name):
            logger.info("Network %s already exists", net.name)
            return StepResult.success(network_name=net.name)

        ctx.registry.add(self.compensate(ctx))
        result = docker.create_network(net.name, net.subnet, net.gateway)
        if not result.ok:
            return StepResult.failure(f"creating network {net.name}: {result.describe()}")

        logger.info("✓ Network %s created (%s)", net.name, net.subnet)
        return StepResult.success(network_name=net.name)
