"""Component factory for patchloop.

Creates and wires the infrastructure for one run (config, provider rotation
state, chat client, gateway, workspace, loop controller) so the CLI and
tests receive fully initialized components.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Mapping, Optional

import httpx

from patchloop.core.config import AppConfig, PromptLoader, load_config
from patchloop.llm.client import ChatClient, LLMGateway
from patchloop.llm.router import build_rotation_state
from patchloop.orchestrator.loop import LoopController
from patchloop.orchestrator.workspace import Workspace

logger = logging.getLogger("patchloop.factory")


@dataclass
class ComponentBundle:
    """Container for the initialized components of one run."""

    config: AppConfig
    gateway: LLMGateway
    workspace: Workspace
    controller: LoopController

    def close(self) -> None:
        self.gateway.close()


class ComponentFactory:
    """Factory for creating and wiring patchloop components.

    Usage:
        bundle = ComponentFactory.create(workspace_dir=Path("."))
        state = bundle.controller.run()
    """

    @staticmethod
    def create(
        config_dir: Optional[Path] = None,
        env: Optional[str] = None,
        workspace_dir: Optional[Path] = None,
        environ: Optional[Mapping[str, str]] = None,
        config: Optional[AppConfig] = None,
        http_client: Optional[httpx.Client] = None,
        progress_callback: Optional[Callable[[str], None]] = None,
    ) -> ComponentBundle:
        """Build every component for a run.

        Raises:
            ConfigError: If the config is invalid or no provider has credentials.
        """
        if config is None:
            config = load_config(config_dir=config_dir, env=env, environ=environ)

        rotation = build_rotation_state(config.llm, environ)
        logger.info(
            "Providers configured: %s",
            ", ".join(f"{p.name}({len(p.credentials)})" for p in rotation.configured),
        )

        client = ChatClient(config=config.llm, http_client=http_client, environ=environ)
        gateway = LLMGateway(
            client=client,
            state=rotation,
            default_temperature=config.llm.default_temperature,
            default_max_tokens=config.llm.default_max_tokens,
        )

        workspace = Workspace(workspace_dir or Path.cwd(), config.loop)
        prompts_dir = (config_dir / "prompts") if config_dir else None
        controller = LoopController(
            gateway=gateway,
            workspace=workspace,
            config=config,
            prompt_loader=PromptLoader(prompts_dir),
            progress_callback=progress_callback,
        )
        return ComponentBundle(
            config=config,
            gateway=gateway,
            workspace=workspace,
            controller=controller,
        )
