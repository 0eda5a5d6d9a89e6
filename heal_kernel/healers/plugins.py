"""
Plugin-Health Healer — placeholder.

The host's plugin listing has no structured status output, so there is no
safe way to tell which plugin is failing. Until it does, this step only
reports that it is skipping; PluginHealth is still carried in state.
"""

import logging

from heal_kernel.config.manager import ConfigManager

logger = logging.getLogger(__name__)


class PluginHealer:
    def __init__(self, config: ConfigManager):
        self.config = config

    async def run(self) -> None:
        if not self.config.current.auto_fix.disable_failing_plugins:
            return
        # TODO: disable plugins reporting status=error once `plugins list --json` exists.
        logger.debug("[self-heal] plugin health check unavailable; skipping")
