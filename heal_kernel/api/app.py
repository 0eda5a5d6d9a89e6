"""
Self-Heal Status API — FastAPI endpoints.

Read-only inspection of the healing state:
- Cooldowns and the currently active model
- Messaging channel health
- Recent corrective actions
- Active configuration
Plus a manual trigger for one monitor tick.
"""

from fastapi import FastAPI, HTTPException, Query

from heal_kernel.plugin import SelfHealPlugin


def create_app(plugin: SelfHealPlugin) -> FastAPI:
    """Create the status application for one plugin registration."""

    app = FastAPI(
        title="Self-Heal Kernel API",
        description="Self-healing control loop — status surface",
        version="0.1.0",
    )
    app.state.plugin = plugin

    @app.get("/status")
    def get_status(recent: int = Query(20, ge=0, le=100)):
        """Full status snapshot."""
        return plugin.status_snapshot(recent_limit=recent)

    @app.get("/cooldowns")
    def get_cooldowns():
        """Models currently cooling down."""
        snapshot = plugin.status_snapshot(recent_limit=0)
        return {
            "activeModel": snapshot["activeModel"],
            "cooldowns": snapshot["cooldowns"],
        }

    @app.get("/cooldowns/{model:path}")
    def get_cooldown(model: str):
        """Cooldown entry for one model."""
        cooldowns = plugin.status_snapshot(recent_limit=0)["cooldowns"]
        if model not in cooldowns:
            raise HTTPException(404, "Model is not cooling down")
        return cooldowns[model]

    @app.get("/channel")
    def get_channel():
        """Messaging channel health."""
        return plugin.status_snapshot(recent_limit=0)["channel"]

    @app.get("/actions")
    def get_actions(limit: int = Query(20, ge=0, le=100)):
        """Recent corrective actions, oldest first."""
        return [e.to_dict() for e in plugin.emitter.recent(limit)]

    @app.get("/config")
    def get_config():
        """Active normalized configuration."""
        return plugin.config.current.model_dump(mode="json", by_alias=True)

    @app.get("/monitor/status")
    def monitor_status():
        """Monitor loop lifecycle and tick counters."""
        return plugin.monitor.status

    @app.post("/monitor/tick")
    async def trigger_tick():
        """Force one monitoring cycle."""
        await plugin.monitor.tick()
        return plugin.monitor.status

    return app
