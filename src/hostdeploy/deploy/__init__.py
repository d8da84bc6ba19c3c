"""Deployment orchestration: run models, the orchestrator and the lock manager command."""
