"""
Agent persona directory

Loads the personas that can take part in discussions from a YAML file
"""
import logging
from pathlib import Path
from typing import Dict, List, Optional

import aiofiles
import yaml

from .service_contracts import AgentProfile

logger = logging.getLogger(__name__)


class AgentDirectoryService:
    """YAML-backed agent persona lookup"""

    def __init__(self, config_path: Path):
        """
        Initialize agent directory

        Args:
            config_path: Path of the agents YAML file, created with defaults if missing
        """
        self.config_path = Path(config_path)
        self._ensure_config_exists()

    def _ensure_config_exists(self):
        """Ensure configuration file exists, create default if not"""
        if self.config_path.exists():
            return
        self.config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.config_path, "w", encoding="utf-8") as f:
            yaml.safe_dump(self._get_default_config(), f, allow_unicode=True, sort_keys=False)

    def _get_default_config(self) -> dict:
        """Get default configuration"""
        return {
            "agents": [
                {
                    "id": "strategist",
                    "name": "Strategist",
                    "emoji": "🧭",
                    "style": "analytical",
                    "persona": "You are a pragmatic strategist. Weigh trade-offs, name risks and propose concrete next steps.",
                },
                {
                    "id": "skeptic",
                    "name": "Skeptic",
                    "emoji": "🔍",
                    "style": "direct",
                    "persona": "You are a blunt skeptic. Question assumptions and point out what the others are missing.",
                },
                {
                    "id": "coach",
                    "name": "Coach",
                    "emoji": "💬",
                    "style": "supportive",
                    "persona": "You are an encouraging coach. Turn the discussion into small, achievable actions.",
                },
            ]
        }

    async def _load(self) -> Dict[str, AgentProfile]:
        async with aiofiles.open(self.config_path, "r", encoding="utf-8") as f:
            content = await f.read()
        data = yaml.safe_load(content) or {}

        profiles: Dict[str, AgentProfile] = {}
        for item in data.get("agents") or []:
            agent_id = str(item.get("id") or "").strip()
            if not agent_id:
                logger.warning("[AGENTS] Skipping agent entry without id in %s", self.config_path)
                continue
            profiles[agent_id] = AgentProfile(
                id=agent_id,
                name=str(item.get("name") or agent_id),
                persona=str(item.get("persona") or ""),
                style=str(item.get("style") or ""),
                emoji=item.get("emoji"),
            )
        return profiles

    async def get_agent(self, agent_id: str) -> Optional[AgentProfile]:
        return (await self._load()).get(agent_id)

    async def list_agents(self) -> List[AgentProfile]:
        return list((await self._load()).values())
