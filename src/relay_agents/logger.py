import logging

logger = logging.getLogger("relay_agents")
