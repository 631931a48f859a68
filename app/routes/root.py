"""
Root endpoint with service metadata.
"""

from __future__ import annotations

from fastapi import APIRouter

import core.config as config


router = APIRouter()


@router.get("/")
async def root():
    """Root endpoint with service info."""
    return {
        "service": "AgentStats",
        "version": "0.1.0",
        "description": "Statistics correlation and query engine for agent platforms",
        "authentication_method": config.resolve_authentication_method(),
        "endpoints": {
            "health": "/health",
            "statistics": {
                "summary": "/statistics/summary",
                "chat_io": "/statistics/chat-io",
                "filter_drops": "/statistics/filter-drops",
                "filter_flags": "/statistics/filter-flags",
                "entity_events": "/statistics/entity-events",
            },
            "client_statistics": "/clients/{client_id}/statistics/{summary,chat-io,filter-drops,filter-flags,entity-events}",
        },
    }
