"""
API Dependencies - Shared objects constructed in the application lifespan.
"""

from fastapi import Request

from orchestrator.services.change_detection import ChangeDetector
from orchestrator.services.queue import IndexingQueue


def get_queue(request: Request) -> IndexingQueue:
    return request.app.state.queue


def get_detector(request: Request) -> ChangeDetector:
    return request.app.state.detector
