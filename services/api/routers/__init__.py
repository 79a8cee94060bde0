from .websocket import router as websocket_router

__all__ = ["websocket_router"]
